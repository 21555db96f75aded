"""
Unit tests for logging and metrics.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from jobengine.observability.logging import job_log_context, setup_logging
from jobengine.observability.metrics import MetricsCollector


@contextmanager
def isolated_root_logger() -> Iterator[None]:
    """Restore the root logger configuration replaced by setup_logging."""
    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    try:
        yield
    finally:
        root_logger.handlers = handlers
        root_logger.setLevel(level)


class TestLogging:
    """Tests for structured logging."""

    def test_json_logs_carry_job_context(self, capsys):
        with isolated_root_logger():
            setup_logging(log_level="INFO", log_format="json")
            with job_log_context("job-1", "import"):
                logging.getLogger("jobengine.tests").info("Working", extra={"step": 3})
            logging.getLogger("jobengine.tests").info("Outside")

        lines = capsys.readouterr().out.strip().splitlines()
        inside, outside = json.loads(lines[-2]), json.loads(lines[-1])

        assert inside["event"] == "Working"
        assert inside["level"] == "info"
        assert inside["job_id"] == "job-1"
        assert inside["job_type"] == "import"
        assert inside["step"] == 3
        assert "job_id" not in outside

    def test_level_filters_records(self, capsys):
        with isolated_root_logger():
            setup_logging(log_level="WARNING", log_format="console")
            logging.getLogger("jobengine.tests").info("hidden")
            logging.getLogger("jobengine.tests").warning("shown")

        output = capsys.readouterr().out
        assert "hidden" not in output
        assert "shown" in output


class TestMetricsCollector:
    """Tests for the Prometheus collector."""

    def test_exposition(self, metrics: MetricsCollector):
        metrics.record_job_started("import")
        metrics.record_job_blocked("import", "disabled")
        metrics.record_job_runtime("Import", 1.5)

        output = metrics.get_metrics().decode()

        assert 'jobs_started_total{job_type="import"} 1.0' in output
        assert 'jobs_blocked_total{job_type="import",reason="disabled"} 1.0' in output
        assert 'job_runtime_seconds{job_type="import"} 1.5' in output
        assert metrics.get_content_type().startswith("text/plain")
