"""
Job handler registry.

A handler is anything with ``definition()`` and an async ``execute(context)``
returning True when the job did its work and False when it skipped it.
Handlers are looked up by job type, ignoring case.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from jobengine.errors import JobTypeNotFoundError
from jobengine.types.job import JobDefinition

if TYPE_CHECKING:
    from jobengine.service.runner import JobContext

logger = logging.getLogger(__name__)


@runtime_checkable
class JobRunnable(Protocol):
    """Business logic of one job type."""

    def definition(self) -> JobDefinition: ...

    async def execute(self, context: "JobContext") -> bool: ...


JobFunction = Callable[["JobContext"], Awaitable[bool]]


class FunctionJob:
    """Adapts a plain coroutine function to the JobRunnable interface."""

    def __init__(self, job_definition: JobDefinition, func: JobFunction):
        self._definition = job_definition
        self._func = func

    def definition(self) -> JobDefinition:
        return self._definition

    async def execute(self, context: "JobContext") -> bool:
        return await self._func(context)

    def __repr__(self) -> str:
        return f"FunctionJob(job_type={self._definition.job_type}, func={self._func.__name__})"


class HandlerRegistry:
    """
    Registry of job handlers keyed by job type.

    Example:
        registry = HandlerRegistry()

        @registry.job("import", blocking_types={"export"}, restarts=1)
        async def run_import(context: JobContext) -> bool:
            ...
    """

    def __init__(self, runnables: list[JobRunnable] | None = None):
        self._runnables: dict[str, JobRunnable] = {}
        for runnable in runnables or []:
            self.register(runnable)

    def register(self, runnable: JobRunnable) -> JobRunnable:
        """
        Register a handler under the job type of its definition.

        Raises:
            ValueError: If another handler is registered for the job type.
        """
        job_type = runnable.definition().job_type
        key = job_type.lower()
        if key in self._runnables:
            raise ValueError(f"A handler for job type '{job_type}' is already registered")
        self._runnables[key] = runnable
        logger.info("Registered handler for job type", extra={"job_type": job_type})
        return runnable

    def job(self, job_type: str, **definition: Any) -> Callable[[JobFunction], JobFunction]:
        """
        Decorator registering a coroutine function as the handler of a job type.

        Args:
            job_type: The job type this handler processes.
            **definition: Further JobDefinition fields.
        """

        def decorator(func: JobFunction) -> JobFunction:
            self.register(FunctionJob(JobDefinition(job_type=job_type, **definition), func))
            return func

        return decorator

    def get(self, job_type: str) -> JobRunnable:
        """
        Get the handler for a job type, ignoring case.

        Raises:
            JobTypeNotFoundError: If no handler is registered.
        """
        runnable = self._runnables.get(job_type.lower())
        if runnable is None:
            raise JobTypeNotFoundError(job_type)
        return runnable

    def job_types(self) -> list[str]:
        """List the job types of all registered handlers."""
        return sorted(r.definition().job_type for r in self._runnables.values())

    def __contains__(self, job_type: str) -> bool:
        return job_type.lower() in self._runnables

    def __len__(self) -> int:
        return len(self._runnables)
