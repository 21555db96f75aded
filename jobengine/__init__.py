"""
Job Engine

Background job orchestration for web applications: starts, tracks, locks and
times out named job types, persisting job state and run-locks in the database.
"""

__version__ = "1.0.0"
