"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobengine.db.connection import (
    close_db,
    create_session_factory,
    get_engine,
    get_session_context,
    init_db,
)
from jobengine.db.models import Base, JobInfoRecord, JobMessageRecord, JobMetaDocument

__all__ = [
    "get_session_context",
    "create_session_factory",
    "get_engine",
    "init_db",
    "close_db",
    "Base",
    "JobInfoRecord",
    "JobMessageRecord",
    "JobMetaDocument",
]
