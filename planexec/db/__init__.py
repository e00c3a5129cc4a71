"""
Database package exports.

Provides convenient access to:
- ORM models (ExecutionSessionRecord)
- Engine and session factory helpers (create_engine, init_db, close_db)
"""

from planexec.db.models import Base, ExecutionSessionRecord
from planexec.db.session import (
    close_db,
    create_engine,
    create_session_factory,
    create_tables,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "ExecutionSessionRecord",
    # Engine / sessions
    "create_engine",
    "create_session_factory",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
