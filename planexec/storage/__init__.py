"""
Storage package - Session persistence backends.
"""

from typing import Optional

from planexec.config import Settings, get_settings
from planexec.db.session import get_session_factory
from planexec.storage.base import (
    ExecutionStats,
    ListSessionsOptions,
    SessionStorage,
    compute_stats,
)
from planexec.storage.file import FileSessionStorage
from planexec.storage.sql import SqlSessionStorage


def create_storage(settings: Optional[Settings] = None) -> SessionStorage:
    """Build the backend selected by Settings.storage_backend."""
    settings = settings or get_settings()
    if settings.storage_backend == "file":
        return FileSessionStorage(settings.data_path)
    return SqlSessionStorage(get_session_factory())


__all__ = [
    "SessionStorage",
    "ListSessionsOptions",
    "ExecutionStats",
    "compute_stats",
    "FileSessionStorage",
    "SqlSessionStorage",
    "create_storage",
]
