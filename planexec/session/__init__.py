"""
Session package - Durable, resumable plan executions.

The manager lives in planexec.session.manager; it is not imported here
because the storage backends depend on these models.
"""

from planexec.session.models import ExecutionSession, Platform, SessionStatus, new_session_id

__all__ = [
    "ExecutionSession",
    "SessionStatus",
    "Platform",
    "new_session_id",
]
