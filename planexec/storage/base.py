"""
Session storage interface.

Both backends (SQL and JSON files) implement SessionStorage. Listing is
always newest-first by created_at; filters combine with AND.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Optional

from pydantic import BaseModel, Field

from planexec.errors import SessionNotFoundError
from planexec.executors.base import utcnow
from planexec.session.models import ExecutionSession, SessionStatus


class ListSessionsOptions(BaseModel):
    plan_id: Optional[str] = None
    base_plan_id: Optional[str] = None
    status: Optional[SessionStatus] = None
    platform: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)


class ExecutionStats(BaseModel):
    """
    Aggregate outcome of every session of one plan.

    Status and outcome are kept apart: a COMPLETED session whose result is
    unsuccessful counts as a failure.
    """
    total_executions: int = 0
    success_count: int = 0
    failure_count: int = 0
    average_duration: float = 0.0  # ms, over successful completed sessions


def compute_stats(sessions: Iterable[ExecutionSession]) -> ExecutionStats:
    sessions = list(sessions)
    successful = [
        s for s in sessions
        if s.status == SessionStatus.COMPLETED and s.result is not None and s.result.success
    ]
    failures = [
        s for s in sessions
        if s.status == SessionStatus.FAILED
        or (s.status == SessionStatus.COMPLETED and (s.result is None or not s.result.success))
    ]

    durations = [s.duration_ms for s in successful if s.duration_ms is not None]
    average = sum(durations) / len(durations) if durations else 0.0

    return ExecutionStats(
        total_executions=len(sessions),
        success_count=len(successful),
        failure_count=len(failures),
        average_duration=average,
    )


class SessionStorage(ABC):
    """
    Abstract persistence for ExecutionSession records.

    Every write replaces the whole record atomically, so a crash leaves
    either the old or the new version on disk, never a torn one.
    """

    @abstractmethod
    async def save_session(self, session: ExecutionSession) -> None:
        """Insert or replace a session."""

    @abstractmethod
    async def load_session(self, session_id: str) -> Optional[ExecutionSession]:
        """Return the session, or None if it does not exist."""

    async def update_session(self, session_id: str, **fields: Any) -> ExecutionSession:
        """
        Apply field updates to a stored session and refresh updated_at.

        Raises:
            SessionNotFoundError: if the session does not exist
        """
        session = await self.load_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        updated = session.model_copy(update={**fields, "updated_at": utcnow()})
        await self.save_session(updated)
        return updated

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete a session. Deleting a missing session is not an error."""

    @abstractmethod
    async def list_sessions(self, options: Optional[ListSessionsOptions] = None) -> list[ExecutionSession]:
        """Sessions matching *options*, newest first, paginated."""

    async def list_sessions_by_plan(self, plan_id: str) -> list[ExecutionSession]:
        return await self.list_sessions(ListSessionsOptions(plan_id=plan_id))

    async def list_sessions_by_base_plan(self, base_plan_id: str) -> list[ExecutionSession]:
        return await self.list_sessions(ListSessionsOptions(base_plan_id=base_plan_id))

    async def get_recent_sessions(self, limit: int = 10) -> list[ExecutionSession]:
        return await self.list_sessions(ListSessionsOptions(limit=limit))

    async def get_execution_stats(self, plan_id: str) -> ExecutionStats:
        """
        Stats over sessions whose plan_id or base_plan_id equals *plan_id*.

        A versioned id ("plan-abc-v2") matches only that version; a base id
        ("plan-abc") matches the unversioned plan and every version of it.
        """
        by_id: dict[str, ExecutionSession] = {}
        for session in await self.list_sessions_by_plan(plan_id):
            by_id[session.id] = session
        for session in await self.list_sessions_by_base_plan(plan_id):
            by_id[session.id] = session
        return compute_stats(by_id.values())
