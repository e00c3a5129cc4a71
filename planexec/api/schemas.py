"""
Pydantic schemas for API requests and responses.

The inspection API returns sessions as stored; these schemas add the
lightweight listing shape, stats, and the error envelope.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from planexec.session.models import ExecutionSession, SessionStatus


# ===================
# Request Schemas
# ===================

class RetryRequest(BaseModel):
    """Request to retry a finished session."""
    from_step_id: Optional[int] = Field(
        default=None,
        ge=1,
        description="Re-run from this step; results before it are kept. Defaults to the first step",
        examples=[2],
    )


# ===================
# Response Schemas
# ===================

class SessionSummaryResponse(BaseModel):
    """Lightweight response for listing sessions."""
    id: str
    plan_id: str
    base_plan_id: str
    status: SessionStatus
    platform: str
    current_step_id: int
    step_count: int
    retry_count: int
    parent_session_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: ExecutionSession) -> "SessionSummaryResponse":
        return cls(
            id=session.id,
            plan_id=session.plan_id,
            base_plan_id=session.base_plan_id,
            status=session.status,
            platform=session.platform,
            current_step_id=session.current_step_id,
            step_count=len(session.step_results),
            retry_count=session.retry_count,
            parent_session_id=session.parent_session_id,
            created_at=session.created_at,
            updated_at=session.updated_at,
            completed_at=session.completed_at,
        )


class SessionResponse(BaseModel):
    """Full session, including plan, step results and final result."""
    session: ExecutionSession
    duration_ms: Optional[int] = Field(
        default=None,
        description="Milliseconds from creation to completion; null while unfinished",
    )

    @classmethod
    def from_session(cls, session: ExecutionSession) -> "SessionResponse":
        return cls(session=session, duration_ms=session.duration_ms)


class SessionListResponse(BaseModel):
    sessions: list[SessionSummaryResponse]
    count: int


class StatsResponse(BaseModel):
    """Execution statistics for a plan (matched by plan id or base plan id)."""
    plan_id: str
    total_executions: int
    success_count: int
    failure_count: int
    average_duration: float = Field(..., description="Mean duration in ms of successful runs")


class DeleteResponse(BaseModel):
    success: bool
    session_id: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
