"""
Execution session model.

A session is one durable, resumable run of a plan. It embeds the plan, the
ordered step results so far, the serializable context and, while suspended,
the pending input marker. Everything a resume needs is in this record; the
manager never keeps run state in memory between calls.

State machine:
    PENDING -> RUNNING -> COMPLETED
                      -> FAILED
               RUNNING <-> WAITING_INPUT
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from planexec.executors.base import ExecutionResult, PendingInput, StepResult, utcnow
from planexec.plans.models import ExecutionPlan, parse_plan_id


class SessionStatus(str, enum.Enum):
    PENDING = "pending"              # Created, not started
    RUNNING = "running"              # Being driven (or crashed while driven)
    WAITING_INPUT = "waiting_input"  # Suspended at a user input step
    COMPLETED = "completed"          # Ran to the end
    FAILED = "failed"                # A step failed, run errored or cancelled

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


Platform = Literal["cli", "web"]


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:8]}"


class ExecutionSession(BaseModel):
    """
    Persistent state of one plan execution.

    Invariants:
        pending_input is set exactly when status is WAITING_INPUT, and then
        current_step_id == pending_input.step_id.
    """
    id: str = Field(default_factory=new_session_id)
    plan: ExecutionPlan
    plan_id: str
    base_plan_id: str
    plan_version: Optional[int] = None
    status: SessionStatus = SessionStatus.PENDING
    current_step_id: int = 0
    step_results: list[StepResult] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    pending_input: Optional[PendingInput] = None
    retry_count: int = 0
    parent_session_id: Optional[str] = None
    platform: Platform = "cli"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    result: Optional[ExecutionResult] = None

    @model_validator(mode="after")
    def _pending_input_matches_status(self):
        waiting = self.status == SessionStatus.WAITING_INPUT
        if waiting != (self.pending_input is not None):
            raise ValueError("pending_input must be set exactly when status is waiting_input")
        if self.pending_input is not None and self.pending_input.step_id != self.current_step_id:
            raise ValueError("current_step_id must equal pending_input.step_id while waiting")
        return self

    @classmethod
    def for_plan(cls, plan: ExecutionPlan, platform: Platform = "cli", **fields: Any) -> "ExecutionSession":
        """Build a new PENDING session positioned at the plan's first step."""
        base_plan_id, version = parse_plan_id(plan.id)
        fields.setdefault("current_step_id", plan.first_step_id)
        return cls(
            plan=plan,
            plan_id=plan.id,
            base_plan_id=base_plan_id,
            plan_version=version,
            platform=platform,
            **fields,
        )

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.created_at).total_seconds() * 1000)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "ExecutionSession":
        return cls.model_validate_json(data)
