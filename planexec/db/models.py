"""
SQLAlchemy ORM models for session persistence.

One row per execution session. The full session (plan, step results,
context, pending input, final result) is stored as a JSON document; the
columns next to it are copies of the fields the storage filters and sorts
on, kept in sync on every write.

Key Design Decisions:
1. Whole-document writes - a session update is one UPDATE in one
   transaction, so a crash never leaves half a session behind
2. JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
3. Explicit Enum for status - prevents typos in filters
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from planexec.session.models import ExecutionSession, SessionStatus

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ===================
# Base Class
# ===================

class Base(DeclarativeBase):
    """Base class for all ORM models (SQLAlchemy 2.0 declarative style)."""
    pass


# ===================
# ORM Models
# ===================

class ExecutionSessionRecord(Base):
    """
    Persistent row for an ExecutionSession.

    Example:
        record = ExecutionSessionRecord.from_session(session)
        db.add(record)
        ...
        session = record.to_session()
    """
    __tablename__ = "execution_sessions"

    # Primary key ("session-1a2b3c4d")
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Query columns
    plan_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    base_plan_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    plan_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(
            SessionStatus,
            name="session_status_enum",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=SessionStatus.PENDING,
        index=True,  # Common query pattern: find sessions by status
    )
    platform: Mapped[str] = mapped_column(String(16), nullable=False, default="cli")
    parent_session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps (copied from the document; newest-first listing sorts on created_at)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # The whole session, as produced by ExecutionSession.model_dump(mode="json")
    document: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)

    @classmethod
    def from_session(cls, session: ExecutionSession) -> "ExecutionSessionRecord":
        record = cls(id=session.id)
        record.apply(session)
        return record

    def apply(self, session: ExecutionSession) -> None:
        """Overwrite every column from *session*."""
        self.plan_id = session.plan_id
        self.base_plan_id = session.base_plan_id
        self.plan_version = session.plan_version
        self.status = session.status
        self.platform = session.platform
        self.parent_session_id = session.parent_session_id
        self.retry_count = session.retry_count
        self.created_at = session.created_at
        self.updated_at = session.updated_at
        self.completed_at = session.completed_at
        self.document = session.model_dump(mode="json")

    def to_session(self) -> ExecutionSession:
        return ExecutionSession.model_validate(self.document)

    def __repr__(self) -> str:
        return f"<ExecutionSessionRecord(id={self.id}, plan_id={self.plan_id}, status={self.status.value})>"
