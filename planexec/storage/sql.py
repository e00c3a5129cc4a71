"""
SQL session storage (SQLAlchemy 2.0 async ORM).

Each public method opens its own database session and commits once, so
every write is a single transaction. Filters, ordering and pagination are
pushed into SQL.
"""

from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from planexec.db.models import ExecutionSessionRecord
from planexec.errors import SessionNotFoundError
from planexec.executors.base import utcnow
from planexec.logging import get_logger
from planexec.session.models import ExecutionSession
from planexec.storage.base import ListSessionsOptions, SessionStorage

logger = get_logger(__name__)


class SqlSessionStorage(SessionStorage):
    """
    Usage:
        factory = create_session_factory(create_engine("sqlite+aiosqlite:///./s.db"))
        storage = SqlSessionStorage(factory)
        await storage.save_session(session)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_session(self, session: ExecutionSession) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                record = await db.get(ExecutionSessionRecord, session.id)
                if record is None:
                    db.add(ExecutionSessionRecord.from_session(session))
                else:
                    record.apply(session)
        logger.debug("session_saved", session_id=session.id, status=session.status.value)

    async def load_session(self, session_id: str) -> Optional[ExecutionSession]:
        async with self.session_factory() as db:
            record = await db.get(ExecutionSessionRecord, session_id)
            return record.to_session() if record is not None else None

    async def update_session(self, session_id: str, **fields: Any) -> ExecutionSession:
        """Read-modify-write inside one transaction, row locked where supported."""
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    select(ExecutionSessionRecord)
                    .where(ExecutionSessionRecord.id == session_id)
                    .with_for_update()
                )
                record = result.scalar_one_or_none()
                if record is None:
                    raise SessionNotFoundError(session_id)

                updated = record.to_session().model_copy(update={**fields, "updated_at": utcnow()})
                record.apply(updated)
        return updated

    async def delete_session(self, session_id: str) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(
                    delete(ExecutionSessionRecord).where(ExecutionSessionRecord.id == session_id)
                )

    async def list_sessions(self, options: Optional[ListSessionsOptions] = None) -> list[ExecutionSession]:
        options = options or ListSessionsOptions()

        query = select(ExecutionSessionRecord)
        if options.plan_id:
            query = query.where(ExecutionSessionRecord.plan_id == options.plan_id)
        if options.base_plan_id:
            query = query.where(ExecutionSessionRecord.base_plan_id == options.base_plan_id)
        if options.status:
            query = query.where(ExecutionSessionRecord.status == options.status)
        if options.platform:
            query = query.where(ExecutionSessionRecord.platform == options.platform)

        query = query.order_by(
            ExecutionSessionRecord.created_at.desc(),
            ExecutionSessionRecord.id.desc(),
        )
        if options.offset:
            query = query.offset(options.offset)
        if options.limit is not None:
            query = query.limit(options.limit)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [record.to_session() for record in result.scalars().all()]
