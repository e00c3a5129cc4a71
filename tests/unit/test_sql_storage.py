"""Tests for SQL session storage (SQLite via aiosqlite) and execution stats."""
from datetime import timedelta

import pytest

from planexec.errors import SessionNotFoundError
from planexec.executors.base import ExecutionResult, PendingInput, utcnow
from planexec.plans.models import ExecutionPlan, InputSchema
from planexec.session.models import ExecutionSession, SessionStatus
from planexec.storage.base import ListSessionsOptions, compute_stats


def _finished(plan_id, status, success, duration_ms, minutes_ago=0):
    created = utcnow() - timedelta(minutes=minutes_ago)
    return ExecutionSession.for_plan(
        ExecutionPlan(id=plan_id),
        status=status,
        created_at=created,
        updated_at=created,
        completed_at=created + timedelta(milliseconds=duration_ms),
        result=ExecutionResult(plan_id=plan_id, success=success, error=None if success else "boom"),
    )


class TestSqlSessionStorage:
    async def test_save_load_and_overwrite(self, sql_storage, chain_plan):
        session = ExecutionSession.for_plan(chain_plan)
        await sql_storage.save_session(session)
        assert (await sql_storage.load_session(session.id)).plan == chain_plan

        waiting = session.model_copy(update={
            "status": SessionStatus.WAITING_INPUT,
            "pending_input": PendingInput.for_step(1, InputSchema()),
        })
        await sql_storage.save_session(waiting)

        loaded = await sql_storage.load_session(session.id)
        assert loaded.status == SessionStatus.WAITING_INPUT
        assert loaded.pending_input.surface_id == "user-input-1"

    async def test_update_and_delete(self, sql_storage):
        session = ExecutionSession.for_plan(ExecutionPlan(id="plan-x"))
        await sql_storage.save_session(session)

        updated = await sql_storage.update_session(session.id, retry_count=3)
        assert updated.retry_count == 3
        assert (await sql_storage.load_session(session.id)).retry_count == 3

        await sql_storage.delete_session(session.id)
        await sql_storage.delete_session(session.id)
        assert await sql_storage.load_session(session.id) is None

    async def test_update_missing(self, sql_storage):
        with pytest.raises(SessionNotFoundError):
            await sql_storage.update_session("session-nope", retry_count=1)

    async def test_list_filters_sort_and_paginate(self, sql_storage):
        old = _finished("plan-a-v1", SessionStatus.COMPLETED, True, 100, minutes_ago=30)
        mid = _finished("plan-a-v2", SessionStatus.FAILED, False, 100, minutes_ago=20)
        new = _finished("plan-b", SessionStatus.COMPLETED, True, 100, minutes_ago=10)
        for s in (mid, new, old):
            await sql_storage.save_session(s)

        assert [s.id for s in await sql_storage.list_sessions()] == [new.id, mid.id, old.id]
        assert [s.id for s in await sql_storage.list_sessions(ListSessionsOptions(limit=1, offset=1))] == [mid.id]
        assert [s.id for s in await sql_storage.list_sessions_by_base_plan("plan-a")] == [mid.id, old.id]
        assert [s.id for s in await sql_storage.list_sessions(
            ListSessionsOptions(status=SessionStatus.FAILED))] == [mid.id]


class TestExecutionStats:
    async def test_stats_by_base_plan(self, sql_storage):
        for s in (
            _finished("pricing-v1", SessionStatus.COMPLETED, True, 1000),
            _finished("pricing-v2", SessionStatus.COMPLETED, True, 2000),
            _finished("pricing-v2", SessionStatus.FAILED, False, 500),
            _finished("other", SessionStatus.COMPLETED, True, 9000),
        ):
            await sql_storage.save_session(s)

        stats = await sql_storage.get_execution_stats("pricing")

        assert stats.total_executions == 3
        assert stats.success_count == 2
        assert stats.failure_count == 1
        assert stats.average_duration == 1500

    async def test_stats_by_versioned_id(self, sql_storage):
        await sql_storage.save_session(_finished("pricing-v1", SessionStatus.COMPLETED, True, 1000))
        await sql_storage.save_session(_finished("pricing-v2", SessionStatus.COMPLETED, True, 3000))

        stats = await sql_storage.get_execution_stats("pricing-v2")
        assert stats.total_executions == 1
        assert stats.average_duration == 3000

    def test_completed_but_unsuccessful_counts_as_failure(self):
        stats = compute_stats([
            _finished("p", SessionStatus.COMPLETED, False, 100),
            ExecutionSession.for_plan(ExecutionPlan(id="p"), status=SessionStatus.RUNNING),
        ])
        assert stats.total_executions == 2
        assert stats.success_count == 0
        assert stats.failure_count == 1
        assert stats.average_duration == 0.0
