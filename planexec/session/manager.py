"""
Session Manager - Drives execution sessions through their lifecycle.

This is the only component that mutates sessions. It:
1. Creates sessions for plans
2. Drives the step executor, persisting after EVERY step
3. Suspends at user input steps (status WAITING_INPUT) and returns
4. Resumes with human-supplied values, rebuilding a fresh resolver from
   the persisted step results every time
5. Creates retry sessions from finished ones
6. Reports per-plan execution statistics

Design Principles:
- No run state survives in memory between calls; storage is the truth
- A crash loses at most the step that was in flight
- Programmer errors (missing session, wrong state) raise; step and run
  failures are recorded on the session and returned
"""

import copy
from typing import Any, Optional

from planexec.engine.conditional import executor_for_plan
from planexec.engine.executor import StepExecutor
from planexec.engine.resolver import ParameterResolver
from planexec.errors import InvalidSessionStateError, SessionNotFoundError
from planexec.executors.base import (
    ConditionResult,
    ExecutionResult,
    FunctionProvider,
    StepResult,
    UserInputResult,
    utcnow,
)
from planexec.executors.user_input import InvalidFieldValue, coerce_field_value
from planexec.logging import get_logger
from planexec.plans.models import ConditionStep, ExecutionPlan, UserInputStep
from planexec.session.models import ExecutionSession, Platform, SessionStatus
from planexec.storage.base import ExecutionStats, ListSessionsOptions, SessionStorage

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Session cancelled by user"


class SessionManager:
    """
    Usage:
        manager = SessionManager(storage, provider)

        session = await manager.create_session(plan, platform="web")
        result = await manager.execute_session(session.id)

        while result.waiting_for_input:
            values = ask_human(result.waiting_for_input)
            result = await manager.resume_session(session.id, values)
    """

    def __init__(
        self,
        storage: SessionStorage,
        provider: Optional[FunctionProvider] = None,
        executor: Optional[StepExecutor] = None,
        step_timeout_ms: Optional[int] = None,
    ):
        """
        Args:
            storage: Where sessions are persisted
            provider: Function provider; an executor is picked per plan
            executor: Fixed executor to use for every plan instead
            step_timeout_ms: Passed to executors built per plan

        Without a provider or executor the manager can create, inspect,
        retry and cancel sessions but not run them.
        """
        self.storage = storage
        self.provider = provider
        self.executor = executor
        self.step_timeout_ms = step_timeout_ms

    def _require_runner(self) -> None:
        if self.provider is None and self.executor is None:
            raise ValueError("SessionManager needs a provider or an executor to run sessions")

    def _executor_for(self, plan: ExecutionPlan) -> StepExecutor:
        if self.executor is not None:
            return self.executor
        return executor_for_plan(plan, self.provider, step_timeout_ms=self.step_timeout_ms)

    # ===================
    # Lookup
    # ===================

    async def get_session(self, session_id: str) -> ExecutionSession:
        """
        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        session = await self.storage.load_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        """Status of a session, or None if it does not exist."""
        session = await self.storage.load_session(session_id)
        return session.status if session is not None else None

    async def list_sessions(self, options: Optional[ListSessionsOptions] = None) -> list[ExecutionSession]:
        return await self.storage.list_sessions(options)

    async def get_execution_stats(self, plan_id: str) -> ExecutionStats:
        return await self.storage.get_execution_stats(plan_id)

    # ===================
    # Lifecycle
    # ===================

    async def create_session(self, plan: ExecutionPlan, platform: Platform = "cli") -> ExecutionSession:
        """
        Create and persist a PENDING session for *plan*.

        Raises:
            PlanValidationError: if the plan is malformed
        """
        self._executor_for(plan).validate_plan(plan)

        session = ExecutionSession.for_plan(plan, platform=platform)
        await self.storage.save_session(session)

        logger.info("session_created", session_id=session.id, plan_id=plan.id, platform=platform)
        return session

    async def execute_session(self, session_id: str) -> ExecutionResult:
        """
        Run a session until it finishes or reaches a user input step.

        Accepts PENDING sessions, and RUNNING ones left behind by a crash,
        which continue from the persisted current_step_id.

        Raises:
            SessionNotFoundError: If session doesn't exist
            InvalidSessionStateError: If session is finished or waiting for input
            ValueError: If the manager has neither a provider nor an executor
        """
        session = await self.get_session(session_id)

        if session.status.is_terminal:
            raise InvalidSessionStateError(
                session_id, session.status.value, "cannot execute a finished session"
            )
        if session.status == SessionStatus.WAITING_INPUT:
            raise InvalidSessionStateError(
                session_id, session.status.value, "session is waiting for input; use resume_session"
            )
        self._require_runner()

        if session.status == SessionStatus.RUNNING:
            logger.warning(
                "session_recovering",
                session_id=session_id,
                current_step_id=session.current_step_id,
                results=len(session.step_results),
            )
        else:
            logger.info("session_execution_started", session_id=session_id)

        session = await self.storage.update_session(session_id, status=SessionStatus.RUNNING)
        return await self._drive(session)

    async def resume_session(self, session_id: str, values: dict[str, Any]) -> ExecutionResult:
        """
        Supply values for the pending user input step and continue.

        Returns:
            ExecutionResult of this leg: either waiting_for_input at the next
            user input step, or the final result

        Raises:
            SessionNotFoundError: If session doesn't exist
            InvalidSessionStateError: If session is not waiting for input
        """
        session = await self.get_session(session_id)
        if session.status != SessionStatus.WAITING_INPUT or session.pending_input is None:
            raise InvalidSessionStateError(
                session_id, session.status.value, "session is not waiting for input"
            )
        self._require_runner()

        pending = session.pending_input
        step = session.plan.get_step(pending.step_id)
        logger.info("session_resuming", session_id=session_id, step_id=pending.step_id)

        try:
            input_values = self._coerce_input(step, values)
            input_result = UserInputResult(step_id=pending.step_id, success=True, values=input_values)
        except InvalidFieldValue as e:
            input_result = UserInputResult(step_id=pending.step_id, success=False, error=str(e))

        context = copy.deepcopy(session.context)
        if input_result.success:
            context.setdefault("variables", {}).update(input_result.values)

        next_step_id = session.plan.next_step_id(pending.step_id)
        session = await self.storage.update_session(
            session_id,
            status=SessionStatus.RUNNING,
            pending_input=None,
            step_results=[*session.step_results, input_result],
            context=context,
            current_step_id=next_step_id if next_step_id is not None else pending.step_id,
        )
        return await self._drive(session)

    async def retry_session(self, session_id: str, from_step_id: Optional[int] = None) -> ExecutionSession:
        """
        Create a new PENDING session that re-runs a finished one.

        Results of steps before from_step_id (exclusive) are carried over;
        with no from_step_id the retry starts from scratch. The original
        session is not modified.

        Raises:
            SessionNotFoundError: If session doesn't exist
            InvalidSessionStateError: If session has not finished
        """
        source = await self.get_session(session_id)
        if not source.status.is_terminal:
            raise InvalidSessionStateError(
                session_id, source.status.value, "only finished sessions can be retried"
            )

        plan = source.plan
        if from_step_id is None:
            kept: list[StepResult] = []
            current_step_id = plan.first_step_id
        else:
            kept = [r for r in source.step_results if r.step_id < from_step_id and r.success]
            current_step_id = next(
                (s.step_id for s in plan.steps if s.step_id >= from_step_id),
                from_step_id,
            )

        retry = ExecutionSession.for_plan(
            plan,
            platform=source.platform,
            step_results=copy.deepcopy(kept),
            context=self._rebuild_context(plan, kept),
            current_step_id=current_step_id,
            retry_count=source.retry_count + 1,
            parent_session_id=source.id,
        )
        await self.storage.save_session(retry)

        logger.info(
            "retry_session_created",
            session_id=retry.id,
            parent_session_id=source.id,
            retry_count=retry.retry_count,
            from_step_id=from_step_id,
        )
        return retry

    async def cancel_session(self, session_id: str) -> ExecutionSession:
        """
        Mark an unfinished session FAILED. An in-flight dispatch is not interrupted.

        Raises:
            SessionNotFoundError: If session doesn't exist
            InvalidSessionStateError: If session already finished
        """
        session = await self.get_session(session_id)
        if session.status.is_terminal:
            raise InvalidSessionStateError(
                session_id, session.status.value, "cannot cancel a finished session"
            )

        now = utcnow()
        result = ExecutionResult(
            plan_id=session.plan_id,
            step_results=session.step_results,
            success=False,
            error=CANCELLED_MESSAGE,
            started_at=session.created_at,
            completed_at=now,
        )
        session = await self.storage.update_session(
            session_id,
            status=SessionStatus.FAILED,
            pending_input=None,
            result=result,
            completed_at=now,
        )
        logger.info("session_cancelled", session_id=session_id)
        return session

    # ===================
    # Driving
    # ===================

    async def _drive(self, session: ExecutionSession) -> ExecutionResult:
        """Run a RUNNING session from its current_step_id and record the outcome."""
        plan = session.plan
        results: list[StepResult] = list(session.step_results)

        last = results[-1] if results else None
        if last is not None and not last.success:
            # Crashed after recording a failure: nothing more to run
            return await self._finish(session, self._failed_result(session, results, last.error))

        start_step_id = session.current_step_id
        if any(r.step_id == start_step_id for r in results):
            start_step_id += 1

        # Fresh resolver, rebuilt from what storage says has happened
        resolver = ParameterResolver.from_step_results(results)
        context = copy.deepcopy(session.context)

        async def persist(step_result: StepResult, next_step_id: Optional[int]) -> None:
            results.append(step_result)
            await self.storage.update_session(
                session.id,
                step_results=list(results),
                context=copy.deepcopy(context),
                current_step_id=next_step_id if next_step_id is not None else step_result.step_id,
            )

        try:
            result = await self._executor_for(plan).run(
                plan,
                resolver,
                start_step_id=start_step_id,
                previous_results=session.step_results,
                context=context,
                suspend_on_input=True,
                on_step_complete=persist,
            )
        except (SessionNotFoundError, InvalidSessionStateError):
            raise
        except Exception as e:
            logger.exception("session_execution_errored", session_id=session.id)
            return await self._finish(session, self._failed_result(session, results, str(e) or type(e).__name__))

        if result.waiting_for_input is not None:
            pending = result.waiting_for_input
            await self.storage.update_session(
                session.id,
                status=SessionStatus.WAITING_INPUT,
                current_step_id=pending.step_id,
                pending_input=pending,
                context=copy.deepcopy(context),
                result=None,
            )
            logger.info("session_waiting_for_input", session_id=session.id, step_id=pending.step_id)
            return result

        return await self._finish(session, result, context)

    async def _finish(
        self,
        session: ExecutionSession,
        result: ExecutionResult,
        context: Optional[dict[str, Any]] = None,
    ) -> ExecutionResult:
        status = SessionStatus.COMPLETED if result.success else SessionStatus.FAILED
        fields: dict[str, Any] = {
            "status": status,
            "pending_input": None,
            "result": result,
            "completed_at": result.completed_at or utcnow(),
        }
        if context is not None:
            fields["context"] = copy.deepcopy(context)
        await self.storage.update_session(session.id, **fields)

        logger.info(
            "session_execution_finished",
            session_id=session.id,
            status=status.value,
            success=result.success,
            error=result.error,
        )
        return result

    @staticmethod
    def _failed_result(session: ExecutionSession, results: list[StepResult], error: Optional[str]) -> ExecutionResult:
        return ExecutionResult(
            plan_id=session.plan_id,
            step_results=list(results),
            success=False,
            error=error or "Execution failed",
            started_at=session.created_at,
            completed_at=utcnow(),
        )

    # ===================
    # Helpers
    # ===================

    @staticmethod
    def _coerce_input(step: Optional[UserInputStep], values: dict[str, Any]) -> dict[str, Any]:
        """Coerce values by schema field type and fill declared defaults."""
        if not isinstance(step, UserInputStep):
            return dict(values)

        coerced = dict(values)
        for input_field in step.input_schema.fields:
            if coerced.get(input_field.id) is not None:
                coerced[input_field.id] = coerce_field_value(input_field, coerced[input_field.id])
            elif input_field.default is not None:
                coerced[input_field.id] = input_field.default
        return coerced

    @staticmethod
    def _rebuild_context(plan: ExecutionPlan, results: list[StepResult]) -> dict[str, Any]:
        """Context as it stood after *results*: input values and condition outputs."""
        variables: dict[str, Any] = {}
        for step_result in results:
            if isinstance(step_result, UserInputResult):
                variables.update(step_result.values)
            elif isinstance(step_result, ConditionResult):
                step = plan.get_step(step_result.step_id)
                if isinstance(step, ConditionStep) and step.output_variable:
                    variables[step.output_variable] = step_result.evaluated_result
        return {"variables": variables} if variables else {}
