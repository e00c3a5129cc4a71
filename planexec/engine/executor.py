"""
Step Executor - Runs a plan's steps in order against a ParameterResolver.

This is the HEART of the engine. It:
1. Validates the plan (unique, strictly increasing step ids)
2. Routes each step to the handler registered for its StepType
3. Records successful results in the resolver for later references
4. Stops at the first failing step (fail-fast)
5. Stops at a user input step when asked to suspend, returning a
   waiting_for_input marker instead of a final result
6. Calls on_step_complete after every step so callers can persist

Design Principles:
- Steps execute sequentially (deterministic order)
- The executor holds no run state; everything lives in the resolver,
  the context dict and the returned ExecutionResult
- A resumed run is just run() with start_step_id and previous_results
"""

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, Optional

from planexec.config import get_settings
from planexec.engine.resolver import ParameterResolver
from planexec.errors import InputRequiredError, PlanValidationError
from planexec.executors.base import (
    BaseStepHandler,
    ConditionResult,
    ExecutionResult,
    FunctionProvider,
    InputRequester,
    PendingInput,
    StepContext,
    StepResult,
    utcnow,
)
from planexec.executors.function_call import FunctionCallHandler
from planexec.executors.user_input import UserInputHandler
from planexec.logging import get_logger
from planexec.plans.models import ExecutionPlan, PlanStep, StepType

logger = get_logger(__name__)

# Called after every executed step with (result, next step id or None)
StepCompleteHook = Callable[[StepResult, Optional[int]], Awaitable[None]]


class StepExecutor:
    """
    Linear plan executor.

    Usage:
        executor = StepExecutor(provider)

        # One-shot run (user input goes through the input requester)
        result = await executor.execute(plan)

        # Resumable run, as driven by SessionManager
        result = await executor.run(
            plan,
            ParameterResolver.from_step_results(previous),
            start_step_id=3,
            previous_results=previous,
            suspend_on_input=True,
            on_step_complete=persist,
        )
    """

    def __init__(
        self,
        provider: FunctionProvider,
        input_requester: Optional[InputRequester] = None,
        step_timeout_ms: Optional[int] = None,
    ):
        """
        Args:
            provider: Capability that runs function call steps
            input_requester: Asked for values on the non-session path
            step_timeout_ms: Per-step timeout; defaults to settings, 0 disables
        """
        if step_timeout_ms is None:
            step_timeout_ms = get_settings().step_timeout_ms

        self.provider = provider
        self.step_timeout_ms = step_timeout_ms

        self.handlers: dict[StepType, BaseStepHandler] = {
            StepType.FUNCTION_CALL: FunctionCallHandler(provider, step_timeout_ms),
            StepType.USER_INPUT: UserInputHandler(input_requester),
        }

    # ===================
    # Validation
    # ===================

    def validate_plan(self, plan: ExecutionPlan) -> None:
        """
        Raises:
            PlanValidationError: duplicate or non-increasing step ids
        """
        seen: set[int] = set()
        previous = 0
        for step in plan.steps:
            if step.step_id in seen:
                raise PlanValidationError(
                    f"Plan {plan.id} has duplicate step id {step.step_id}",
                    {"plan_id": plan.id, "step_id": step.step_id},
                )
            if step.step_id <= previous:
                raise PlanValidationError(
                    f"Plan {plan.id} step ids must be strictly increasing "
                    f"({step.step_id} follows {previous})",
                    {"plan_id": plan.id, "step_id": step.step_id},
                )
            seen.add(step.step_id)
            previous = step.step_id

    # ===================
    # Execution
    # ===================

    async def execute(self, plan: ExecutionPlan) -> ExecutionResult:
        """Run a plan from the start with a fresh resolver."""
        return await self.run(plan, ParameterResolver())

    async def run(
        self,
        plan: ExecutionPlan,
        resolver: ParameterResolver,
        *,
        start_step_id: Optional[int] = None,
        previous_results: Sequence[StepResult] = (),
        context: Optional[dict[str, Any]] = None,
        suspend_on_input: bool = False,
        on_step_complete: Optional[StepCompleteHook] = None,
    ) -> ExecutionResult:
        """
        Run a plan from start_step_id (default: the first step).

        Args:
            plan: Plan to execute
            resolver: Holds results of steps already executed
            start_step_id: First step to run; steps before it are not rerun
            previous_results: Results of earlier legs, carried into the result
            context: Mutable side state shared with handlers
            suspend_on_input: Stop at user input steps instead of asking
            on_step_complete: Awaited after every executed step

        Returns:
            ExecutionResult. waiting_for_input is set if the run suspended.

        Raises:
            PlanValidationError: if the plan is malformed
        """
        self.validate_plan(plan)

        step_results: list[StepResult] = list(previous_results)
        started_at = self._started_at(step_results)
        final_result = self._final_result(step_results)
        ctx = StepContext(plan=plan, resolver=resolver, context=context if context is not None else {})
        skipped = self._initial_skips(plan, step_results)

        logger.info(
            "plan_execution_started",
            plan_id=plan.id,
            steps=len(plan.steps),
            start_step_id=start_step_id,
            resuming=bool(step_results),
        )

        step = self._step_at_or_after(plan, start_step_id if start_step_id is not None else plan.first_step_id)
        while step is not None:
            if step.step_id in skipped:
                logger.debug("step_skipped", plan_id=plan.id, step_id=step.step_id)
                step = self._step_at_or_after(plan, step.step_id + 1)
                continue

            if step.type == StepType.USER_INPUT and suspend_on_input:
                return self._waiting(plan, step, step_results, final_result, started_at)

            logger.debug("step_started", plan_id=plan.id, step_id=step.step_id, type=step.type)
            try:
                step_result = await self._execute_step(step, ctx)
            except InputRequiredError:
                return self._waiting(plan, step, step_results, final_result, started_at)

            step_results.append(step_result)

            if not step_result.success:
                logger.error(
                    "step_failed",
                    plan_id=plan.id,
                    step_id=step.step_id,
                    type=step.type,
                    error=step_result.error,
                )
                if on_step_complete is not None:
                    await on_step_complete(step_result, None)
                return ExecutionResult(
                    plan_id=plan.id,
                    step_results=step_results,
                    final_result=final_result,
                    success=False,
                    error=f"Step {step.step_id} failed: {step_result.error}",
                    started_at=started_at,
                    completed_at=utcnow(),
                )

            present, value = step_result.referenceable_value()
            if present:
                resolver.set_result(step.step_id, value)
                final_result = value

            next_step = self._next_step(plan, step, step_result, skipped)
            logger.debug("step_completed", plan_id=plan.id, step_id=step.step_id)

            if on_step_complete is not None:
                await on_step_complete(step_result, next_step.step_id if next_step else None)
            step = next_step

        logger.info("plan_execution_completed", plan_id=plan.id, steps_completed=len(step_results))
        return ExecutionResult(
            plan_id=plan.id,
            step_results=step_results,
            final_result=final_result,
            success=True,
            started_at=started_at,
            completed_at=utcnow(),
        )

    async def _execute_step(self, step: PlanStep, ctx: StepContext) -> StepResult:
        handler = self.handlers.get(step.type)
        if handler is None:
            # Only condition steps lack a handler here
            return ConditionResult(
                step_id=step.step_id,
                success=False,
                condition=getattr(step, "condition", ""),
                error=(
                    f"Condition step {step.step_id} requires ConditionalStepExecutor; "
                    f"use executor_for_plan() to pick an executor for plans with conditions"
                ),
            )
        return await handler.execute(step, ctx)

    # ===================
    # Hooks for the conditional executor
    # ===================

    def _initial_skips(self, plan: ExecutionPlan, step_results: Sequence[StepResult]) -> set[int]:
        return set()

    def _next_step(
        self,
        plan: ExecutionPlan,
        step: PlanStep,
        step_result: StepResult,
        skipped: set[int],
    ) -> Optional[PlanStep]:
        return self._step_at_or_after(plan, step.step_id + 1)

    # ===================
    # Helpers
    # ===================

    @staticmethod
    def _step_at_or_after(plan: ExecutionPlan, step_id: int) -> Optional[PlanStep]:
        for step in plan.steps:
            if step.step_id >= step_id:
                return step
        return None

    @staticmethod
    def _started_at(step_results: Sequence[StepResult]) -> datetime:
        if step_results:
            return step_results[0].executed_at
        return utcnow()

    @staticmethod
    def _final_result(step_results: Sequence[StepResult]) -> Any:
        final_result = None
        for step_result in step_results:
            present, value = step_result.referenceable_value()
            if step_result.success and present:
                final_result = value
        return final_result

    def _waiting(
        self,
        plan: ExecutionPlan,
        step: PlanStep,
        step_results: list[StepResult],
        final_result: Any,
        started_at: datetime,
    ) -> ExecutionResult:
        pending = PendingInput.for_step(step.step_id, step.input_schema)
        logger.info(
            "execution_waiting_for_input",
            plan_id=plan.id,
            step_id=step.step_id,
            surface_id=pending.surface_id,
        )
        return ExecutionResult(
            plan_id=plan.id,
            step_results=step_results,
            final_result=final_result,
            success=True,
            started_at=started_at,
            waiting_for_input=pending,
        )


def format_result_for_display(result: ExecutionResult) -> str:
    """Render an ExecutionResult as plain text, one block per step."""
    lines = [f"Execution result - plan {result.plan_id}", ""]

    for step_result in result.step_results:
        mark = "ok" if step_result.success else "FAILED"
        if step_result.type == StepType.FUNCTION_CALL.value:
            params = ", ".join(f"{k}={v!r}" for k, v in step_result.parameters.items())
            lines.append(f"[{mark}] Step {step_result.step_id}: {step_result.function_name}({params})")
            if step_result.success:
                lines.append(f"    -> result: {step_result.result!r}")
        elif step_result.type == StepType.USER_INPUT.value:
            lines.append(f"[{mark}] Step {step_result.step_id}: [User Input]")
            if step_result.success:
                values = ", ".join(f"{k}={v!r}" for k, v in step_result.values.items())
                lines.append(f"    -> input: {values}")
        else:
            lines.append(f"[{mark}] Step {step_result.step_id}: [Condition]")
            lines.append(f"    -> condition: {step_result.condition}")
            lines.append(f"    -> result: {str(step_result.evaluated_result).lower()}")
            lines.append(f"    -> branch: {step_result.executed_branch}")
            if step_result.skipped_steps:
                lines.append(f"    -> skipped: {', '.join(map(str, step_result.skipped_steps))}")
        if not step_result.success:
            lines.append(f"    -> error: {step_result.error}")

    lines.append("")
    if result.waiting_for_input is not None:
        lines.append(f"Waiting for input at step {result.waiting_for_input.step_id}")
    elif result.success:
        lines.append(f"Final result: {result.final_result!r}")
    else:
        lines.append(f"Execution failed: {result.error}")
    return "\n".join(lines)
