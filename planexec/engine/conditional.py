"""
Conditional Step Executor - StepExecutor with CONDITION step support.

After a condition step execution continues in step id order. Every target
of the untaken branch is skipped, and so is everything a skipped condition
would have branched to. Steps that belong to neither branch still run.

The skip set is rebuilt from persisted ConditionResults whenever a run
starts, so a session resumed after a pause or crash makes the same branch
decisions it made before.
"""

from collections.abc import Iterable, Sequence
from typing import Optional

from planexec.engine.executor import StepExecutor
from planexec.errors import PlanValidationError
from planexec.executors.base import (
    ConditionResult,
    FunctionProvider,
    InputRequester,
    StepResult,
)
from planexec.executors.condition import ConditionHandler, ExpressionConditionEvaluator
from planexec.logging import get_logger
from planexec.plans.models import ConditionStep, ExecutionPlan, PlanStep, StepType

logger = get_logger(__name__)


class ConditionalStepExecutor(StepExecutor):
    """
    Usage:
        executor = ConditionalStepExecutor(provider)
        result = await executor.execute(plan)
    """

    def __init__(
        self,
        provider: FunctionProvider,
        input_requester: Optional[InputRequester] = None,
        step_timeout_ms: Optional[int] = None,
        evaluator: Optional[ExpressionConditionEvaluator] = None,
    ):
        super().__init__(provider, input_requester, step_timeout_ms)
        self.handlers[StepType.CONDITION] = ConditionHandler(evaluator)

    def validate_plan(self, plan: ExecutionPlan) -> None:
        """
        Raises:
            PlanValidationError: a branch target is missing or does not come
                                 after its condition
        """
        super().validate_plan(plan)

        step_ids = set(plan.step_ids())
        for step in plan.steps:
            if step.type != StepType.CONDITION:
                continue
            for branch in ("on_true", "on_false"):
                for target in getattr(step, branch):
                    if target not in step_ids:
                        raise PlanValidationError(
                            f"Condition step {step.step_id} {branch} references "
                            f"non-existent step {target}",
                            {"plan_id": plan.id, "step_id": step.step_id, "target": target},
                        )
                    if target <= step.step_id:
                        raise PlanValidationError(
                            f"Condition step {step.step_id} {branch} target {target} "
                            f"must come after the condition",
                            {"plan_id": plan.id, "step_id": step.step_id, "target": target},
                        )

    def _initial_skips(self, plan: ExecutionPlan, step_results: Sequence[StepResult]) -> set[int]:
        skipped: set[int] = set()
        for step_result in step_results:
            if isinstance(step_result, ConditionResult) and step_result.success:
                skipped |= self._skip_closure(plan, step_result.skipped_steps)
        return skipped

    def _next_step(
        self,
        plan: ExecutionPlan,
        step: PlanStep,
        step_result: StepResult,
        skipped: set[int],
    ) -> Optional[PlanStep]:
        if not isinstance(step, ConditionStep) or not isinstance(step_result, ConditionResult):
            return super()._next_step(plan, step, step_result, skipped)

        skipped |= self._skip_closure(plan, step_result.skipped_steps)
        taken = step.on_true if step_result.evaluated_result else step.on_false

        logger.info(
            "condition_branch_selected",
            plan_id=plan.id,
            step_id=step.step_id,
            branch=step_result.executed_branch,
            executed_steps=list(taken),
            skipped_steps=step_result.skipped_steps,
        )
        return super()._next_step(plan, step, step_result, skipped)

    @staticmethod
    def _skip_closure(plan: ExecutionPlan, step_ids: Iterable[int]) -> set[int]:
        """Step ids plus, for skipped conditions, both their branches."""
        closure: set[int] = set()
        pending = list(step_ids)
        while pending:
            step_id = pending.pop()
            if step_id in closure:
                continue
            closure.add(step_id)
            step = plan.get_step(step_id)
            if isinstance(step, ConditionStep):
                pending.extend(step.on_true)
                pending.extend(step.on_false)
        return closure


def executor_for_plan(
    plan: ExecutionPlan,
    provider: FunctionProvider,
    input_requester: Optional[InputRequester] = None,
    step_timeout_ms: Optional[int] = None,
) -> StepExecutor:
    """Pick the conditional executor when the plan contains a condition step."""
    if plan.has_conditions():
        return ConditionalStepExecutor(provider, input_requester, step_timeout_ms)
    return StepExecutor(provider, input_requester, step_timeout_ms)
