"""
Condition evaluation for CONDITION steps.

Conditions are boolean expressions over earlier results and variables:

    step.1.result > 25
    step.2.result.total >= 100 and approved
    step1Result > 5 && step.3.inStock === true

References (step.N, step.N.result, step.N.result.path, step.N.path) are
resolved through the run's ParameterResolver and bound as locals, so the
resolver's errors apply. ``stepNResult`` and ``stepN<Field>`` shorthands are
bound for every recorded result. JavaScript-style operators (&&, ||, !,
===, !==) and literals (true, false, null) are accepted.

SECURITY: expressions are evaluated with eval() and empty builtins after a
conservative character and keyword check. Only run plans from trusted
planners.
"""

import re
from typing import Any, Optional

from planexec.errors import ParameterResolutionError
from planexec.executors.base import BaseStepHandler, ConditionResult, StepContext
from planexec.logging import get_logger
from planexec.plans.models import ConditionStep, StepType

logger = get_logger(__name__)

_REFERENCE = re.compile(r"\bstep\.(\d+)((?:\.[A-Za-z0-9_]+)*)")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_ \t\n.\[\]()'\"<>=!&|+\-*/%,]")
_UNSAFE_WORDS = re.compile(r"\b(import|lambda|exec|eval|open|compile|globals|locals|getattr)\b")

_JS_OPERATORS = [
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]

_SAFE_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}


class ConditionEvaluationError(Exception):
    pass


class ExpressionConditionEvaluator:
    """
    Evaluates condition expressions with restricted eval.

    Usage:
        evaluator = ExpressionConditionEvaluator()
        if evaluator.supports(expr):
            ok = evaluator.evaluate(expr, resolver, variables)
    """

    def supports(self, condition: str) -> bool:
        if not condition or not condition.strip():
            return False
        if "__" in condition:
            return False
        if _UNSAFE_CHARS.search(condition):
            return False
        if _UNSAFE_WORDS.search(condition):
            return False
        return True

    def evaluate(self, condition: str, resolver, variables: Optional[dict[str, Any]] = None) -> bool:
        """
        Evaluate *condition* to a bool.

        Raises:
            ParameterResolutionError: a step reference cannot be resolved
            ConditionEvaluationError: the expression is unsupported or fails
        """
        if not self.supports(condition):
            raise ConditionEvaluationError(f"Unsupported condition expression: {condition}")

        scope: dict[str, Any] = dict(_SAFE_NAMES)
        scope.update(self._shorthand_names(resolver))
        scope.update(variables or {})

        bound: dict[str, Any] = {}

        def bind_reference(match: re.Match) -> str:
            path = match.group(2) or ".result"
            name = f"_ref_{len(bound)}"
            bound[name] = resolver.resolve_reference(f"step.{match.group(1)}{path}")
            return name

        expression = _REFERENCE.sub(bind_reference, condition)
        expression = self._translate_operators(expression)
        scope.update(bound)

        try:
            code = compile(expression.strip(), "<condition>", "eval")
            return bool(eval(code, {"__builtins__": {}}, scope))
        except Exception as e:
            raise ConditionEvaluationError(
                f'Condition "{condition}" could not be evaluated: {e}'
            ) from e

    def _shorthand_names(self, resolver) -> dict[str, Any]:
        names: dict[str, Any] = {}
        for step_id, value in resolver.snapshot().items():
            names[f"step{step_id}Result"] = value
            if isinstance(value, dict):
                for key, field_value in value.items():
                    if isinstance(key, str) and key.isidentifier():
                        names[f"step{step_id}{key[:1].upper()}{key[1:]}"] = field_value
        return names

    def _translate_operators(self, expression: str) -> str:
        # Leave quoted strings untouched
        parts = re.split(r"('[^']*'|\"[^\"]*\")", expression)
        for i in range(0, len(parts), 2):
            for pattern, replacement in _JS_OPERATORS:
                parts[i] = pattern.sub(replacement, parts[i])
        return "".join(parts)


class ConditionHandler(BaseStepHandler):
    """
    Handler for CONDITION steps.

    Records which branch was taken and which targets are skipped. Deciding
    where execution goes next is the conditional executor's job.
    """

    def __init__(self, evaluator: Optional[ExpressionConditionEvaluator] = None):
        self.evaluator = evaluator or ExpressionConditionEvaluator()

    @property
    def step_type(self) -> StepType:
        return StepType.CONDITION

    async def execute(self, step: ConditionStep, ctx: StepContext) -> ConditionResult:
        if not self.evaluator.supports(step.condition):
            return ConditionResult(
                step_id=step.step_id,
                success=False,
                condition=step.condition,
                error=f"Unsupported condition expression: {step.condition}",
            )

        variables = ctx.context.setdefault("variables", {})
        try:
            outcome = self.evaluator.evaluate(step.condition, ctx.resolver, variables)
        except ParameterResolutionError as e:
            logger.warning("condition_reference_failed", step_id=step.step_id, error=e.message)
            return ConditionResult(
                step_id=step.step_id, success=False, condition=step.condition, error=e.message
            )
        except ConditionEvaluationError as e:
            logger.warning("condition_evaluation_failed", step_id=step.step_id, error=str(e))
            return ConditionResult(
                step_id=step.step_id, success=False, condition=step.condition, error=str(e)
            )

        if step.output_variable:
            variables[step.output_variable] = outcome

        logger.info(
            "condition_evaluated",
            step_id=step.step_id,
            condition=step.condition,
            result=outcome,
        )
        return ConditionResult(
            step_id=step.step_id,
            success=True,
            condition=step.condition,
            evaluated_result=outcome,
            executed_branch="on_true" if outcome else "on_false",
            skipped_steps=list(step.on_false if outcome else step.on_true),
        )
