"""
Parameter resolution between steps.

The resolver records each step's result under its step id and turns the
parameter trees of later steps into plain values:

    literal("x")                       -> "x"
    reference("step.2.result")         -> whole result of step 2
    reference("step.2.result.a.0.b")   -> result["a"][0]["b"]
    reference("step.1.quantity")       -> result["quantity"]
    composite(a=literal(1), b=...)     -> {"a": 1, "b": ...}

Resolution is synchronous and has no side effects beyond the resolver's own
mapping. A resolver never outlives a suspension: sessions rebuild one with
ParameterResolver.from_step_results() on every resume.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from planexec.errors import (
    CannotAccessFieldError,
    FieldNotFoundError,
    InvalidReferenceFormatError,
    StepResultNotFoundError,
)
from planexec.executors.base import StepResult
from planexec.plans.models import (
    CompositeValue,
    LiteralValue,
    ParameterValue,
    ReferenceValue,
)

REFERENCE_FORMAT = "step.<stepId>.result, step.<stepId>.result.<path> or step.<stepId>.<path>"
REFERENCE_PATTERN = re.compile(r"^step\.([1-9]\d*)\.(.+)$")


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


class ParameterResolver:
    """
    Maps step id -> recorded result and resolves parameters against it.

    Presence is tracked by key membership, so a step that produced None
    is still "present" and resolves to None.

    Usage:
        resolver = ParameterResolver()
        resolver.set_result(1, {"a": {"b": [{"c": 1}]}})
        resolver.resolve(reference("step.1.a.b.0.c"))  # -> 1
    """

    def __init__(self) -> None:
        self._results: dict[int, Any] = {}

    @classmethod
    def from_step_results(cls, step_results: Iterable[StepResult]) -> "ParameterResolver":
        """
        Build a fresh resolver by replaying persisted step results.

        Only successful function call and user input results are
        referenceable; condition results carry no value.
        """
        resolver = cls()
        for step_result in step_results:
            present, value = step_result.referenceable_value()
            if step_result.success and present:
                resolver.set_result(step_result.step_id, value)
        return resolver

    # ------------------------------------------------------------------
    # Result store
    # ------------------------------------------------------------------

    def set_result(self, step_id: int, value: Any) -> None:
        self._results[step_id] = value

    def get_result(self, step_id: int) -> tuple[bool, Any]:
        """Return (present, value). A missing step returns (False, None)."""
        if step_id in self._results:
            return True, self._results[step_id]
        return False, None

    def has_result(self, step_id: int) -> bool:
        return step_id in self._results

    def available_steps(self) -> list[int]:
        return sorted(self._results)

    def snapshot(self) -> dict[int, Any]:
        """Shallow copy of the recorded results."""
        return dict(self._results)

    def reset(self) -> None:
        self._results.clear()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, param: ParameterValue) -> Any:
        """
        Resolve one parameter value.

        Raises:
            InvalidReferenceFormatError: reference string does not match the grammar
            StepResultNotFoundError: referenced step has no recorded result
            FieldNotFoundError: a path segment names a missing key or index
            CannotAccessFieldError: a path segment indexes into a scalar or null
        """
        if isinstance(param, LiteralValue):
            return param.value
        if isinstance(param, ReferenceValue):
            return self.resolve_reference(param.value)
        if isinstance(param, CompositeValue):
            return {name: self.resolve(child) for name, child in param.value.items()}
        raise TypeError(f"Unsupported parameter value: {param!r}")

    def resolve_all(self, params: Mapping[str, ParameterValue]) -> dict[str, Any]:
        """Resolve every entry; the first failure propagates and nothing is returned."""
        resolved: dict[str, Any] = {}
        for name, param in params.items():
            resolved[name] = self.resolve(param)
        return resolved

    def resolve_reference(self, ref: str) -> Any:
        """Resolve a raw reference string such as "step.2.result.basePrice"."""
        match = REFERENCE_PATTERN.match(ref) if isinstance(ref, str) else None
        if not match:
            raise InvalidReferenceFormatError(ref, REFERENCE_FORMAT)

        step_id = int(match.group(1))
        rest = match.group(2)

        present, value = self.get_result(step_id)
        if not present:
            raise StepResultNotFoundError(step_id, self.available_steps())

        if rest == "result":
            return value
        if rest.startswith("result."):
            rest = rest[len("result."):]

        return self._walk(ref, step_id, value, rest.split("."))

    def _walk(self, ref: str, step_id: int, value: Any, segments: list[str]) -> Any:
        current = value
        for segment in segments:
            if isinstance(current, Mapping):
                if segment not in current:
                    raise FieldNotFoundError(ref, step_id, segment)
                current = current[segment]
            elif isinstance(current, list):
                if not segment.isdigit() or int(segment) >= len(current):
                    raise FieldNotFoundError(ref, step_id, segment)
                current = current[int(segment)]
            else:
                raise CannotAccessFieldError(ref, step_id, segment, _type_name(current))
        return current
