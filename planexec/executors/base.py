"""
Base types shared by every step handler.

This module defines:
1. StepResult - the record a handler produces for one executed step
   (FunctionCallResult, UserInputResult, ConditionResult)
2. ExecutionResult - the record of one run of a plan
3. FunctionProvider / InputRequester - the external collaborators handlers call
4. BaseStepHandler - abstract class every handler inherits from

Design Principles:
- Every handler returns a StepResult (consistent interface)
- Handlers are stateless; run state lives in the StepContext passed in
- Step failures are captured in the result, never raised
- Results are pydantic models so sessions can persist them as JSON
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Annotated, Any, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, model_validator

from planexec.plans.models import ExecutionPlan, InputSchema, PlanStep, StepType

if TYPE_CHECKING:
    from planexec.engine.resolver import ParameterResolver


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===================
# Step Results
# ===================

class _StepResultBase(BaseModel):
    """
    Fields common to every step result.

    Attributes:
        step_id: The plan step this result belongs to
        success: Whether the step completed successfully
        error: Error message if success=False
        executed_at: When the step finished
    """
    step_id: int
    success: bool
    error: Optional[str] = None
    executed_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _failed_steps_carry_error(self):
        if not self.success and not self.error:
            raise ValueError("Failed steps must have an error message")
        return self

    def referenceable_value(self) -> tuple[bool, Any]:
        """(present, value) this result contributes to parameter resolution."""
        return False, None


class FunctionCallResult(_StepResultBase):
    """
    Examples:
        FunctionCallResult(step_id=1, success=True, function_name="add",
                           parameters={"a": 1, "b": 2}, result=3)
        FunctionCallResult(step_id=1, success=False, function_name="add",
                           error='Function "add" execution failed: boom')
    """
    type: Literal["function_call"] = "function_call"
    function_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: Any = None

    def referenceable_value(self) -> tuple[bool, Any]:
        return True, self.result


class UserInputResult(_StepResultBase):
    type: Literal["user_input"] = "user_input"
    values: dict[str, Any] = Field(default_factory=dict)

    def referenceable_value(self) -> tuple[bool, Any]:
        return True, self.values


class ConditionResult(_StepResultBase):
    """
    Outcome of a condition step.

    skipped_steps lists the targets of the branch that was NOT taken.
    Condition results are never referenceable from parameters.
    """
    type: Literal["condition"] = "condition"
    condition: str
    evaluated_result: bool = False
    executed_branch: Literal["on_true", "on_false", "none"] = "none"
    skipped_steps: list[int] = Field(default_factory=list)


StepResult = Annotated[
    Union[FunctionCallResult, UserInputResult, ConditionResult],
    Field(discriminator="type"),
]


# ===================
# Run Results
# ===================

class PendingInput(BaseModel):
    """Marker for the user input step a run is suspended on."""
    surface_id: str
    step_id: int
    input_schema: InputSchema = Field(default_factory=InputSchema)

    @classmethod
    def for_step(cls, step_id: int, input_schema: InputSchema) -> "PendingInput":
        return cls(
            surface_id=surface_id_for(step_id),
            step_id=step_id,
            input_schema=input_schema,
        )


class ExecutionResult(BaseModel):
    """
    Result of running a plan (or one leg of a resumed session).

    waiting_for_input is set when the run stopped at a user input step
    rather than finishing; success is then True and the run is not over.
    """
    plan_id: str
    step_results: list[StepResult] = Field(default_factory=list)
    final_result: Any = None
    success: bool = True
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    waiting_for_input: Optional[PendingInput] = None

    @property
    def is_waiting(self) -> bool:
        return self.waiting_for_input is not None


def surface_id_for(step_id: int) -> str:
    return f"user-input-{step_id}"


def component_id_for(field_id: str) -> str:
    return f"field-{field_id}"


# ===================
# External Collaborators
# ===================

@dataclass
class DispatchResult:
    """What a FunctionProvider returns for one call."""
    success: bool
    result: Any = None
    error: Optional[str] = None


class FunctionProvider(Protocol):
    """Capability the engine dispatches function call steps to."""

    async def has(self, name: str) -> bool: ...

    async def execute(self, name: str, params: dict[str, Any]) -> DispatchResult: ...


class InputRequester(Protocol):
    """
    Collaborator that asks a human for one component's value.

    Returns the answer payload; the field value is read from
    payload[<field id>]. Raises InputRequiredError when it cannot answer
    synchronously.
    """

    async def request_input(self, surface_id: str, component_id: str) -> dict[str, Any]: ...


# ===================
# Handlers
# ===================

@dataclass
class StepContext:
    """
    Per-run state handed to each handler.

    Attributes:
        plan: The plan being executed
        resolver: Results recorded so far in this run
        context: Serializable side state; condition output variables
                 live under context["variables"]
    """
    plan: ExecutionPlan
    resolver: "ParameterResolver"
    context: dict[str, Any] = field(default_factory=dict)


class BaseStepHandler(ABC):
    """
    Abstract base class for all step handlers.

    To create a new handler:
    1. Inherit from BaseStepHandler
    2. Implement step_type property
    3. Implement execute() method

    Example:
        class FunctionCallHandler(BaseStepHandler):
            @property
            def step_type(self) -> StepType:
                return StepType.FUNCTION_CALL

            async def execute(self, step, ctx: StepContext) -> StepResult:
                params = ctx.resolver.resolve_all(step.parameters)
                ...
    """

    @property
    @abstractmethod
    def step_type(self) -> StepType:
        """
        The type of step this handler handles.

        Used by the step executor to route steps to the correct handler.
        """

    @abstractmethod
    async def execute(self, step: PlanStep, ctx: StepContext) -> StepResult:
        """
        Execute one step.

        Returns:
            StepResult with success/failure status and output/error

        Raises:
            Should NOT raise, except InputRequiredError from the user
            input handler.
        """
