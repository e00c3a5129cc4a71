"""
Plan models consumed by the execution engine.

A plan is produced by an external planner and is IMMUTABLE here. It holds:
- An ordered list of steps (function calls, user input, conditions)
- Parameter values that are literals, references to earlier step
  results, or composites of both

Key Design Decisions:
1. Steps are a closed discriminated union on ``type`` - the executor routes
   on StepType, never on which attributes a step happens to have
2. step_id is unique and strictly increasing - it IS the execution order
3. Parameter references use the wire grammar step.<id>.<path>
"""

import enum
import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


# ===================
# Enums
# ===================

class StepType(str, enum.Enum):
    """
    Types of steps a plan may contain.

    Each type has its own handler in planexec.executors.
    """
    FUNCTION_CALL = "function_call"  # Call a function through the provider
    USER_INPUT = "user_input"        # Ask a human for values (may suspend)
    CONDITION = "condition"          # Branch on a boolean expression


class PlanStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTABLE = "executable"
    INCOMPLETE = "incomplete"


# ===================
# Parameter Values
# ===================

class LiteralValue(BaseModel):
    """A value passed through unchanged."""
    type: Literal["literal"] = "literal"
    value: Any = None


class ReferenceValue(BaseModel):
    """A reference to an earlier step result, e.g. "step.2.result.basePrice"."""
    type: Literal["reference"] = "reference"
    value: str


class CompositeValue(BaseModel):
    """A mapping of field name to nested parameter values."""
    type: Literal["composite"] = "composite"
    value: dict[str, "ParameterValue"] = Field(default_factory=dict)


ParameterValue = Annotated[
    Union[LiteralValue, ReferenceValue, CompositeValue],
    Field(discriminator="type"),
]

CompositeValue.model_rebuild()


def literal(value: Any) -> LiteralValue:
    return LiteralValue(value=value)


def reference(path: str) -> ReferenceValue:
    return ReferenceValue(value=path)


def composite(**fields: Any) -> CompositeValue:
    return CompositeValue(value=fields)


# ===================
# User Input Schema
# ===================

class InputField(BaseModel):
    """One field a human is asked to fill in."""
    id: str
    type: Literal[
        "text", "number", "boolean", "date", "single_select", "multi_select"
    ] = "text"
    label: str = ""
    description: Optional[str] = None
    required: bool = False
    default: Any = None
    options: list[dict[str, Any]] = Field(default_factory=list)


class InputSchema(BaseModel):
    version: str = "1.0"
    fields: list[InputField] = Field(default_factory=list)


# ===================
# Steps
# ===================

class FunctionCallStep(BaseModel):
    type: Literal["function_call"] = "function_call"
    step_id: int = Field(..., gt=0)
    description: str = ""
    function_name: str
    parameters: dict[str, ParameterValue] = Field(default_factory=dict)


class UserInputStep(BaseModel):
    type: Literal["user_input"] = "user_input"
    step_id: int = Field(..., gt=0)
    description: str = ""
    input_schema: InputSchema = Field(default_factory=InputSchema)


class ConditionStep(BaseModel):
    """
    Branch on a boolean expression.

    on_true / on_false list the step ids of each branch. The other branch is
    skipped; every step outside it runs in step id order.
    """
    type: Literal["condition"] = "condition"
    step_id: int = Field(..., gt=0)
    description: str = ""
    condition: str
    on_true: list[int] = Field(default_factory=list)
    on_false: list[int] = Field(default_factory=list)
    output_variable: Optional[str] = None


PlanStep = Annotated[
    Union[FunctionCallStep, UserInputStep, ConditionStep],
    Field(discriminator="type"),
]


# ===================
# Plan
# ===================

class ExecutionPlan(BaseModel):
    """
    An ordered set of steps to execute.

    Example:
        plan = ExecutionPlan(
            id="plan-pricing-v2",
            user_request="Quote a laptop order",
            steps=[
                UserInputStep(step_id=1, input_schema=...),
                FunctionCallStep(
                    step_id=2,
                    function_name="calculateBasePrice",
                    parameters={"quantity": reference("step.1.quantity")},
                ),
            ],
        )
    """
    id: str
    user_request: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.EXECUTABLE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def get_step(self, step_id: int) -> Optional[PlanStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def step_ids(self) -> list[int]:
        return [step.step_id for step in self.steps]

    @property
    def first_step_id(self) -> int:
        """Id of the first step, or 0 for an empty plan."""
        return self.steps[0].step_id if self.steps else 0

    def next_step_id(self, after: int) -> Optional[int]:
        """Id of the first step declared after *after*, or None at the end."""
        for step in self.steps:
            if step.step_id > after:
                return step.step_id
        return None

    def has_conditions(self) -> bool:
        return any(step.type == StepType.CONDITION for step in self.steps)


# ===================
# Plan id versioning
# ===================

_VERSIONED_ID = re.compile(r"^(.+)-v(\d+)$")


def parse_plan_id(plan_id: str) -> tuple[str, Optional[int]]:
    """
    Split a plan id into its base id and version.

    "plan-abc-v3" -> ("plan-abc", 3)
    "plan-abc"    -> ("plan-abc", None)
    """
    match = _VERSIONED_ID.match(plan_id)
    if match:
        return match.group(1), int(match.group(2))
    return plan_id, None
