"""
Plans package - the immutable input the engine executes.
"""

from planexec.plans.models import (
    CompositeValue,
    ConditionStep,
    ExecutionPlan,
    FunctionCallStep,
    InputField,
    InputSchema,
    LiteralValue,
    ParameterValue,
    PlanStatus,
    PlanStep,
    ReferenceValue,
    StepType,
    UserInputStep,
    composite,
    literal,
    parse_plan_id,
    reference,
)

__all__ = [
    # Plan and steps
    "ExecutionPlan",
    "PlanStep",
    "FunctionCallStep",
    "UserInputStep",
    "ConditionStep",
    "InputField",
    "InputSchema",
    # Parameters
    "ParameterValue",
    "LiteralValue",
    "ReferenceValue",
    "CompositeValue",
    "literal",
    "reference",
    "composite",
    # Enums
    "StepType",
    "PlanStatus",
    # Helpers
    "parse_plan_id",
]
