"""
Executors package - Step handler implementations.

Each handler handles one type of step (function_call, user_input, condition).
All handlers inherit from BaseStepHandler and return a StepResult.
"""

from planexec.executors.base import (
    BaseStepHandler,
    ConditionResult,
    DispatchResult,
    ExecutionResult,
    FunctionCallResult,
    FunctionProvider,
    InputRequester,
    PendingInput,
    StepContext,
    StepResult,
    UserInputResult,
)
from planexec.executors.condition import (
    ConditionEvaluationError,
    ConditionHandler,
    ExpressionConditionEvaluator,
)
from planexec.executors.function_call import FunctionCallHandler
from planexec.executors.user_input import UserInputHandler, coerce_field_value

__all__ = [
    "BaseStepHandler",
    "StepContext",
    "StepResult",
    "FunctionCallResult",
    "UserInputResult",
    "ConditionResult",
    "ExecutionResult",
    "PendingInput",
    "DispatchResult",
    "FunctionProvider",
    "InputRequester",
    "FunctionCallHandler",
    "UserInputHandler",
    "ConditionHandler",
    "ExpressionConditionEvaluator",
    "ConditionEvaluationError",
    "coerce_field_value",
]
