"""
Engine package - Step execution orchestration.

The StepExecutor ties together the step handlers and the ParameterResolver
to run a plan deterministically, one step at a time.
"""

from planexec.engine.conditional import ConditionalStepExecutor, executor_for_plan
from planexec.engine.executor import StepCompleteHook, StepExecutor, format_result_for_display
from planexec.engine.resolver import ParameterResolver

__all__ = [
    "ParameterResolver",
    "StepExecutor",
    "ConditionalStepExecutor",
    "StepCompleteHook",
    "executor_for_plan",
    "format_result_for_display",
]
