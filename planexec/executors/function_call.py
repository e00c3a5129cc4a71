"""
FunctionCallHandler - Dispatches a function call step to the provider.

Flow:
    1. Resolve the step's parameters against earlier results
    2. Call provider.execute(function_name, params), raced against the
       per-step timeout when one is configured
    3. Record success/result or failure/error

Every failure (bad reference, timeout, provider error or exception) ends up
in the returned FunctionCallResult's ``error``; nothing escapes.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

from planexec.errors import DispatchError, ParameterResolutionError, StepTimeoutError
from planexec.executors.base import (
    BaseStepHandler,
    DispatchResult,
    FunctionCallResult,
    FunctionProvider,
    StepContext,
)
from planexec.logging import get_logger
from planexec.plans.models import FunctionCallStep, StepType

logger = get_logger(__name__)


class FunctionCallHandler(BaseStepHandler):
    """Handler for FUNCTION_CALL steps."""

    def __init__(self, provider: FunctionProvider, timeout_ms: int = 0):
        """
        Args:
            provider: Capability that actually runs functions
            timeout_ms: Per-call timeout in milliseconds, 0 for none
        """
        self.provider = provider
        self.timeout_ms = timeout_ms

    @property
    def step_type(self) -> StepType:
        return StepType.FUNCTION_CALL

    async def execute(self, step: FunctionCallStep, ctx: StepContext) -> FunctionCallResult:
        try:
            params = ctx.resolver.resolve_all(step.parameters)
        except ParameterResolutionError as e:
            logger.warning(
                "parameter_resolution_failed",
                step_id=step.step_id,
                function_name=step.function_name,
                code=e.code,
                error=e.message,
            )
            return self._failed(step, {}, e.message)

        try:
            reply = await self._dispatch(step, params)
        except StepTimeoutError as e:
            logger.warning("step_timed_out", step_id=step.step_id, timeout_ms=self.timeout_ms)
            return self._failed(step, params, e.message)
        except Exception as e:
            error = DispatchError(step.function_name, str(e) or type(e).__name__)
            logger.warning("dispatch_raised", step_id=step.step_id, error=error.message)
            return self._failed(step, params, error.message)

        if not reply.success:
            error = DispatchError(step.function_name, reply.error or "Function execution failed")
            return self._failed(step, params, error.message)

        return FunctionCallResult(
            step_id=step.step_id,
            success=True,
            function_name=step.function_name,
            parameters=params,
            result=reply.result,
        )

    async def _dispatch(self, step: FunctionCallStep, params: dict[str, Any]) -> DispatchResult:
        call = self.provider.execute(step.function_name, params)
        if self.timeout_ms <= 0:
            return self._as_dispatch_result(await call)
        try:
            reply = await asyncio.wait_for(call, timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.step_id, step.function_name, self.timeout_ms)
        return self._as_dispatch_result(reply)

    @staticmethod
    def _as_dispatch_result(reply: Any) -> DispatchResult:
        """Accept a DispatchResult or a {success, result, error} mapping."""
        if isinstance(reply, DispatchResult):
            return reply
        if isinstance(reply, Mapping) and "success" in reply:
            return DispatchResult(
                success=bool(reply["success"]),
                result=reply.get("result"),
                error=reply.get("error"),
            )
        raise TypeError(f"Unexpected provider reply of type {type(reply).__name__}")

    def _failed(self, step: FunctionCallStep, params: dict[str, Any], error: str) -> FunctionCallResult:
        return FunctionCallResult(
            step_id=step.step_id,
            success=False,
            function_name=step.function_name,
            parameters=params,
            error=error,
        )
