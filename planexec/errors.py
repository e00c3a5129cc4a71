"""
Error taxonomy for the plan execution engine.

Two families live here:
1. Step-level errors (resolution, timeout, dispatch). These are caught by the
   executor and turned into the failing step's ``error`` text.
2. Session-level errors (missing session, wrong state). These are programmer
   errors and propagate to the caller.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class PlanExecError(Exception):
    """Base exception for every error raised by the engine."""

    code = "PLANEXEC_ERROR"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging or storage."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp,
        }


# ===================
# Parameter Resolution
# ===================

class ParameterResolutionError(PlanExecError):
    """A parameter could not be resolved against recorded step results."""

    code = "PARAMETER_RESOLUTION_ERROR"


class InvalidReferenceFormatError(ParameterResolutionError):
    code = "INVALID_REFERENCE_FORMAT"

    def __init__(self, reference: Any, expected_format: str):
        self.reference = reference
        self.expected_format = expected_format
        super().__init__(
            f'Invalid parameter reference format: "{reference}". Expected: {expected_format}',
            {"reference": reference, "expected_format": expected_format},
        )


class StepResultNotFoundError(ParameterResolutionError):
    code = "STEP_RESULT_NOT_FOUND"

    def __init__(self, step_id: int, available_steps: Optional[list[int]] = None):
        self.step_id = step_id
        self.available_steps = sorted(available_steps or [])
        super().__init__(
            f"Result for step {step_id} does not exist "
            f"(available steps: {self.available_steps})",
            {"step_id": step_id, "available_steps": self.available_steps},
        )


class FieldNotFoundError(ParameterResolutionError):
    code = "FIELD_NOT_FOUND"

    def __init__(self, reference: str, step_id: int, field: str):
        self.reference = reference
        self.step_id = step_id
        self.field = field
        super().__init__(
            f'Field "{field}" not found in step {step_id} result (reference "{reference}")',
            {"reference": reference, "step_id": step_id, "field": field},
        )


class CannotAccessFieldError(ParameterResolutionError):
    code = "CANNOT_ACCESS_FIELD"

    def __init__(self, reference: str, step_id: int, field: str, value_type: str):
        self.reference = reference
        self.step_id = step_id
        self.field = field
        super().__init__(
            f'Cannot access field "{field}" on a {value_type} value '
            f'in step {step_id} result (reference "{reference}")',
            {
                "reference": reference,
                "step_id": step_id,
                "field": field,
                "value_type": value_type,
            },
        )


# ===================
# Step Execution
# ===================

class StepTimeoutError(PlanExecError):
    code = "STEP_TIMEOUT"

    def __init__(self, step_id: int, function_name: str, timeout_ms: int):
        self.step_id = step_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Step {step_id} ({function_name}) execution timed out after {timeout_ms}ms",
            {"step_id": step_id, "function_name": function_name, "timeout_ms": timeout_ms},
        )


class DispatchError(PlanExecError):
    """Wrapped failure reported or raised by the function provider."""

    code = "DISPATCH_ERROR"

    def __init__(self, function_name: str, detail: str):
        self.function_name = function_name
        super().__init__(
            f'Function "{function_name}" execution failed: {detail}',
            {"function_name": function_name, "detail": detail},
        )


class InputRequiredError(PlanExecError):
    """
    Raised when a user input step cannot obtain its values.

    This is not a failure: session-aware callers convert it into a suspend.
    """

    code = "INPUT_REQUIRED"

    def __init__(self, step_id: Optional[int] = None, surface_id: Optional[str] = None):
        self.step_id = step_id
        self.surface_id = surface_id
        super().__init__(
            f"User input required for step {step_id}",
            {"step_id": step_id, "surface_id": surface_id},
        )


class PlanValidationError(PlanExecError):
    code = "PLAN_VALIDATION_ERROR"


# ===================
# Sessions
# ===================

class SessionNotFoundError(PlanExecError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})


class InvalidSessionStateError(PlanExecError):
    code = "INVALID_SESSION_STATE"

    def __init__(self, session_id: str, status: str, detail: str):
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Session {session_id} is {status}: {detail}",
            {"session_id": session_id, "status": status},
        )
