"""
UserInputHandler - Collects field values for a user input step.

Used only on the non-session path (StepExecutor.execute). Session-driven
runs suspend at user input steps instead of calling this handler.

For every field in the step's schema the handler asks the injected
InputRequester for component "field-<id>" on surface "user-input-<stepId>"
and coerces the answer by field type:

    number  -> float (int when integral); unparsable -> step fails
    boolean -> "true" / "1" / "yes" are True, other strings False
    date    -> ISO date "YYYY-MM-DD"; unparsable -> step fails
"""

from datetime import date, datetime
from typing import Any, Optional

from planexec.errors import InputRequiredError
from planexec.executors.base import (
    BaseStepHandler,
    InputRequester,
    StepContext,
    UserInputResult,
    component_id_for,
    surface_id_for,
)
from planexec.logging import get_logger
from planexec.plans.models import InputField, StepType, UserInputStep

logger = get_logger(__name__)


class InvalidFieldValue(ValueError):
    pass


def coerce_field_value(input_field: InputField, value: Any) -> Any:
    """Convert a raw answer to the field's declared type."""
    if input_field.type == "number":
        if isinstance(value, bool):
            raise InvalidFieldValue(f'Invalid number value for field "{input_field.id}": {value}')
        if isinstance(value, (int, float)):
            return value
        try:
            number = float(str(value).strip())
        except ValueError:
            raise InvalidFieldValue(f'Invalid number value for field "{input_field.id}": {value}')
        return int(number) if number.is_integer() else number

    if input_field.type == "boolean":
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    if input_field.type == "date":
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        try:
            return datetime.fromisoformat(str(value).strip()).date().isoformat()
        except ValueError:
            raise InvalidFieldValue(f'Invalid date value for field "{input_field.id}": {value}')

    # text, single_select, multi_select pass through
    return value


class UserInputHandler(BaseStepHandler):
    """Handler for USER_INPUT steps."""

    def __init__(self, requester: Optional[InputRequester] = None):
        self.requester = requester

    @property
    def step_type(self) -> StepType:
        return StepType.USER_INPUT

    async def execute(self, step: UserInputStep, ctx: StepContext) -> UserInputResult:
        """
        Collect values for every schema field.

        Raises:
            InputRequiredError: no requester is configured, or it cannot
                                answer now. Callers turn this into a suspend.
        """
        surface_id = surface_id_for(step.step_id)
        if self.requester is None:
            raise InputRequiredError(step.step_id, surface_id)

        logger.info("requesting_user_input", step_id=step.step_id, surface_id=surface_id)

        values: dict[str, Any] = {}
        for input_field in step.input_schema.fields:
            try:
                payload = await self.requester.request_input(
                    surface_id, component_id_for(input_field.id)
                )
            except InputRequiredError as e:
                raise InputRequiredError(step.step_id, surface_id) from e
            except Exception as e:
                logger.warning("user_input_failed", step_id=step.step_id, error=str(e))
                return UserInputResult(step_id=step.step_id, success=False, error=str(e) or type(e).__name__)

            if not payload or payload.get(input_field.id) is None:
                continue
            try:
                values[input_field.id] = coerce_field_value(input_field, payload[input_field.id])
            except InvalidFieldValue as e:
                return UserInputResult(step_id=step.step_id, success=False, error=str(e))

        logger.info("user_input_received", step_id=step.step_id, field_count=len(values))
        return UserInputResult(step_id=step.step_id, success=True, values=values)
