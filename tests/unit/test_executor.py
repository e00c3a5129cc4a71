"""Tests for the linear step executor."""
import pytest

from planexec.engine import ParameterResolver, StepExecutor, format_result_for_display
from planexec.errors import PlanValidationError
from planexec.plans.models import (
    ConditionStep,
    ExecutionPlan,
    FunctionCallStep,
    InputField,
    InputSchema,
    UserInputStep,
    literal,
    reference,
)


class FakeRequester:
    """Answers input requests from a fixed mapping of field id to value."""

    def __init__(self, answers):
        self.answers = answers
        self.requests = []

    async def request_input(self, surface_id, component_id):
        self.requests.append((surface_id, component_id))
        field_id = component_id[len("field-"):]
        return {field_id: self.answers.get(field_id)}


class StaticProvider:
    """Returns the same reply for every call."""

    def __init__(self, reply):
        self.reply = reply

    async def has(self, name):
        return True

    async def execute(self, name, params):
        return self.reply


def _call(step_id, name, **params):
    return FunctionCallStep(step_id=step_id, function_name=name, parameters=params)


class TestExecute:
    async def test_chained_references(self, provider, chain_plan):
        executor = StepExecutor(provider, step_timeout_ms=0)
        result = await executor.execute(chain_plan)

        assert result.success is True
        assert result.final_result == 20
        assert [r.step_id for r in result.step_results] == [1, 2]
        assert result.step_results[1].parameters == {"a": 5, "b": 4}
        assert result.completed_at is not None

    async def test_empty_plan(self, provider):
        result = await StepExecutor(provider, step_timeout_ms=0).execute(ExecutionPlan(id="empty"))
        assert result.success is True
        assert result.final_result is None
        assert result.step_results == []

    async def test_stops_at_first_failure(self, provider):
        plan = ExecutionPlan(id="plan-fail", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            _call(2, "divide", a=reference("step.1.result"), b=literal(0)),
            _call(3, "add", a=literal(5), b=literal(5)),
        ])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)

        assert result.success is False
        assert result.error == 'Step 2 failed: Function "divide" execution failed: Division by zero'
        assert result.final_result == 2
        assert len(result.step_results) == 2
        assert provider.called == ["add", "divide"]

    async def test_provider_exception_becomes_step_error(self, provider):
        plan = ExecutionPlan(id="plan-raise", steps=[_call(1, "fail")])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)

        assert result.success is False
        assert result.step_results[0].error == 'Function "fail" execution failed: boom'

    async def test_timeout(self, provider):
        plan = ExecutionPlan(id="plan-slow", steps=[_call(1, "slow", seconds=literal(1))])
        result = await StepExecutor(provider, step_timeout_ms=50).execute(plan)

        assert result.success is False
        assert "timed out after 50ms" in result.step_results[0].error

    async def test_zero_timeout_waits_for_slow_call(self, provider):
        plan = ExecutionPlan(id="plan-slow", steps=[_call(1, "slow", seconds=literal(0.2))])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)

        assert result.success is True
        assert result.final_result == "done"

    @pytest.mark.parametrize("reply, success, final_result, error", [
        ({"success": True, "result": 7}, True, 7, None),
        ({"success": False, "error": "nope"}, False, None, 'Function "lookup" execution failed: nope'),
        (42, False, None, 'Function "lookup" execution failed: Unexpected provider reply of type int'),
    ])
    async def test_provider_reply_shapes(self, reply, success, final_result, error):
        plan = ExecutionPlan(id="plan-reply", steps=[_call(1, "lookup")])
        result = await StepExecutor(StaticProvider(reply), step_timeout_ms=0).execute(plan)

        assert result.success is success
        assert result.final_result == final_result
        assert result.step_results[0].error == error

    async def test_unresolvable_reference_skips_dispatch(self, provider):
        plan = ExecutionPlan(id="plan-ref", steps=[
            _call(1, "add", a=reference("step.5.result"), b=literal(1)),
        ])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)

        assert result.success is False
        assert "Result for step 5 does not exist" in result.step_results[0].error
        assert provider.calls == []

    async def test_nested_result_reference(self, provider):
        plan = ExecutionPlan(id="plan-order", steps=[
            _call(1, "getOrder"),
            _call(2, "multiply", a=reference("step.1.result.items.0.qty"), b=reference("step.1.total")),
        ])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)
        assert result.final_result == 100

    async def test_condition_step_needs_conditional_executor(self, provider):
        plan = ExecutionPlan(id="plan-cond", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            ConditionStep(step_id=2, condition="step.1.result > 1"),
        ])
        result = await StepExecutor(provider, step_timeout_ms=0).execute(plan)

        assert result.success is False
        assert "ConditionalStepExecutor" in result.error

    async def test_step_complete_hook(self, provider, chain_plan):
        seen = []

        async def hook(step_result, next_step_id):
            seen.append((step_result.step_id, next_step_id))

        await StepExecutor(provider, step_timeout_ms=0).run(
            chain_plan, ParameterResolver(), on_step_complete=hook
        )
        assert seen == [(1, 2), (2, None)]

    async def test_start_step_id_with_previous_results(self, provider, chain_plan):
        first = await StepExecutor(provider, step_timeout_ms=0).execute(chain_plan)
        previous = first.step_results[:1]
        provider.calls.clear()

        result = await StepExecutor(provider, step_timeout_ms=0).run(
            chain_plan,
            ParameterResolver.from_step_results(previous),
            start_step_id=2,
            previous_results=previous,
        )
        assert result.final_result == 20
        assert provider.called == ["multiply"]
        assert len(result.step_results) == 2


class TestUserInput:
    @pytest.fixture
    def input_plan(self):
        return ExecutionPlan(id="plan-input", steps=[
            UserInputStep(step_id=1, input_schema=InputSchema(fields=[
                InputField(id="quantity", type="number"),
                InputField(id="express", type="boolean"),
            ])),
            _call(2, "multiply", a=reference("step.1.quantity"), b=literal(10)),
        ])

    async def test_no_requester_suspends(self, provider, input_plan):
        result = await StepExecutor(provider, step_timeout_ms=0).execute(input_plan)

        assert result.success is True
        assert result.is_waiting
        assert result.waiting_for_input.surface_id == "user-input-1"
        assert result.waiting_for_input.step_id == 1
        assert result.completed_at is None
        assert provider.calls == []

    async def test_suspend_on_input_ignores_requester(self, provider, input_plan):
        requester = FakeRequester({"quantity": "3"})
        executor = StepExecutor(provider, input_requester=requester, step_timeout_ms=0)
        result = await executor.run(input_plan, ParameterResolver(), suspend_on_input=True)

        assert result.is_waiting
        assert requester.requests == []

    async def test_requester_values_are_coerced(self, provider, input_plan):
        requester = FakeRequester({"quantity": "3", "express": "yes"})
        executor = StepExecutor(provider, input_requester=requester, step_timeout_ms=0)
        result = await executor.execute(input_plan)

        assert result.success is True
        assert result.step_results[0].values == {"quantity": 3, "express": True}
        assert result.final_result == 30
        assert requester.requests == [
            ("user-input-1", "field-quantity"),
            ("user-input-1", "field-express"),
        ]

    async def test_invalid_number_fails_step(self, provider, input_plan):
        requester = FakeRequester({"quantity": "many"})
        executor = StepExecutor(provider, input_requester=requester, step_timeout_ms=0)
        result = await executor.execute(input_plan)

        assert result.success is False
        assert 'Invalid number value for field "quantity"' in result.error


class TestValidation:
    def test_duplicate_step_ids(self, provider):
        plan = ExecutionPlan(id="plan-dup", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            _call(1, "add", a=literal(1), b=literal(1)),
        ])
        with pytest.raises(PlanValidationError):
            StepExecutor(provider, step_timeout_ms=0).validate_plan(plan)

    def test_decreasing_step_ids(self, provider):
        plan = ExecutionPlan(id="plan-order", steps=[
            _call(2, "add", a=literal(1), b=literal(1)),
            _call(1, "add", a=literal(1), b=literal(1)),
        ])
        with pytest.raises(PlanValidationError):
            StepExecutor(provider, step_timeout_ms=0).validate_plan(plan)


async def test_format_result_for_display(provider, chain_plan):
    result = await StepExecutor(provider, step_timeout_ms=0).execute(chain_plan)
    text = format_result_for_display(result)

    assert "Step 1: add(a=2, b=3)" in text
    assert "Final result: 20" in text
