"""Tests for conditional branching."""
import pytest

from planexec.engine import ConditionalStepExecutor, ParameterResolver, StepExecutor, executor_for_plan
from planexec.errors import PlanValidationError
from planexec.plans.models import ConditionStep, ExecutionPlan, FunctionCallStep, literal, reference


def _call(step_id, name, **params):
    return FunctionCallStep(step_id=step_id, function_name=name, parameters=params)


def _branch_plan(a, b):
    """add(a, b); > 25 doubles it, otherwise halves it."""
    return ExecutionPlan(id="plan-branch", steps=[
        _call(1, "add", a=literal(a), b=literal(b)),
        ConditionStep(step_id=2, condition="step.1.result > 25", on_true=[3], on_false=[4]),
        _call(3, "multiply", a=reference("step.1.result"), b=literal(2)),
        _call(4, "divide", a=reference("step.1.result"), b=literal(2)),
    ])


@pytest.fixture
def executor(provider):
    return ConditionalStepExecutor(provider, step_timeout_ms=0)


class TestBranching:
    async def test_true_branch(self, executor, provider):
        result = await executor.execute(_branch_plan(10, 20))

        assert result.success is True
        assert result.final_result == 60
        assert provider.called == ["add", "multiply"]

        condition = result.step_results[1]
        assert condition.evaluated_result is True
        assert condition.executed_branch == "on_true"
        assert condition.skipped_steps == [4]

    async def test_false_branch(self, executor, provider):
        result = await executor.execute(_branch_plan(10, 5))

        assert result.final_result == 7.5
        assert provider.called == ["add", "divide"]
        assert result.step_results[1].executed_branch == "on_false"
        assert result.step_results[1].skipped_steps == [3]

    async def test_multi_step_branch(self, executor, provider):
        plan = ExecutionPlan(id="plan-multi", steps=[
            _call(1, "add", a=literal(5), b=literal(3)),
            ConditionStep(step_id=2, condition="step.1.result > 5", on_true=[3, 4], on_false=[5]),
            _call(3, "divide", a=reference("step.1.result"), b=literal(2)),
            _call(4, "add", a=reference("step.3.result"), b=literal(4.5)),
            _call(5, "multiply", a=reference("step.1.result"), b=literal(100)),
        ])
        result = await executor.execute(plan)

        assert result.final_result == 8.5
        assert provider.called == ["add", "divide", "add"]

    async def test_empty_branch_falls_through(self, executor, provider):
        plan = ExecutionPlan(id="plan-empty-branch", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            ConditionStep(step_id=2, condition="step.1.result == 2"),
            _call(3, "multiply", a=reference("step.1.result"), b=literal(3)),
        ])
        result = await executor.execute(plan)

        assert result.final_result == 6
        assert result.step_results[1].skipped_steps == []

    async def test_steps_after_both_branches_run(self, executor, provider):
        plan = _branch_plan(10, 20)
        plan.steps.append(_call(5, "add", a=literal(1), b=literal(1)))
        result = await executor.execute(plan)

        assert result.final_result == 2
        assert provider.called == ["add", "multiply", "add"]

    async def test_step_between_condition_and_branch_runs(self, executor, provider):
        plan = ExecutionPlan(id="plan-between", steps=[
            _call(1, "add", a=literal(10), b=literal(20)),
            ConditionStep(step_id=2, condition="step.1.result > 25", on_true=[4], on_false=[5]),
            _call(3, "add", a=literal(1), b=literal(1)),
            _call(4, "multiply", a=reference("step.1.result"), b=reference("step.3.result")),
            _call(5, "fail"),
        ])
        result = await executor.execute(plan)

        assert result.success is True
        assert [r.step_id for r in result.step_results] == [1, 2, 3, 4]
        assert result.final_result == 60
        assert provider.called == ["add", "add", "multiply"]


class TestNesting:
    @staticmethod
    def _nested_plan(a, b):
        return ExecutionPlan(id="plan-nested", steps=[
            _call(1, "add", a=literal(a), b=literal(b)),
            ConditionStep(step_id=2, condition="step.1.result > 25", on_true=[3], on_false=[6]),
            ConditionStep(step_id=3, condition="step.1.result > 100", on_true=[4], on_false=[5]),
            _call(4, "multiply", a=reference("step.1.result"), b=literal(10)),
            _call(5, "multiply", a=reference("step.1.result"), b=literal(2)),
            _call(6, "divide", a=reference("step.1.result"), b=literal(2)),
        ])

    async def test_inner_false_branch(self, executor):
        result = await executor.execute(self._nested_plan(10, 20))

        assert result.final_result == 60
        assert [r.step_id for r in result.step_results] == [1, 2, 3, 5]

    async def test_inner_true_branch(self, executor):
        result = await executor.execute(self._nested_plan(100, 20))

        assert result.final_result == 1200
        assert [r.step_id for r in result.step_results] == [1, 2, 3, 4]

    async def test_skipped_condition_skips_both_its_branches(self, executor):
        result = await executor.execute(self._nested_plan(10, 5))

        assert result.final_result == 7.5
        assert [r.step_id for r in result.step_results] == [1, 2, 6]


class TestConditionFailures:
    async def test_unresolvable_reference_fails_run(self, executor, provider):
        plan = ExecutionPlan(id="plan-bad-ref", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            ConditionStep(step_id=2, condition="step.7.result > 1", on_true=[3]),
            _call(3, "add", a=literal(1), b=literal(1)),
        ])
        result = await executor.execute(plan)

        assert result.success is False
        assert "Result for step 7 does not exist" in result.error
        assert provider.called == ["add"]

    async def test_unsupported_expression_fails_step(self, executor):
        plan = ExecutionPlan(id="plan-unsafe", steps=[
            ConditionStep(step_id=1, condition="__import__('os').getcwd()"),
        ])
        result = await executor.execute(plan)

        assert result.success is False
        assert "Unsupported condition expression" in result.error


class TestOutputVariables:
    async def test_output_variable_is_usable_later(self, executor, provider):
        plan = ExecutionPlan(id="plan-vars", steps=[
            _call(1, "add", a=literal(30), b=literal(20)),
            ConditionStep(step_id=2, condition="step.1.result > 25", output_variable="isLarge"),
            ConditionStep(
                step_id=3,
                condition="isLarge && step1Result !== 50",
                on_true=[4],
                on_false=[5],
            ),
            _call(4, "add", a=literal(0), b=literal(1)),
            _call(5, "add", a=literal(0), b=literal(2)),
        ])
        context = {}
        result = await executor.run(plan, ParameterResolver(), context=context)

        assert context["variables"] == {"isLarge": True}
        assert result.step_results[2].evaluated_result is False
        assert result.final_result == 2


class TestValidation:
    def test_missing_target(self, executor):
        plan = ExecutionPlan(id="plan-missing-target", steps=[
            ConditionStep(step_id=1, condition="true", on_true=[99]),
        ])
        with pytest.raises(PlanValidationError) as exc_info:
            executor.validate_plan(plan)
        assert "non-existent step 99" in exc_info.value.message

    def test_backward_target(self, executor):
        plan = ExecutionPlan(id="plan-backward", steps=[
            _call(1, "add", a=literal(1), b=literal(1)),
            ConditionStep(step_id=2, condition="true", on_false=[1]),
        ])
        with pytest.raises(PlanValidationError):
            executor.validate_plan(plan)


def test_executor_for_plan_picks_by_content(provider, chain_plan):
    assert type(executor_for_plan(chain_plan, provider, step_timeout_ms=0)) is StepExecutor
    assert isinstance(executor_for_plan(_branch_plan(1, 2), provider, step_timeout_ms=0), ConditionalStepExecutor)
