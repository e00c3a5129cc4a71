import asyncio

import pytest

from planexec.db.session import create_engine, create_session_factory, create_tables
from planexec.executors.base import DispatchResult
from planexec.plans.models import (
    ExecutionPlan,
    FunctionCallStep,
    InputField,
    InputSchema,
    UserInputStep,
    literal,
    reference,
)
from planexec.storage.file import FileSessionStorage
from planexec.storage.sql import SqlSessionStorage


class FakeProvider:
    """In-memory function provider with a handful of arithmetic functions."""

    def __init__(self):
        self.calls = []
        self.flaky_failures = 0

    async def has(self, name):
        return hasattr(self, f"_fn_{name}")

    async def execute(self, name, params):
        self.calls.append((name, params))
        fn = getattr(self, f"_fn_{name}", None)
        if fn is None:
            return DispatchResult(success=False, error=f"Unknown function: {name}")
        return await fn(**params)

    @property
    def called(self):
        return [name for name, _ in self.calls]

    async def _fn_add(self, a, b):
        return DispatchResult(success=True, result=a + b)

    async def _fn_multiply(self, a, b):
        return DispatchResult(success=True, result=a * b)

    async def _fn_divide(self, a, b):
        if b == 0:
            return DispatchResult(success=False, error="Division by zero")
        return DispatchResult(success=True, result=a / b)

    async def _fn_calculateBasePrice(self, quantity, unitPrice):
        return DispatchResult(success=True, result={"basePrice": quantity * unitPrice})

    async def _fn_calculateFinalPrice(self, basePrice, taxRate=0.08):
        return DispatchResult(success=True, result={"finalPrice": basePrice * (1 + taxRate)})

    async def _fn_getOrder(self):
        return DispatchResult(
            success=True,
            result={"items": [{"sku": "A-1", "qty": 2}], "total": 50},
        )

    async def _fn_fail(self):
        raise RuntimeError("boom")

    async def _fn_flaky(self, value):
        if self.flaky_failures > 0:
            self.flaky_failures -= 1
            return DispatchResult(success=False, error="temporarily unavailable")
        return DispatchResult(success=True, result=value)

    async def _fn_slow(self, seconds=1.0):
        await asyncio.sleep(seconds)
        return DispatchResult(success=True, result="done")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def chain_plan():
    """add(2, 3) -> multiply(step1, 4) = 20"""
    return ExecutionPlan(
        id="plan-chain",
        user_request="Add then multiply",
        steps=[
            FunctionCallStep(
                step_id=1,
                function_name="add",
                parameters={"a": literal(2), "b": literal(3)},
            ),
            FunctionCallStep(
                step_id=2,
                function_name="multiply",
                parameters={"a": reference("step.1.result"), "b": literal(4)},
            ),
        ],
    )


@pytest.fixture
def pricing_plan():
    """Two input steps then base and final price: 15 x 150 = 2250 -> 2430 with tax."""
    return ExecutionPlan(
        id="pricing-plan-v2",
        user_request="Quote an order",
        steps=[
            UserInputStep(
                step_id=1,
                description="How many units?",
                input_schema=InputSchema(fields=[
                    InputField(id="quantity", type="number", label="Quantity", required=True),
                ]),
            ),
            UserInputStep(
                step_id=2,
                description="Unit price?",
                input_schema=InputSchema(fields=[
                    InputField(id="unitPrice", type="number", label="Unit price", required=True),
                    InputField(id="currency", type="text", default="USD"),
                ]),
            ),
            FunctionCallStep(
                step_id=3,
                function_name="calculateBasePrice",
                parameters={
                    "quantity": reference("step.1.quantity"),
                    "unitPrice": reference("step.2.unitPrice"),
                },
            ),
            FunctionCallStep(
                step_id=4,
                function_name="calculateFinalPrice",
                parameters={"basePrice": reference("step.3.result.basePrice")},
            ),
        ],
    )


@pytest.fixture
def file_storage(tmp_path):
    return FileSessionStorage(tmp_path / "data")


@pytest.fixture
async def sql_storage(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/sessions.db")
    await create_tables(engine)
    yield SqlSessionStorage(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture(params=["file", "sql"])
async def storage(request, tmp_path):
    if request.param == "file":
        yield FileSessionStorage(tmp_path / "data")
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/sessions.db")
    await create_tables(engine)
    yield SqlSessionStorage(create_session_factory(engine))
    await engine.dispose()
