import os

# Keep the app's module-level engine off Postgres and the real Gemini key out of tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["GEMINI_API_KEY"] = ""

from datetime import date
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from budget_ai import models
from budget_ai.database import Base, get_db
from budget_ai.errors import GenerationError
from budget_ai.main import app
from budget_ai.services.assistant import (
    BudgetContextBuilder,
    ChatOrchestrator,
    ConversationStore,
    RateLimitGovernor,
    UsageLedger,
    get_conversation_store,
    get_orchestrator,
)

TODAY = date(2026, 3, 15)
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeGenerator:
    model_name = "fake-model"

    def __init__(self, reply: str = "You have $520.00 left for food this month.", error: Optional[str] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, message, history, context=None):
        self.calls.append({"message": message, "history": list(history), "context": context})
        if self.error is not None:
            raise GenerationError(self.error)
        return self.reply


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'budget.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    return RateLimitGovernor(clock=clock)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def builder(session_factory):
    return BudgetContextBuilder(session_factory=session_factory, today=lambda: TODAY)


@pytest.fixture
def orchestrator(governor, builder, store, generator):
    return ChatOrchestrator(
        ledger=UsageLedger(limit=1_000_000, fail_open=True),
        governor=governor,
        builder=builder,
        store=store,
        generator=generator,
    )


@pytest.fixture
async def client(session_factory, orchestrator):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_conversation_store] = lambda: orchestrator.store

    # Unhandled errors are answered by the app handler instead of re-raised into the test
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-User-Id": USER_ID},
    ) as c:
        yield c

    app.dependency_overrides.clear()


async def seed_budget(db: AsyncSession, user_id: str = USER_ID) -> Dict[str, str]:
    """Two accounts, two root categories and transactions over three months.

    Current month (2026-03): Food spent 80 of 600, Rent spent 1200 of 1200,
    income 3000, one draft. Last month (2026-02): Food 80, income 2800.
    """
    main = models.Account(user_id=user_id, name="Main", type="expense", position=0)
    salary = models.Account(user_id=user_id, name="Salary", type="income", position=1)
    db.add_all([main, salary])
    await db.flush()

    food = models.UserCategory(user_id=user_id, account_id=main.id, name="Food", position=0)
    rent = models.UserCategory(user_id=user_id, account_id=main.id, name="Rent", position=1)
    db.add_all([food, rent])
    await db.flush()
    groceries = models.UserCategory(user_id=user_id, account_id=main.id, name="Groceries", parent_id=food.id)
    db.add(groceries)

    db.add_all([
        models.AccountBalance(account_id=main.id, user_id=user_id, balance=1520.0),
        models.AccountBalance(account_id=salary.id, user_id=user_id, balance=3000.0),
        # Food: 500 for March + 100 standing; the February row does not apply
        models.BudgetAllocation(user_id=user_id, category_id=food.id, account_id=main.id, monthly_budget=500, budget_month="2026-03"),
        models.BudgetAllocation(user_id=user_id, category_id=food.id, account_id=main.id, monthly_budget=100, budget_month=None),
        models.BudgetAllocation(user_id=user_id, category_id=food.id, account_id=main.id, monthly_budget=999, budget_month="2026-02"),
        models.BudgetAllocation(user_id=user_id, category_id=rent.id, account_id=main.id, monthly_budget=1200, budget_month=None),
        # March
        models.Transaction(user_id=user_id, account_id=main.id, category_id=food.id, date=date(2026, 3, 10), amount=50, description="Groceries"),
        models.Transaction(user_id=user_id, account_id=main.id, category_id=food.id, date=date(2026, 3, 12), amount=30, description="Takeaway"),
        models.Transaction(user_id=user_id, account_id=main.id, category_id=rent.id, date=date(2026, 3, 1), amount=1200, description="Rent"),
        models.Transaction(user_id=user_id, account_id=salary.id, category_id=None, date=date(2026, 3, 5), amount=3000, description="Paycheck"),
        models.Transaction(user_id=user_id, account_id=main.id, category_id=food.id, date=date(2026, 3, 14), amount=99, description="Voice note", is_draft=True),
        # February
        models.Transaction(user_id=user_id, account_id=main.id, category_id=food.id, date=date(2026, 2, 20), amount=80, description="Market"),
        models.Transaction(user_id=user_id, account_id=salary.id, category_id=None, date=date(2026, 2, 5), amount=2800, description="Paycheck"),
        # January, outside both windows
        models.Transaction(user_id=user_id, account_id=main.id, category_id=food.id, date=date(2026, 1, 31), amount=40, description="Old"),
        models.RecurringPayment(user_id=user_id, account_id=main.id, category_id=rent.id, name="Rent", amount=1200, recurrence_type="monthly", next_due_date=date(2026, 4, 1)),
        models.RecurringPayment(user_id=user_id, account_id=main.id, name="Gym", amount=40, recurrence_type="monthly", next_due_date=date(2026, 3, 20), is_active=False),
        models.FuturePurchase(user_id=user_id, name="Laptop", target_amount=1500, current_saved=300, urgency=2, target_date=date(2026, 9, 1)),
        models.FuturePurchase(user_id=user_id, name="Bike", target_amount=400, current_saved=400, target_date=date(2026, 1, 1), status="completed"),
    ])
    await db.commit()
    return {"main": main.id, "salary": salary.id, "food": food.id, "rent": rent.id}
