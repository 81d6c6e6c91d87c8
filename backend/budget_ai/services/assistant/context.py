"""Budget context aggregation for the assistant prompt.

Builds a two-month snapshot (current + previous calendar month) of a user's
budget. Spending and income are separated purely by the *type of the account*
a transaction belongs to, never by the sign of the amount or its category.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ... import models
from ...schemas.context import (
    AccountInfo,
    BudgetContext,
    CategoryBudget,
    CategorySpend,
    DraftTransactionInfo,
    FuturePurchaseInfo,
    LastMonthSummary,
    RecurringPaymentInfo,
    TransactionPreview,
)

logger = logging.getLogger(__name__)

RECENT_EXPENSE_LIMIT = 10
RECENT_INCOME_LIMIT = 5
LAST_MONTH_EXPENSE_LIMIT = 15
LAST_MONTH_INCOME_LIMIT = 5
RECURRING_LIMIT = 20
FUTURE_PURCHASE_LIMIT = 10
DRAFT_LIMIT = 10


# ==========================================
# 1. CALENDAR HELPERS
# ==========================================

@dataclass
class MonthWindow:
    month: str  # "YYYY-MM"
    start: date
    end: date


def month_window(year: int, month: int) -> MonthWindow:
    """First and last calendar day of a month."""
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1) - timedelta(days=1)
    else:
        end = date(year, month + 1, 1) - timedelta(days=1)
    return MonthWindow(month=f"{year:04d}-{month:02d}", start=start, end=end)


def resolve_months(today: date) -> Tuple[MonthWindow, MonthWindow]:
    """Returns (current month, previous month), handling the January rollover."""
    current = month_window(today.year, today.month)
    if today.month == 1:
        previous = month_window(today.year - 1, 12)
    else:
        previous = month_window(today.year, today.month - 1)
    return current, previous


# ==========================================
# 2. PURE AGGREGATION
# ==========================================

@dataclass
class AccountPartition:
    """Account ids split by account type. An id is in exactly one list."""
    expense_ids: List[str] = field(default_factory=list)
    income_ids: List[str] = field(default_factory=list)

    @property
    def all_ids(self) -> List[str]:
        return self.expense_ids + self.income_ids


def partition_accounts(accounts: Iterable[Any]) -> AccountPartition:
    partition = AccountPartition()
    for account in accounts:
        if account.type == "income":
            partition.income_ids.append(account.id)
        elif account.type == "expense":
            partition.expense_ids.append(account.id)
        else:
            logger.warning(f"[Context] Ignoring account {account.id} with unknown type {account.type!r}")
    return partition


def split_by_account(
    transactions: Sequence[Any],
    partition: AccountPartition,
) -> Tuple[List[Any], List[Any]]:
    """Split transactions into (expense side, income side), keeping order."""
    expense_ids = set(partition.expense_ids)
    income_ids = set(partition.income_ids)

    expenses, income = [], []
    for txn in transactions:
        if txn["account_id"] in expense_ids:
            expenses.append(txn)
        elif txn["account_id"] in income_ids:
            income.append(txn)
    return expenses, income


def sum_by_category(transactions: Iterable[Any]) -> Dict[str, float]:
    spending: Dict[str, float] = {}
    for txn in transactions:
        category_id = txn["category_id"]
        if category_id:
            spending[category_id] = spending.get(category_id, 0.0) + float(txn["amount"])
    return spending


def sum_allocations(allocations: Iterable[Any]) -> Dict[str, float]:
    """Total budget per category; a category may have several matching rows."""
    budgets: Dict[str, float] = {}
    for allocation in allocations:
        if allocation.category_id:
            budgets[allocation.category_id] = (
                budgets.get(allocation.category_id, 0.0) + float(allocation.monthly_budget or 0)
            )
    return budgets


def build_previews(
    transactions: Sequence[Any],
    category_names: Dict[str, str],
    limit: int,
) -> List[TransactionPreview]:
    return [
        TransactionPreview(
            description=txn["description"] or "Unknown",
            amount=float(txn["amount"]),
            category=category_names.get(txn["category_id"], "Uncategorized"),
            date=txn["date"],
        )
        for txn in transactions[:limit]
    ]


def empty_context(current: MonthWindow, previous: MonthWindow) -> BudgetContext:
    """Zero-valued context for a user without accounts."""
    return BudgetContext(
        current_month=current.month,
        last_month=LastMonthSummary(month=previous.month),
    )


def assemble_context(
    current: MonthWindow,
    previous: MonthWindow,
    partition: AccountPartition,
    allocations: Sequence[Any],
    categories: Sequence[Any],
    transactions: Sequence[Any],
    last_month_transactions: Sequence[Any],
) -> BudgetContext:
    """Joins budgets, spending and category names into a BudgetContext.

    Optional facets (accounts, recurring, future purchases, drafts) are
    attached by the caller.
    """
    category_names = {c.id: c.name for c in categories}
    category_budgets = sum_allocations(allocations)

    expenses, income = split_by_account(transactions, partition)
    last_expenses, last_income = split_by_account(last_month_transactions, partition)

    category_spending = sum_by_category(expenses)
    last_month_spending = sum_by_category(last_expenses)

    category_rows = []
    for cat in categories:
        budget = category_budgets.get(cat.id, 0.0)
        spent = category_spending.get(cat.id, 0.0)
        category_rows.append(CategoryBudget(
            name=cat.name,
            budget=budget,
            spent=spent,
            remaining=budget - spent,
        ))

    last_month_rows = [
        CategorySpend(name=cat.name, spent=last_month_spending[cat.id])
        for cat in categories
        if last_month_spending.get(cat.id, 0.0) > 0
    ]

    total_budget = sum(c.budget for c in category_rows)
    total_spent = sum(c.spent for c in category_rows)

    return BudgetContext(
        total_budget=total_budget,
        total_spent=total_spent,
        total_remaining=total_budget - total_spent,
        total_income=sum(float(t["amount"]) for t in income),
        categories=category_rows,
        recent_transactions=build_previews(expenses, category_names, RECENT_EXPENSE_LIMIT),
        recent_income_transactions=build_previews(income, category_names, RECENT_INCOME_LIMIT),
        current_month=current.month,
        last_month=LastMonthSummary(
            month=previous.month,
            total_spent=sum(c.spent for c in last_month_rows),
            total_income=sum(float(t["amount"]) for t in last_income),
            categories=last_month_rows,
            transactions=build_previews(last_expenses, category_names, LAST_MONTH_EXPENSE_LIMIT),
            income_transactions=build_previews(last_income, category_names, LAST_MONTH_INCOME_LIMIT),
        ),
    )


# ==========================================
# 3. DATA FETCHING HELPERS
# ==========================================

async def _fetch_accounts(db: AsyncSession, user_id: str) -> List[models.Account]:
    stmt = (
        select(models.Account)
        .where(models.Account.user_id == user_id)
        .order_by(models.Account.position, models.Account.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _fetch_allocations(db: AsyncSession, user_id: str, month: str) -> List[models.BudgetAllocation]:
    """Allocations for `month` plus standing ones (budget_month IS NULL)."""
    stmt = (
        select(models.BudgetAllocation)
        .where(
            models.BudgetAllocation.user_id == user_id,
            or_(
                models.BudgetAllocation.budget_month == month,
                models.BudgetAllocation.budget_month.is_(None),
            ),
        )
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _fetch_root_categories(db: AsyncSession, user_id: str) -> List[models.UserCategory]:
    stmt = (
        select(models.UserCategory)
        .where(
            models.UserCategory.user_id == user_id,
            models.UserCategory.parent_id.is_(None),
        )
        .order_by(models.UserCategory.position, models.UserCategory.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _fetch_transactions(db: AsyncSession, account_ids: List[str], window: MonthWindow) -> List[Any]:
    """Confirmed transactions in the window, newest first."""
    stmt = (
        select(
            models.Transaction.account_id,
            models.Transaction.category_id,
            models.Transaction.amount,
            models.Transaction.description,
            models.Transaction.date,
        )
        .where(
            models.Transaction.account_id.in_(account_ids),
            models.Transaction.date >= window.start,
            models.Transaction.date <= window.end,
            models.Transaction.is_draft == False,
        )
        .order_by(models.Transaction.date.desc())
    )
    result = await db.execute(stmt)
    return list(result.mappings().all())


async def _fetch_balances(db: AsyncSession, account_ids: List[str]) -> Dict[str, float]:
    stmt = (
        select(models.AccountBalance.account_id, models.AccountBalance.balance)
        .where(models.AccountBalance.account_id.in_(account_ids))
    )
    result = await db.execute(stmt)
    return {row.account_id: float(row.balance) for row in result.all()}


async def _fetch_recurring(db: AsyncSession, user_id: str) -> List[models.RecurringPayment]:
    stmt = (
        select(models.RecurringPayment)
        .where(
            models.RecurringPayment.user_id == user_id,
            models.RecurringPayment.is_active == True,
        )
        .order_by(models.RecurringPayment.next_due_date.asc())
        .limit(RECURRING_LIMIT)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _fetch_future_purchases(db: AsyncSession, user_id: str) -> List[models.FuturePurchase]:
    stmt = (
        select(models.FuturePurchase)
        .where(
            models.FuturePurchase.user_id == user_id,
            models.FuturePurchase.status == "active",
        )
        .order_by(models.FuturePurchase.target_date.asc())
        .limit(FUTURE_PURCHASE_LIMIT)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _fetch_drafts(db: AsyncSession, account_ids: List[str]) -> List[models.Transaction]:
    stmt = (
        select(models.Transaction)
        .where(
            models.Transaction.account_id.in_(account_ids),
            models.Transaction.is_draft == True,
        )
        .order_by(models.Transaction.date.desc())
        .limit(DRAFT_LIMIT)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ==========================================
# 4. BUILDER
# ==========================================

@dataclass
class ContextBuild:
    context: BudgetContext
    degraded_facets: List[str] = field(default_factory=list)


class BudgetContextBuilder:
    """Aggregates accounts, budgets and transactions into a BudgetContext.

    Each sub-fetch runs on its own session so independent queries execute
    concurrently. Failures in accounts, allocations, categories or
    transactions propagate; the optional facets (balances, recurring
    payments, future purchases, drafts) degrade to empty.
    """

    OPTIONAL_FACETS = ("balances", "recurring_payments", "future_purchases", "draft_transactions")

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        if session_factory is None:
            from ...database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._today = today or date.today

    async def _run(self, fetch: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async with self._session_factory() as db:
            return await fetch(db, *args)

    async def build(self, user_id: str) -> BudgetContext:
        return (await self.build_report(user_id)).context

    async def build_report(self, user_id: str) -> ContextBuild:
        """Build the context and report which optional facets were dropped."""
        current, previous = resolve_months(self._today())

        accounts = await self._run(_fetch_accounts, user_id)
        partition = partition_accounts(accounts)
        account_ids = partition.all_ids

        if not account_ids:
            return ContextBuild(context=empty_context(current, previous))

        results = await asyncio.gather(
            self._run(_fetch_allocations, user_id, current.month),
            self._run(_fetch_root_categories, user_id),
            self._run(_fetch_transactions, account_ids, current),
            self._run(_fetch_transactions, account_ids, previous),
            self._run(_fetch_balances, account_ids),
            self._run(_fetch_recurring, user_id),
            self._run(_fetch_future_purchases, user_id),
            self._run(_fetch_drafts, account_ids),
            return_exceptions=True,
        )
        mandatory, optional = results[:4], results[4:]

        for result in mandatory:
            if isinstance(result, Exception):
                raise result
        allocations, categories, transactions, last_month_transactions = mandatory

        degraded: List[str] = []
        facets: Dict[str, Any] = {}
        for name, result in zip(self.OPTIONAL_FACETS, optional):
            if isinstance(result, Exception):
                logger.warning(f"[Context] Optional facet '{name}' unavailable for {user_id}: {result}")
                degraded.append(name)
                facets[name] = {} if name == "balances" else []
            else:
                facets[name] = result

        context = assemble_context(
            current,
            previous,
            partition,
            allocations,
            categories,
            transactions,
            last_month_transactions,
        )

        category_names = {c.id: c.name for c in categories}
        balances = facets["balances"]
        context.accounts = [
            AccountInfo(name=a.name, type=a.type, balance=balances.get(a.id))
            for a in accounts
        ]
        context.recurring_payments = [
            RecurringPaymentInfo(
                name=r.name,
                amount=float(r.amount),
                recurrence_type=r.recurrence_type,
                next_due_date=r.next_due_date,
                category=category_names.get(r.category_id),
            )
            for r in facets["recurring_payments"]
        ]
        context.future_purchases = [
            FuturePurchaseInfo(
                name=p.name,
                target_amount=float(p.target_amount),
                current_saved=float(p.current_saved or 0),
                target_date=p.target_date,
                urgency=p.urgency,
            )
            for p in facets["future_purchases"]
        ]
        context.draft_transactions = [
            DraftTransactionInfo(
                description=d.description or "Unknown",
                amount=float(d.amount),
                date=d.date,
            )
            for d in facets["draft_transactions"]
        ]

        logger.debug(
            f"[Context] Built context for {user_id}: {len(categories)} categories, "
            f"{len(transactions)} txns this month, {len(last_month_transactions)} last month"
        )
        return ContextBuild(context=context, degraded_facets=degraded)
