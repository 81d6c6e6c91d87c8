from datetime import date
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class CategoryBudget(BaseModel):
    """Budget vs. spend for one root category. `remaining` may go negative."""
    name: str
    budget: float = 0.0
    spent: float = 0.0
    remaining: float = 0.0


class CategorySpend(BaseModel):
    name: str
    spent: float


class TransactionPreview(BaseModel):
    description: str
    amount: float
    category: str
    date: date


class LastMonthSummary(BaseModel):
    month: str
    total_spent: float = Field(0.0, alias="totalSpent")
    total_income: float = Field(0.0, alias="totalIncome")
    categories: List[CategorySpend] = []
    transactions: List[TransactionPreview] = []
    income_transactions: List[TransactionPreview] = Field([], alias="incomeTransactions")
    model_config = ConfigDict(populate_by_name=True)


class RecurringPaymentInfo(BaseModel):
    name: str
    amount: float
    recurrence_type: str = Field(..., alias="recurrenceType")
    next_due_date: date = Field(..., alias="nextDueDate")
    category: Optional[str] = None
    model_config = ConfigDict(populate_by_name=True)


class FuturePurchaseInfo(BaseModel):
    name: str
    target_amount: float = Field(..., alias="targetAmount")
    current_saved: float = Field(0.0, alias="currentSaved")
    target_date: date = Field(..., alias="targetDate")
    urgency: int = 3
    model_config = ConfigDict(populate_by_name=True)


class AccountInfo(BaseModel):
    name: str
    type: str
    balance: Optional[float] = None


class DraftTransactionInfo(BaseModel):
    description: str
    amount: float
    date: date


class BudgetContext(BaseModel):
    """Read-only financial snapshot injected into the assistant prompt.

    Built fresh for every request and never cached.
    """
    total_budget: float = Field(0.0, alias="totalBudget")
    total_spent: float = Field(0.0, alias="totalSpent")
    total_remaining: float = Field(0.0, alias="totalRemaining")
    total_income: float = Field(0.0, alias="totalIncome")
    categories: List[CategoryBudget] = []
    recent_transactions: List[TransactionPreview] = Field([], alias="recentTransactions")
    recent_income_transactions: List[TransactionPreview] = Field([], alias="recentIncomeTransactions")
    current_month: str = Field(..., alias="currentMonth")
    last_month: Optional[LastMonthSummary] = Field(None, alias="lastMonth")
    recurring_payments: List[RecurringPaymentInfo] = Field([], alias="recurringPayments")
    future_purchases: List[FuturePurchaseInfo] = Field([], alias="futurePurchases")
    accounts: List[AccountInfo] = []
    draft_transactions: List[DraftTransactionInfo] = Field([], alias="draftTransactions")
    model_config = ConfigDict(populate_by_name=True)
