import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# BUDGET DATA (read by the context builder)
# ==========================================

class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)  # "income" or "expense"
    position = Column(Integer, default=0)

    balance = relationship("AccountBalance", back_populates="account", uselist=False)


class AccountBalance(Base):
    __tablename__ = "account_balances"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    balance = Column(Float, default=0.0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    account = relationship("Account", back_populates="balance")


class UserCategory(Base):
    __tablename__ = "user_categories"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True)
    name = Column(String, nullable=False)
    parent_id = Column(String(36), ForeignKey("user_categories.id"), nullable=True)  # NULL = root category
    position = Column(Integer, default=0)


class BudgetAllocation(Base):
    __tablename__ = "budget_allocations"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    category_id = Column(String(36), ForeignKey("user_categories.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True)
    monthly_budget = Column(Float, default=0.0, nullable=False)
    budget_month = Column(String(7), nullable=True)  # "YYYY-MM", NULL = standing allocation


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False)
    category_id = Column(String(36), ForeignKey("user_categories.id"), nullable=True)
    date = Column(Date, index=True, nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(String, default="")
    is_draft = Column(Boolean, default=False, nullable=False)  # voice-captured, awaiting review


class RecurringPayment(Base):
    __tablename__ = "recurring_payments"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(String(36), ForeignKey("user_categories.id"), nullable=True)
    name = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    recurrence_type = Column(String, nullable=False)  # daily, weekly, monthly, yearly
    next_due_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class FuturePurchase(Base):
    __tablename__ = "future_purchases"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    name = Column(String, nullable=False)
    target_amount = Column(Float, nullable=False)
    current_saved = Column(Float, default=0.0, nullable=False)
    urgency = Column(Integer, default=3, nullable=False)  # 1 (low) .. 5 (critical)
    target_date = Column(Date, nullable=False)
    status = Column(String, default="active", nullable=False)  # active, completed, cancelled, paused


# ==========================================
# ASSISTANT CONVERSATIONS
# ==========================================

class AISession(Base):
    __tablename__ = "ai_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String(36), index=True, nullable=False)
    title = Column(String, default="New Conversation", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    is_archived = Column(Boolean, default=False, nullable=False)

    messages = relationship("AIMessage", back_populates="session")


class AIMessage(Base):
    __tablename__ = "ai_messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence_num", name="uq_ai_messages_session_sequence"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String, ForeignKey("ai_sessions.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    role = Column(String, nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    parent_id = Column(String(36), ForeignKey("ai_messages.id", ondelete="SET NULL"), nullable=True)
    sequence_num = Column(Integer, nullable=False)

    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)

    included_budget_context = Column(Boolean, default=False)
    model_used = Column(String, nullable=True)
    response_time_ms = Column(Integer, nullable=True)

    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    original_content = Column(Text, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    session = relationship("AISession", back_populates="messages")


class AIChatLog(Base):
    """Pre-sessions storage shape, still summed for monthly usage."""
    __tablename__ = "ai_chat_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    session_id = Column(String, nullable=True, index=True)
    user_message = Column(Text, nullable=False)
    assistant_response = Column(Text, nullable=False)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    included_budget_context = Column(Boolean, default=True)
    response_time_ms = Column(Integer, nullable=True)
    model_used = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
