"""System prompt for the budget assistant."""

from typing import List, Optional

from ...schemas.context import BudgetContext, TransactionPreview

BASE_PROMPT = """You are a helpful AI budget assistant for a household finance app. Your name is "Budget AI".

Your capabilities:
- Analyze spending patterns and provide insights
- Compare this month with last month
- Suggest budget optimizations
- Answer questions about transactions, categories, income and upcoming payments
- Help plan savings for future purchases
- Provide practical savings tips

Guidelines:
- Be concise and friendly
- Use bullet points for lists
- Format currency amounts clearly (e.g., $1,234.56)
- When giving advice, be practical and actionable
- If you don't have enough context, ask clarifying questions
- Never provide specific investment advice - suggest consulting a financial advisor for that
- Keep responses focused on budgeting and personal finance"""

ACKNOWLEDGEMENT = (
    "I understand! I'm Budget AI, your personal finance assistant. I'm here to help you "
    "analyze your spending, optimize your budget, and provide practical financial advice. "
    "How can I help you today?"
)


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _transaction_lines(transactions: List[TransactionPreview], empty: str) -> str:
    if not transactions:
        return empty
    return "\n".join(
        f"- {t.date.isoformat()}: {t.description} - {_money(t.amount)} ({t.category})"
        for t in transactions
    )


def generate_system_prompt(context: Optional[BudgetContext] = None) -> str:
    """Build the system prompt, grounded in `context` when available."""
    if context is None:
        return BASE_PROMPT

    sections = [
        f"Current Budget Context ({context.current_month}):\n"
        f"- Total Budget: {_money(context.total_budget)}\n"
        f"- Total Spent: {_money(context.total_spent)}\n"
        f"- Remaining: {_money(context.total_remaining)}\n"
        f"- Income This Month: {_money(context.total_income)}",
    ]

    if context.categories:
        sections.append("Categories (This Month):\n" + "\n".join(
            f"- {c.name}: Budget {_money(c.budget)}, Spent {_money(c.spent)}, Remaining {_money(c.remaining)}"
            for c in context.categories
        ))

    sections.append(
        "Recent Transactions (This Month):\n"
        + _transaction_lines(context.recent_transactions, "No transactions this month yet.")
    )
    if context.recent_income_transactions:
        sections.append(
            "Recent Income (This Month):\n"
            + _transaction_lines(context.recent_income_transactions, "")
        )

    last = context.last_month
    if last is not None:
        lines = [
            f"Last Month ({last.month}):",
            f"- Total Spent: {_money(last.total_spent)}",
            f"- Total Income: {_money(last.total_income)}",
        ]
        lines.extend(f"- {c.name}: Spent {_money(c.spent)}" for c in last.categories)
        sections.append("\n".join(lines))
        sections.append(
            "Transactions (Last Month):\n"
            + _transaction_lines(last.transactions, "No transactions last month.")
        )

    if context.accounts:
        sections.append("Accounts:\n" + "\n".join(
            f"- {a.name} ({a.type})" + (f": balance {_money(a.balance)}" if a.balance is not None else "")
            for a in context.accounts
        ))

    if context.recurring_payments:
        sections.append("Upcoming Recurring Payments:\n" + "\n".join(
            f"- {r.name}: {_money(r.amount)} {r.recurrence_type}, next due {r.next_due_date.isoformat()}"
            + (f" ({r.category})" if r.category else "")
            for r in context.recurring_payments
        ))

    if context.future_purchases:
        sections.append("Saving For:\n" + "\n".join(
            f"- {p.name}: {_money(p.current_saved)} of {_money(p.target_amount)} saved, "
            f"target {p.target_date.isoformat()}, urgency {p.urgency}/5"
            for p in context.future_purchases
        ))

    if context.draft_transactions:
        sections.append("Draft Transactions Awaiting Review:\n" + "\n".join(
            f"- {d.date.isoformat()}: {d.description} - {_money(d.amount)}"
            for d in context.draft_transactions
        ))

    return BASE_PROMPT + "\n\n" + "\n\n".join(sections)
