"""Monthly token usage accounting.

Usage is read from two storage shapes: the current per-message table and the
legacy one-row-per-exchange chat log. Both readers sit behind one ledger so
callers never know which shape a user's history is in.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ... import models
from ...config import MONTHLY_TOKEN_LIMIT, USAGE_FAIL_OPEN
from ...errors import UsageUnavailable
from ...schemas.chat import UsageSummary
from .tokens import remaining_tokens, usage_percentage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_month(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1, tzinfo=now.tzinfo or timezone.utc)


class UsageReader(Protocol):
    async def tokens_since(self, db: AsyncSession, user_id: str, since: datetime) -> int:
        ...


class MessageUsageReader:
    """Sums tokens over the user's active messages."""

    async def tokens_since(self, db: AsyncSession, user_id: str, since: datetime) -> int:
        stmt = (
            select(func.coalesce(func.sum(
                func.coalesce(models.AIMessage.input_tokens, 0)
                + func.coalesce(models.AIMessage.output_tokens, 0)
            ), 0))
            .where(
                models.AIMessage.user_id == user_id,
                models.AIMessage.is_active == True,
                models.AIMessage.created_at >= since,
            )
        )
        return int(await db.scalar(stmt) or 0)


class LegacyChatLogReader:
    """Sums tokens over legacy chat log rows.

    Rows whose session was migrated into ai_sessions are skipped: their
    tokens already live on the migrated messages.
    """

    async def tokens_since(self, db: AsyncSession, user_id: str, since: datetime) -> int:
        migrated_sessions = (
            select(models.AISession.id)
            .where(models.AISession.user_id == user_id)
        )
        stmt = (
            select(func.coalesce(func.sum(
                func.coalesce(models.AIChatLog.input_tokens, 0)
                + func.coalesce(models.AIChatLog.output_tokens, 0)
            ), 0))
            .where(
                models.AIChatLog.user_id == user_id,
                models.AIChatLog.created_at >= since,
                or_(
                    models.AIChatLog.session_id.is_(None),
                    models.AIChatLog.session_id.not_in(migrated_sessions),
                ),
            )
        )
        return int(await db.scalar(stmt) or 0)


class UsageLedger:
    """Read-only monthly token usage per user."""

    def __init__(
        self,
        readers: Optional[Sequence[UsageReader]] = None,
        limit: int = MONTHLY_TOKEN_LIMIT,
        fail_open: bool = USAGE_FAIL_OPEN,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.readers: List[UsageReader] = list(readers) if readers is not None else [
            MessageUsageReader(),
            LegacyChatLogReader(),
        ]
        self.limit = limit
        self.fail_open = fail_open
        self._now = now or _utcnow

    async def monthly_usage(self, db: AsyncSession, user_id: str) -> int:
        """Tokens used by `user_id` since the start of the calendar month.

        A failed read counts as zero usage when the ledger fails open, so a
        transient accounting problem does not block chat.
        """
        since = start_of_month(self._now())
        try:
            total = 0
            for reader in self.readers:
                total += await reader.tokens_since(db, user_id, since)
            return total
        except SQLAlchemyError as e:
            logger.error(f"[Usage] Failed to read monthly usage for {user_id}: {e}")
            await db.rollback()
            if self.fail_open:
                return 0
            raise UsageUnavailable("Unable to verify your token usage right now. Please try again.") from e

    def is_exhausted(self, used: int) -> bool:
        return used >= self.limit

    def summarize(self, used: int) -> UsageSummary:
        return UsageSummary(
            monthly_used=used,
            monthly_limit=self.limit,
            monthly_percentage=usage_percentage(used, self.limit),
            remaining=remaining_tokens(used, self.limit),
        )
