"""Conversation sessions and messages.

Messages in a session carry a strictly increasing ``sequence_num``. A turn is
written as two consecutive numbers (user = n, assistant = n + 1) inside one
transaction; the ``(session_id, sequence_num)`` unique constraint turns a
concurrent collision into an IntegrityError, which is retried with a fresh
number.

Regeneration is a soft cut of the timeline: ``deactivate_from`` hides the
target message and everything after it, but rows are kept for history.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ... import models
from ...errors import SequenceConflict
from ...schemas.chat import ChatRole

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
DEFAULT_SESSION_LIMIT = 50


def derive_title(first_user_message: str) -> str:
    """Session title from the first user message."""
    text = " ".join(first_user_message.split())
    if not text:
        return "New Conversation"
    if len(text) <= TITLE_MAX_LENGTH:
        return text
    return text[:TITLE_MAX_LENGTH - 3] + "..."


@dataclass
class TurnTokens:
    input_tokens: int = 0
    output_tokens: int = 0
    included_budget_context: bool = False
    response_time_ms: Optional[int] = None
    model_used: Optional[str] = None


@dataclass
class TurnIds:
    user_message_id: str
    assistant_message_id: str
    user_sequence: int


@dataclass
class SessionSummary:
    id: str
    title: str
    message_count: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class ConversationStore:
    """Owns ai_sessions and ai_messages rows."""

    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_session(self, db: AsyncSession, session_id: str) -> Optional[models.AISession]:
        stmt = select(models.AISession).where(models.AISession.id == session_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        first_user_message: str,
    ) -> Optional[models.AISession]:
        """Create the session if missing, otherwise just touch ``updated_at``.

        Returns None when the id belongs to another user.
        """
        session = await self.get_session(db, session_id)
        if session is None:
            session = models.AISession(
                id=session_id,
                user_id=user_id,
                title=derive_title(first_user_message),
            )
            db.add(session)
            try:
                await db.commit()
                return session
            except IntegrityError:
                # Created concurrently by another turn: keep theirs
                await db.rollback()
                session = await self.get_session(db, session_id)
                if session is None:
                    raise

        if session.user_id != user_id:
            return None

        session.updated_at = models.utcnow()
        await db.commit()
        return session

    async def update_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        title: Optional[str] = None,
        is_archived: Optional[bool] = None,
    ) -> bool:
        """Rename and/or archive a session. Returns False when nothing matched."""
        values: Dict[str, Any] = {}
        if title is not None:
            values["title"] = title
        if is_archived is not None:
            values["is_archived"] = is_archived
        if not values:
            return True

        stmt = (
            update(models.AISession)
            .where(
                models.AISession.id == session_id,
                models.AISession.user_id == user_id,
            )
            .values(**values)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount > 0

    async def delete_session(self, db: AsyncSession, session_id: str, user_id: str) -> None:
        """Delete a session's messages, then the session itself."""
        await db.execute(
            delete(models.AIMessage).where(
                models.AIMessage.session_id == session_id,
                models.AIMessage.user_id == user_id,
            )
        )
        await db.execute(
            delete(models.AISession).where(
                models.AISession.id == session_id,
                models.AISession.user_id == user_id,
            )
        )
        await db.commit()
        logger.info(f"[Conversations] Deleted session {session_id} for {user_id}")

    async def list_sessions(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int = DEFAULT_SESSION_LIMIT,
    ) -> List[SessionSummary]:
        """Non-archived sessions, most recently updated first.

        ``message_count`` counts exchanges: active messages halved.
        """
        stmt = (
            select(models.AISession)
            .where(
                models.AISession.user_id == user_id,
                models.AISession.is_archived == False,
            )
            .order_by(models.AISession.updated_at.desc())
            .limit(limit)
        )
        sessions = list((await db.execute(stmt)).scalars().all())
        if not sessions:
            return []

        count_stmt = (
            select(models.AIMessage.session_id, func.count(models.AIMessage.id))
            .where(
                models.AIMessage.user_id == user_id,
                models.AIMessage.is_active == True,
                models.AIMessage.session_id.in_([s.id for s in sessions]),
            )
            .group_by(models.AIMessage.session_id)
        )
        counts = {session_id: count for session_id, count in (await db.execute(count_stmt)).all()}

        return [
            SessionSummary(
                id=s.id,
                title=s.title,
                message_count=counts.get(s.id, 0) // 2,
                created_at=s.created_at,
                updated_at=s.updated_at,
            )
            for s in sessions
        ]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_message(self, db: AsyncSession, message_id: str, user_id: str) -> Optional[models.AIMessage]:
        stmt = select(models.AIMessage).where(
            models.AIMessage.id == message_id,
            models.AIMessage.user_id == user_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def next_sequence(self, db: AsyncSession, session_id: str) -> int:
        """max(sequence_num) + 1 over every message of the session, active or not."""
        stmt = select(func.max(models.AIMessage.sequence_num)).where(
            models.AIMessage.session_id == session_id
        )
        current = await db.scalar(stmt)
        return (current or 0) + 1

    async def append_turn(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        user_text: str,
        assistant_text: str,
        parent_message_id: Optional[str] = None,
        tokens: Optional[TurnTokens] = None,
    ) -> TurnIds:
        """Write a user message and its reply as one transaction.

        Input tokens are booked on the user row and output tokens on the
        assistant row, so summing both columns counts each token once.
        """
        tokens = tokens or TurnTokens()

        for attempt in range(1, self.max_attempts + 1):
            sequence = await self.next_sequence(db, session_id)
            user_message = models.AIMessage(
                id=models.new_id(),
                session_id=session_id,
                user_id=user_id,
                role=ChatRole.USER.value,
                content=user_text,
                parent_id=parent_message_id,
                sequence_num=sequence,
                input_tokens=tokens.input_tokens,
                output_tokens=0,
                included_budget_context=tokens.included_budget_context,
            )
            assistant_message = models.AIMessage(
                id=models.new_id(),
                session_id=session_id,
                user_id=user_id,
                role=ChatRole.ASSISTANT.value,
                content=assistant_text,
                parent_id=user_message.id,
                sequence_num=sequence + 1,
                input_tokens=0,
                output_tokens=tokens.output_tokens,
                included_budget_context=tokens.included_budget_context,
                response_time_ms=tokens.response_time_ms,
                model_used=tokens.model_used,
            )
            db.add(user_message)
            db.add(assistant_message)
            await db.execute(
                update(models.AISession)
                .where(models.AISession.id == session_id)
                .values(updated_at=models.utcnow())
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    f"[Conversations] Sequence {sequence} already taken in {session_id} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying"
                )
                continue

            return TurnIds(
                user_message_id=user_message.id,
                assistant_message_id=assistant_message.id,
                user_sequence=sequence,
            )

        raise SequenceConflict(f"Could not allocate a sequence number in session {session_id}")

    async def edit_message(
        self,
        db: AsyncSession,
        message_id: str,
        user_id: str,
        new_content: str,
    ) -> bool:
        """Replace a message's content.

        ``original_content`` holds the version immediately before this edit,
        so after several edits it is the previous version, not the first one.
        """
        message = await self.get_message(db, message_id, user_id)
        if message is None:
            return False

        message.original_content = message.content
        message.content = new_content
        message.is_edited = True
        message.edited_at = models.utcnow()
        await db.commit()
        return True

    async def deactivate_from(self, db: AsyncSession, message_id: str, user_id: str) -> Optional[int]:
        """Hide the message and every later one in its session.

        Returns the number of rows deactivated, or None if the message does
        not exist for this user.
        """
        message = await self.get_message(db, message_id, user_id)
        if message is None:
            return None

        stmt = (
            update(models.AIMessage)
            .where(
                models.AIMessage.session_id == message.session_id,
                models.AIMessage.user_id == user_id,
                models.AIMessage.sequence_num >= message.sequence_num,
                models.AIMessage.is_active == True,
            )
            .values(is_active=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount

    async def tail_active(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        limit: int = 50,
    ) -> List[models.AIMessage]:
        """The last `limit` active messages of a session, oldest first."""
        stmt = (
            select(models.AIMessage)
            .where(
                models.AIMessage.session_id == session_id,
                models.AIMessage.user_id == user_id,
                models.AIMessage.is_active == True,
            )
            .order_by(models.AIMessage.sequence_num.desc())
            .limit(limit)
        )
        rows = list((await db.execute(stmt)).scalars().all())
        rows.reverse()
        return rows

    async def list_recent(self, db: AsyncSession, user_id: str, limit: int = 50) -> List[models.AIMessage]:
        """The user's latest active messages across sessions, oldest first."""
        stmt = (
            select(models.AIMessage)
            .where(
                models.AIMessage.user_id == user_id,
                models.AIMessage.is_active == True,
            )
            .order_by(models.AIMessage.created_at.desc(), models.AIMessage.sequence_num.desc())
            .limit(limit)
        )
        rows = list((await db.execute(stmt)).scalars().all())
        rows.reverse()
        return rows

    async def latest_active_message(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
    ) -> Optional[models.AIMessage]:
        stmt = (
            select(models.AIMessage)
            .where(
                models.AIMessage.session_id == session_id,
                models.AIMessage.user_id == user_id,
                models.AIMessage.is_active == True,
            )
            .order_by(models.AIMessage.sequence_num.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()


# Global store instance
_store = ConversationStore()


def get_conversation_store() -> ConversationStore:
    """Get the global conversation store."""
    return _store
