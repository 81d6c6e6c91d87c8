import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..auth import get_current_user_id
from ..database import get_db
from ..errors import InvalidChatRequest
from ..schemas.chat import SuccessResponse
from ..schemas.conversations import ConversationList, ConversationOut, ConversationUpdate
from ..services.assistant import ConversationStore, get_conversation_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("", response_model=ConversationList)
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """The 50 most recently updated non-archived conversations."""
    sessions = await store.list_sessions(db, user_id)
    return ConversationList(conversations=[
        ConversationOut(
            id=s.id,
            title=s.title,
            preview=s.title,
            message_count=s.message_count,
            created_at=s.created_at,
            updated_at=s.updated_at,
        )
        for s in sessions
    ])


@router.patch("", response_model=SuccessResponse)
async def update_conversation(
    update: ConversationUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Rename and/or archive a conversation."""
    if not update.session_id:
        raise InvalidChatRequest("Session ID is required")

    matched = await store.update_session(
        db,
        update.session_id,
        user_id,
        title=update.title,
        is_archived=update.is_archived,
    )
    if not matched:
        logger.info(f"[Conversations] No session {update.session_id} to update for {user_id}")
    return SuccessResponse()


@router.delete("", response_model=SuccessResponse)
async def delete_conversation(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Delete a conversation and all of its messages."""
    if not session_id:
        raise InvalidChatRequest("Session ID is required")

    await store.delete_session(db, session_id, user_id)
    return SuccessResponse()
