from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..auth import get_current_user_id
from ..database import get_db
from ..schemas.chat import (
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    MessageUpdate,
    RateLimitStatusOut,
    SuccessResponse,
)
from ..services.assistant import ChatOrchestrator, get_orchestrator

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post("", response_model=ChatResponse)
async def send_message(
    chat: ChatRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Send a message to the budget assistant.

    **Session Support:**
    - Include `sessionId` to continue a conversation; a new id is returned otherwise
    - Without `chatHistory`, the latest stored messages of the session are replayed
    - `parentMessageId` branches from an earlier message (after a deactivate)

    **Budget context:** with `includeContext` (default true) the reply is grounded in
    this month's and last month's budget data. If that data cannot be loaded the
    reply is still returned and `degraded` says so.

    **Errors:** 400 invalid message, 404 unknown session, 429 monthly quota used up
    or upstream cooldown (`retryAfter` seconds), 503 service not configured, 500
    generation failed.
    """
    return await orchestrator.process_message(db, user_id, chat)


@router.get("", response_model=ChatHistoryResponse)
async def get_history(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Active messages of a session (or the latest ones overall) and monthly usage."""
    return await orchestrator.history(db, user_id, session_id=session_id, limit=limit)


@router.patch("", response_model=SuccessResponse)
async def update_message(
    update: MessageUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Edit a message or deactivate it and everything after it.

    - `edit`: replaces the content, keeping the previous version in `originalContent`
    - `deactivate`: cuts the active timeline so the conversation can be regenerated
    """
    await orchestrator.update_message(db, user_id, update)
    return SuccessResponse()


@router.get("/rate-limit", response_model=RateLimitStatusOut)
async def get_rate_limit(
    user_id: str = Depends(get_current_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Get the upstream cooldown status.

    Returns whether new messages are currently rejected and for how many seconds.
    """
    return orchestrator.rate_limit_status()
