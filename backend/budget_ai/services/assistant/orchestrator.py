"""Orchestrator for budget assistant chat turns.

The orchestrator coordinates the flow:
1. Validate the message and the session it targets
2. Reject when the monthly quota is used up or the upstream cooldown is active
3. Build the budget context (best effort)
4. Call the generation service and classify its failures
5. Persist the turn (best effort) and report usage
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ...config import HISTORY_LIMIT
from ...errors import (
    InvalidChatRequest,
    NotFound,
    QuotaExceeded,
    RateLimited,
    UpstreamAuthError,
    UpstreamFailure,
    UpstreamThrottled,
)
from ...schemas.chat import (
    ChatHistoryItem,
    ChatHistoryResponse,
    ChatRequest,
    ChatResponse,
    MessageAction,
    MessageIds,
    MessageOut,
    MessageUpdate,
    RateLimitStatusOut,
    TurnUsage,
)
from ...schemas.context import BudgetContext
from ...schemas.trace import ChatTrace, TraceEventType
from .context import BudgetContextBuilder
from .conversations import ConversationStore, TurnIds, TurnTokens, get_conversation_store
from .llm import GenerationService, get_generator
from .prompts import generate_system_prompt
from .rate_limit import RateLimitGovernor, get_governor
from .tokens import estimate_tokens, format_token_count
from .tracing import format_trace_summary, trace_llm_call, trace_step
from .usage import UsageLedger

logger = logging.getLogger(__name__)

QUOTA_MESSAGE = "Monthly token limit reached. Please try again next month."
NOT_CONFIGURED_MESSAGE = "AI service not configured. Please check your API key."
FAILED_MESSAGE = "Failed to get AI response. Please try again."

_THROTTLE_MARKERS = ("429", "quota", "resource_exhausted")
_AUTH_MARKERS = ("api key", "401")


def classify_generation_error(message: str) -> str:
    """Map an upstream error message to "throttled", "auth" or "unknown"."""
    lowered = (message or "").lower()
    if any(marker in lowered for marker in _THROTTLE_MARKERS):
        return "throttled"
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return "auth"
    return "unknown"


def _wait_message(seconds: int) -> str:
    return f"AI service is busy. Please wait {seconds} seconds and try again."


class ChatOrchestrator:
    """Runs one chat turn from validation to response.

    Terminal states: a ChatResponse (success, possibly with degradations) or an
    AssistantError subclass (rejected or failed upstream).
    """

    def __init__(
        self,
        ledger: Optional[UsageLedger] = None,
        governor: Optional[RateLimitGovernor] = None,
        builder: Optional[BudgetContextBuilder] = None,
        store: Optional[ConversationStore] = None,
        generator: Optional[GenerationService] = None,
        history_limit: int = HISTORY_LIMIT,
    ):
        self.ledger = ledger or UsageLedger()
        self.governor = governor or get_governor()
        self.builder = builder or BudgetContextBuilder()
        self.store = store or get_conversation_store()
        self._generator = generator
        self.history_limit = history_limit

    @property
    def generator(self) -> GenerationService:
        if self._generator is None:
            self._generator = get_generator()
        return self._generator

    async def process_message(
        self,
        db: AsyncSession,
        user_id: str,
        request: ChatRequest,
    ) -> ChatResponse:
        """Process a user message through the assistant pipeline.

        Args:
            db: Database session
            user_id: Authenticated user
            request: Parsed chat request

        Returns:
            ChatResponse with the reply, ids of the stored turn and usage

        Raises:
            AssistantError: for every rejected or failed turn
        """
        start_time = time.time()

        message = request.message
        if not isinstance(message, str) or not message.strip():
            raise InvalidChatRequest("Message is required")

        session_id = request.session_id or str(uuid.uuid4())
        trace = ChatTrace(user_id=user_id, session_id=session_id, user_query=message)

        session = await self.store.get_session(db, session_id)
        if session is not None and session.user_id != user_id:
            trace.add_event(TraceEventType.REJECTED, data={"reason": "foreign_session"})
            raise NotFound("Conversation not found")

        if request.parent_message_id:
            parent = await self.store.get_message(db, request.parent_message_id, user_id)
            if parent is None or parent.session_id != session_id:
                raise InvalidChatRequest("Parent message not found")

        # Quota
        with trace_step(trace, TraceEventType.USAGE_CHECKED) as step:
            prior_usage = await self.ledger.monthly_usage(db, user_id)
            step["monthly_used"] = prior_usage
        if self.ledger.is_exhausted(prior_usage):
            logger.info(
                f"[Orchestrator] Quota exhausted for {user_id} "
                f"({format_token_count(prior_usage)}/{format_token_count(self.ledger.limit)})"
            )
            trace.finalize("quota_exceeded")
            raise QuotaExceeded(
                QUOTA_MESSAGE,
                usage={"used": prior_usage, "limit": self.ledger.limit, "percentage": 100},
            )

        # Upstream cooldown
        status = self.governor.is_limited()
        trace.add_event(
            TraceEventType.RATE_LIMIT_CHECKED,
            data={"limited": status.limited, "retry_in_seconds": status.retry_in_seconds},
        )
        if status.limited:
            trace.finalize("rate_limited")
            raise RateLimited(_wait_message(status.retry_in_seconds), retry_after=status.retry_in_seconds)

        context = await self._build_context(user_id, trace) if request.include_context else None

        history = request.chat_history
        if not history and session is not None:
            history = await self._replay_history(db, session_id, user_id)

        system_prompt = generate_system_prompt(context)
        input_tokens = (
            estimate_tokens(system_prompt)
            + estimate_tokens(" ".join(turn.content for turn in history))
            + estimate_tokens(message)
        )

        reply = await self._generate(message, history, context, trace)

        response_time_ms = int((time.time() - start_time) * 1000)
        output_tokens = estimate_tokens(reply)
        total_tokens = input_tokens + output_tokens

        ids = await self._persist_turn(
            db,
            session_id=session_id,
            user_id=user_id,
            message=message,
            reply=reply,
            parent_message_id=request.parent_message_id,
            tokens=TurnTokens(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                included_budget_context=context is not None,
                response_time_ms=response_time_ms,
                model_used=getattr(self.generator, "model_name", None),
            ),
            trace=trace,
        )

        # Estimate, not re-queried: saves a round trip and still counts this turn if the write failed
        monthly_used = prior_usage + total_tokens
        limit = self.ledger.limit

        logger.info(
            f"[Orchestrator] Reply for {user_id} used {format_token_count(total_tokens)} tokens "
            f"({format_token_count(monthly_used)} this month)"
        )
        trace.finalize("degraded" if trace.degradations else "success", success=True)
        logger.debug(format_trace_summary(trace))

        return ChatResponse(
            message=reply,
            timestamp=datetime.now(timezone.utc),
            session_id=session_id,
            message_ids=MessageIds(
                user_message_id=ids.user_message_id,
                assistant_message_id=ids.assistant_message_id,
            ) if ids else None,
            usage=TurnUsage(
                request_tokens=total_tokens,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                monthly_used=monthly_used,
                monthly_limit=limit,
                monthly_percentage=round(monthly_used / limit * 100, 1) if limit > 0 else 100.0,
                response_time_ms=response_time_ms,
            ),
            degraded=list(trace.degradations),
        )

    async def _build_context(self, user_id: str, trace: ChatTrace) -> Optional[BudgetContext]:
        """Budget context for the prompt, or None when it cannot be built."""
        start_time = time.time()
        try:
            report = await self.builder.build_report(user_id)
        except Exception as e:
            logger.exception(f"[Orchestrator] Failed to fetch budget context: {e}")
            trace.add_event(TraceEventType.CONTEXT_DEGRADED, data={"error": str(e)})
            trace.degrade("budget_context", "Budget data unavailable; answered without it")
            return None

        for facet in report.degraded_facets:
            trace.degrade("budget_context", f"{facet} unavailable")
        trace.add_event(
            TraceEventType.CONTEXT_BUILT,
            data={
                "categories": len(report.context.categories),
                "degraded_facets": report.degraded_facets,
            },
            duration_ms=(time.time() - start_time) * 1000,
        )
        return report.context

    async def _replay_history(self, db: AsyncSession, session_id: str, user_id: str) -> List[ChatHistoryItem]:
        rows = await self.store.tail_active(db, session_id, user_id, limit=self.history_limit)
        return [
            ChatHistoryItem(role=row.role, content=row.content, timestamp=row.created_at)
            for row in rows
        ]

    async def _generate(
        self,
        message: str,
        history: List[ChatHistoryItem],
        context: Optional[BudgetContext],
        trace: ChatTrace,
    ) -> str:
        """Call the generation service once. Any failure is classified by its text, never retried."""
        generator = self.generator
        model = getattr(generator, "model_name", "unknown")
        start_time = time.time()
        try:
            reply = await generator.generate(message, history, context)
        except Exception as e:
            error_text = str(e) or type(e).__name__
            trace_llm_call(
                trace, model, message,
                duration_ms=(time.time() - start_time) * 1000,
                error=error_text,
            )
            kind = classify_generation_error(error_text)
            trace.finalize(f"upstream_{kind}")
            logger.error(f"[Orchestrator] Generation failed ({kind}): {error_text}")

            if kind == "throttled":
                retry_after = self.governor.record_throttle(error_text)
                raise UpstreamThrottled(_wait_message(retry_after), retry_after=retry_after) from e
            if kind == "auth":
                raise UpstreamAuthError(NOT_CONFIGURED_MESSAGE) from e
            raise UpstreamFailure(FAILED_MESSAGE) from e

        trace_llm_call(trace, model, message, reply, duration_ms=(time.time() - start_time) * 1000)
        return reply

    async def _persist_turn(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        message: str,
        reply: str,
        parent_message_id: Optional[str],
        tokens: TurnTokens,
        trace: ChatTrace,
    ) -> Optional[TurnIds]:
        """Store the turn. A failure is logged and reported, the reply is kept."""
        try:
            with trace_step(trace, TraceEventType.TURN_PERSISTED) as step:
                session = await self.store.ensure_session(db, session_id, user_id, message)
                if session is None:
                    raise RuntimeError(f"session {session_id} belongs to another user")

                if parent_message_id is None:
                    latest = await self.store.latest_active_message(db, session_id, user_id)
                    parent_message_id = latest.id if latest else None

                ids = await self.store.append_turn(
                    db,
                    session_id=session_id,
                    user_id=user_id,
                    user_text=message,
                    assistant_text=reply,
                    parent_message_id=parent_message_id,
                    tokens=tokens,
                )
                step["user_sequence"] = ids.user_sequence
                return ids
        except Exception as e:
            logger.exception(f"[Orchestrator] Failed to persist turn in {session_id}: {e}")
            await db.rollback()
            trace.add_event(TraceEventType.PERSIST_DEGRADED, data={"error": str(e)})
            trace.degrade("persistence", "The conversation could not be saved")
            return None

    # ------------------------------------------------------------------
    # History and message actions
    # ------------------------------------------------------------------

    async def history(
        self,
        db: AsyncSession,
        user_id: str,
        session_id: Optional[str] = None,
        limit: int = 50,
    ) -> ChatHistoryResponse:
        """Active messages of a session (or the latest across sessions) plus usage."""
        if session_id:
            rows = await self.store.tail_active(db, session_id, user_id, limit=limit)
        else:
            rows = await self.store.list_recent(db, user_id, limit=limit)

        messages = [MessageOut.model_validate(row) for row in rows]
        used = await self.ledger.monthly_usage(db, user_id)
        return ChatHistoryResponse(
            messages=messages,
            chat_history=messages,
            usage=self.ledger.summarize(used),
        )

    async def update_message(self, db: AsyncSession, user_id: str, update: MessageUpdate) -> None:
        """Apply an edit or a deactivate-from action to one message."""
        if not update.message_id or update.action is None:
            raise InvalidChatRequest("Message ID and action are required")

        if update.action == MessageAction.EDIT:
            if update.new_content is None or not update.new_content.strip():
                raise InvalidChatRequest("New content is required for edit")
            found = await self.store.edit_message(db, update.message_id, user_id, update.new_content)
            if not found:
                raise NotFound("Message not found")
            logger.info(f"[Orchestrator] Edited message {update.message_id}")
            return

        deactivated = await self.store.deactivate_from(db, update.message_id, user_id)
        if deactivated is None:
            raise NotFound("Message not found")
        logger.info(f"[Orchestrator] Deactivated {deactivated} messages from {update.message_id}")

    def rate_limit_status(self) -> RateLimitStatusOut:
        status = self.governor.is_limited()
        return RateLimitStatusOut(
            limited=status.limited,
            retry_after=status.retry_in_seconds,
            cooldown_ms=self.governor.cooldown_ms,
        )


# Global orchestrator instance
_orchestrator: Optional[ChatOrchestrator] = None


def get_orchestrator() -> ChatOrchestrator:
    """Get or create the global orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator()
    return _orchestrator
