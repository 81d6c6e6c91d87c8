"""Per-request trace schemas for debugging and observability."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid

from .chat import Degradation


class TraceEventType(str, Enum):
    """Types of events recorded while handling a chat turn."""
    USAGE_CHECKED = "usage_checked"
    RATE_LIMIT_CHECKED = "rate_limit_checked"
    CONTEXT_BUILT = "context_built"
    CONTEXT_DEGRADED = "context_degraded"
    LLM_CALL = "llm_call"
    LLM_FAILED = "llm_failed"
    TURN_PERSISTED = "turn_persisted"
    PERSIST_DEGRADED = "persist_degraded"
    REJECTED = "rejected"


class TraceEvent(BaseModel):
    """A single event in the chat trace."""
    timestamp: datetime = Field(default_factory=datetime.now)
    event_type: TraceEventType
    data: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[float] = None
    model_config = ConfigDict(use_enum_values=True)


class ChatTrace(BaseModel):
    """Complete trace of one chat turn.

    Degradations recorded here are also returned to the client so a partially
    successful turn is visible outside the logs.
    """
    trace_id: str = Field(default_factory=lambda: str(uuid.uuid4())[:12])
    user_id: str
    session_id: str
    user_query: str
    events: List[TraceEvent] = Field(default_factory=list)
    degradations: List[Degradation] = Field(default_factory=list)
    total_duration_ms: float = 0
    llm_calls: int = 0
    outcome: Optional[str] = None
    success: bool = False
    started_at: datetime = Field(default_factory=datetime.now)

    def add_event(
        self,
        event_type: TraceEventType,
        data: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Add an event to the trace."""
        self.events.append(TraceEvent(
            event_type=event_type,
            data=data or {},
            duration_ms=duration_ms,
        ))

        if event_type in (TraceEventType.LLM_CALL, TraceEventType.LLM_FAILED):
            self.llm_calls += 1

    def degrade(self, step: str, reason: str) -> None:
        self.degradations.append(Degradation(step=step, reason=reason))

    def finalize(self, outcome: str, success: bool = False) -> None:
        """Finalize the trace with the terminal state."""
        self.outcome = outcome
        self.success = success
        self.total_duration_ms = (datetime.now() - self.started_at).total_seconds() * 1000
