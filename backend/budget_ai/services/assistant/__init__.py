"""Budget assistant chat pipeline.

Main entry point:
    get_orchestrator().process_message(db, user_id, request) -> ChatResponse

Architecture:
    ChatOrchestrator
    ├── UsageLedger (monthly token quota, current + legacy tables)
    ├── RateLimitGovernor (upstream throttle cooldown)
    ├── BudgetContextBuilder (parallel, best-effort budget snapshot)
    ├── GenerationService (Gemini)
    └── ConversationStore (sessions and sequenced messages)
"""

from .context import BudgetContextBuilder
from .conversations import ConversationStore, get_conversation_store
from .llm import GeminiGenerator, GenerationService, get_generator
from .orchestrator import ChatOrchestrator, get_orchestrator
from .rate_limit import RateLimitGovernor, get_governor
from .tokens import estimate_tokens
from .usage import UsageLedger

__all__ = [
    "BudgetContextBuilder",
    "ChatOrchestrator",
    "ConversationStore",
    "GeminiGenerator",
    "GenerationService",
    "RateLimitGovernor",
    "UsageLedger",
    "estimate_tokens",
    "get_conversation_store",
    "get_generator",
    "get_governor",
    "get_orchestrator",
]
