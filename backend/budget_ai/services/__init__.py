from .assistant import (
    ChatOrchestrator,
    get_orchestrator,
    get_conversation_store,
    get_governor,
)
