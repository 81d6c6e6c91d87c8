from .chat import (
    ChatRequest,
    ChatResponse,
    ChatHistoryResponse,
    MessageUpdate,
    RateLimitStatusOut,
    SuccessResponse,
)
from .context import BudgetContext
from .conversations import ConversationOut, ConversationList, ConversationUpdate
