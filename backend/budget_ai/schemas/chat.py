from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatHistoryItem(BaseModel):
    """A prior turn sent back by the client."""
    role: ChatRole
    content: str
    timestamp: Optional[datetime] = None


class ChatRequest(BaseModel):
    """Request to the assistant endpoint."""
    # Optional so that a missing message is reported as "Message is required"
    message: Optional[str] = None
    chat_history: List[ChatHistoryItem] = Field([], alias="chatHistory")
    include_context: bool = Field(True, alias="includeContext")
    session_id: Optional[str] = Field(None, alias="sessionId")
    parent_message_id: Optional[str] = Field(None, alias="parentMessageId")
    model_config = ConfigDict(populate_by_name=True)


class MessageIds(BaseModel):
    user_message_id: str = Field(..., alias="userMessageId")
    assistant_message_id: str = Field(..., alias="assistantMessageId")
    model_config = ConfigDict(populate_by_name=True)


class TurnUsage(BaseModel):
    """Token accounting returned with every successful turn."""
    request_tokens: int = Field(..., alias="requestTokens")
    input_tokens: int = Field(..., alias="inputTokens")
    output_tokens: int = Field(..., alias="outputTokens")
    monthly_used: int = Field(..., alias="monthlyUsed")
    monthly_limit: int = Field(..., alias="monthlyLimit")
    monthly_percentage: float = Field(..., alias="monthlyPercentage")
    response_time_ms: int = Field(..., alias="responseTimeMs")
    model_config = ConfigDict(populate_by_name=True)


class Degradation(BaseModel):
    """A best-effort step that failed without failing the request."""
    step: str  # "budget_context" or "persistence"
    reason: str


class ChatResponse(BaseModel):
    message: str
    timestamp: datetime
    session_id: str = Field(..., alias="sessionId")
    message_ids: Optional[MessageIds] = Field(None, alias="messageIds")
    usage: TurnUsage
    degraded: List[Degradation] = []
    model_config = ConfigDict(populate_by_name=True)


class MessageOut(BaseModel):
    id: str
    session_id: str = Field(..., alias="sessionId")
    role: str
    content: str
    parent_id: Optional[str] = Field(None, alias="parentId")
    sequence_num: int = Field(..., alias="sequenceNum")
    input_tokens: int = Field(0, alias="inputTokens")
    output_tokens: int = Field(0, alias="outputTokens")
    is_edited: bool = Field(False, alias="isEdited")
    edited_at: Optional[datetime] = Field(None, alias="editedAt")
    original_content: Optional[str] = Field(None, alias="originalContent")
    included_budget_context: Optional[bool] = Field(None, alias="includedBudgetContext")
    response_time_ms: Optional[int] = Field(None, alias="responseTimeMs")
    created_at: datetime = Field(..., alias="createdAt")
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UsageSummary(BaseModel):
    monthly_used: int = Field(..., alias="monthlyUsed")
    monthly_limit: int = Field(..., alias="monthlyLimit")
    monthly_percentage: float = Field(..., alias="monthlyPercentage")
    remaining: int
    model_config = ConfigDict(populate_by_name=True)


class ChatHistoryResponse(BaseModel):
    messages: List[MessageOut]
    # Same list under the legacy key the chat widget still reads
    chat_history: List[MessageOut] = Field(..., alias="chatHistory")
    usage: UsageSummary
    model_config = ConfigDict(populate_by_name=True)


class MessageAction(str, Enum):
    EDIT = "edit"
    DEACTIVATE = "deactivate"


class MessageUpdate(BaseModel):
    message_id: Optional[str] = Field(None, alias="messageId")
    action: Optional[MessageAction] = None
    new_content: Optional[str] = Field(None, alias="newContent")
    model_config = ConfigDict(populate_by_name=True)


class RateLimitStatusOut(BaseModel):
    limited: bool
    retry_after: int = Field(..., alias="retryAfter")
    cooldown_ms: int = Field(..., alias="cooldownMs")
    model_config = ConfigDict(populate_by_name=True)


class SuccessResponse(BaseModel):
    success: bool = True
