from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class ConversationOut(BaseModel):
    id: str
    title: str
    preview: str
    message_count: int = Field(..., alias="messageCount")  # user+assistant pairs
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    model_config = ConfigDict(populate_by_name=True)


class ConversationList(BaseModel):
    conversations: List[ConversationOut]


class ConversationUpdate(BaseModel):
    session_id: Optional[str] = Field(None, alias="sessionId")
    title: Optional[str] = None
    is_archived: Optional[bool] = Field(None, alias="isArchived")
    model_config = ConfigDict(populate_by_name=True)
