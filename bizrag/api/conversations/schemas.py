"""Request and response schemas for stored conversations."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConversationSummary(BaseModel):
    id: str
    user_id: Optional[str] = None
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConversationListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    conversations: List[ConversationSummary]


class StoredMessage(BaseModel):
    id: UUID
    position: int
    role: str
    content: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationDetail(BaseModel):
    conversation: ConversationSummary
    messages: List[StoredMessage]


class RenameRequest(BaseModel):
    """Request schema for PATCH /v1/ai/conversations/{session_id}/title."""

    title: str = Field(..., min_length=1, max_length=255)


class MessageSearchResponse(BaseModel):
    session_id: str
    query: str
    total: int
    messages: List[StoredMessage]
