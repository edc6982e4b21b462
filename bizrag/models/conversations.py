"""Chat session and message models for persisting assistant conversations."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel

DEFAULT_TITLE = "New Conversation"


class ChatSessionRecord(SQLModel, table=True):
    """One stored conversation, keyed by the client-chosen session id."""

    __tablename__ = "chat_sessions"

    id: str = Field(primary_key=True, max_length=255)
    user_id: Optional[str] = Field(default=None, index=True, max_length=255)
    title: str = Field(
        default=DEFAULT_TITLE,
        max_length=255,
        description="First ~50 characters of the opening question unless renamed",
    )
    message_count: int = Field(default=0, description="Number of stored messages")

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True),
    )


class ChatMessageRecord(SQLModel, table=True):
    """A single stored chat message."""

    __tablename__ = "chat_messages"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: str = Field(index=True, foreign_key="chat_sessions.id", max_length=255)
    position: int = Field(default=0, index=True, description="Order within the session")
    role: str = Field(max_length=20, description="Message role: 'user' or 'assistant'")
    content: str = Field(sa_column=Column(Text, nullable=False))
    # ``metadata`` is reserved on declarative models
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), index=True),
    )
