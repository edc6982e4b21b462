"""Models module - imports all models for SQLModel registration."""

from bizrag.models.conversations import ChatMessageRecord, ChatSessionRecord
from bizrag.models.sync_status import SyncStatus
from bizrag.models.documents import EnrichedDocument, Relationship, ScoredChunk

__all__ = [
    "ChatMessageRecord",
    "ChatSessionRecord",
    "SyncStatus",
    "EnrichedDocument",
    "Relationship",
    "ScoredChunk",
]
