"""Model representing the per-entity-type sync checkpoint."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

# "Never synced" sentinel values
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
EMPTY_CHECKSUM = ""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(SQLModel, table=True):
    """Tracks the last successful sync of one entity type into the vector index."""

    __tablename__ = "sync_status"

    entity_type: str = Field(primary_key=True, max_length=50)
    last_sync: datetime = Field(default=EPOCH)
    checksum: str = Field(default=EMPTY_CHECKSUM, max_length=64)
    document_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = Field(default=None, max_length=2000)
    last_duration_ms: Optional[int] = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, index=True)

    @property
    def never_synced(self) -> bool:
        return self.checksum == EMPTY_CHECKSUM and as_utc(self.last_sync) == EPOCH


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
