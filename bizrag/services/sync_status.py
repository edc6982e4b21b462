"""Persistence of per-entity-type sync checkpoints."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

from sqlmodel import select

from bizrag.config.logger import app_logger
from bizrag.db.db import db_session, ping_database
from bizrag.models.sync_status import EMPTY_CHECKSUM, EPOCH, SyncStatus, utc_now


class SyncStatusRepository(Protocol):
    async def load_all(self) -> List[SyncStatus]: ...

    async def upsert(self, status: SyncStatus) -> None: ...

    async def ping(self) -> tuple[bool, str]: ...


class SqlSyncStatusRepository:
    """SyncStatus rows in the relational store, upserted by entity type."""

    async def load_all(self) -> List[SyncStatus]:
        async with db_session() as session:
            result = await session.execute(select(SyncStatus))
            return list(result.scalars().all())

    async def upsert(self, status: SyncStatus) -> None:
        async with db_session() as session:
            await session.merge(status)
            await session.commit()

    async def ping(self) -> tuple[bool, str]:
        return await ping_database()


def _clone(status: SyncStatus) -> SyncStatus:
    return SyncStatus(**status.model_dump())


class InMemorySyncStatusRepository:
    """Dict-backed repository for local runs without a database."""

    def __init__(self, rows: Optional[Iterable[SyncStatus]] = None):
        self.rows: Dict[str, SyncStatus] = {r.entity_type: r for r in rows or ()}
        self.healthy = True

    async def load_all(self) -> List[SyncStatus]:
        return [_clone(r) for r in self.rows.values()]

    async def upsert(self, status: SyncStatus) -> None:
        self.rows[status.entity_type] = _clone(status)

    async def ping(self) -> tuple[bool, str]:
        if self.healthy:
            return True, "In-memory status store healthy"
        return False, "In-memory status store marked unhealthy"


def sentinel_status(entity_type: str) -> SyncStatus:
    """A "never synced" checkpoint."""
    now = utc_now()
    return SyncStatus(
        entity_type=entity_type,
        last_sync=EPOCH,
        checksum=EMPTY_CHECKSUM,
        document_count=0,
        last_error=None,
        created_at=now,
        updated_at=now,
    )


async def ensure_rows(repo: SyncStatusRepository, entity_types: Iterable[str]) -> Dict[str, SyncStatus]:
    """Load every checkpoint, creating sentinel rows for types seen for the first time."""
    existing = {row.entity_type: row for row in await repo.load_all()}
    for entity_type in entity_types:
        if entity_type not in existing:
            row = sentinel_status(entity_type)
            await repo.upsert(row)
            existing[entity_type] = row
            app_logger.info(f"Created sync checkpoint for {entity_type}")
    return existing
