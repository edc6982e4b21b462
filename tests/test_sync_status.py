"""Tests for sync checkpoint persistence against a temporary SQLite database."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from bizrag.config.settings import settings
from bizrag.db.db import close_db, init_db, is_initialized
from bizrag.models.sync_status import EMPTY_CHECKSUM, EPOCH, as_utc
from bizrag.services.sync_status import (
    InMemorySyncStatusRepository,
    SqlSyncStatusRepository,
    ensure_rows,
    sentinel_status,
)


@pytest_asyncio.fixture
async def sql_repository(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bizrag.db'}")
    await init_db()
    assert is_initialized()
    yield SqlSyncStatusRepository()
    await close_db()


class TestSqlSyncStatusRepository:
    @pytest.mark.asyncio
    async def test_ensure_rows_creates_sentinels_once(self, sql_repository):
        first = await ensure_rows(sql_repository, ["invoices", "products"])
        second = await ensure_rows(sql_repository, ["invoices", "products"])

        assert set(first) == set(second) == {"invoices", "products"}
        assert len(await sql_repository.load_all()) == 2
        assert second["invoices"].never_synced

    @pytest.mark.asyncio
    async def test_upsert_overwrites_by_entity_type(self, sql_repository):
        status = sentinel_status("invoices")
        await sql_repository.upsert(status)

        status.checksum = "a" * 64
        status.document_count = 3
        status.last_sync = datetime(2024, 5, 2, tzinfo=timezone.utc)
        await sql_repository.upsert(status)

        rows = await sql_repository.load_all()
        assert len(rows) == 1
        assert rows[0].document_count == 3
        assert as_utc(rows[0].last_sync) == datetime(2024, 5, 2, tzinfo=timezone.utc)
        assert not rows[0].never_synced

    @pytest.mark.asyncio
    async def test_ping(self, sql_repository):
        ok, message = await sql_repository.ping()

        assert ok
        assert message == "Database connection healthy"


class TestInMemorySyncStatusRepository:
    @pytest.mark.asyncio
    async def test_rows_are_copied(self):
        repository = InMemorySyncStatusRepository()
        status = sentinel_status("clients")
        await repository.upsert(status)

        status.document_count = 99

        loaded = (await repository.load_all())[0]
        assert loaded.document_count == 0
        assert loaded.last_sync == EPOCH
        assert loaded.checksum == EMPTY_CHECKSUM
