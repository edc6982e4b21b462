"""Tests for the admin service reports and maintenance operations."""

import pytest

from bizrag.services.admin import AdminService
from bizrag.services.sync_orchestrator import SyncOrchestrator, build_registry
from tests.factories import FakeSource, make_invoice, make_product


@pytest.fixture
def orchestrator(pipeline, repository, no_sleep):
    sources = {
        "invoices": FakeSource([make_invoice(1), make_invoice(2, status="Overdue")]),
        "products": FakeSource(error=RuntimeError("inventory service down")),
    }
    units = build_registry(sources, entity_types=list(sources))
    return SyncOrchestrator(pipeline, repository, units, max_attempts=2, recovery_delay=0, sleep=no_sleep)


class TestAdminService:
    @pytest.mark.asyncio
    async def test_data_quality_report(self, orchestrator, pipeline):
        await orchestrator.sync_all()
        admin = AdminService(orchestrator, pipeline)

        report = await admin.get_data_quality_report()

        assert report["total_documents"] == 2
        assert report["entities"]["invoices"]["indexed_chunks"] == 2
        assert report["entities"]["invoices"]["error_rate"] == 0.0
        assert report["entities"]["products"]["error_rate"] == 1.0
        assert "inventory service down" in report["entities"]["products"]["last_error"]
        assert report["stale_entity_types"] == ["products"]

    @pytest.mark.asyncio
    async def test_service_health(self, orchestrator, pipeline, repository):
        admin = AdminService(orchestrator, pipeline)

        assert (await admin.get_service_health())["status"] == "healthy"

        repository.healthy = False
        health = await admin.get_service_health()
        assert health["status"] == "degraded"
        assert health["database"]["ok"] is False

    @pytest.mark.asyncio
    async def test_clear_vector_store_resets_checkpoints(self, orchestrator, pipeline):
        await orchestrator.sync_entity("invoices")
        admin = AdminService(orchestrator, pipeline)

        await admin.clear_vector_store()

        assert (await admin.get_vector_store_stats())["total_chunks"] == 0
        assert admin.get_sync_status()["invoices"]["never_synced"] is True

    @pytest.mark.asyncio
    async def test_search_similar_content(self, orchestrator, pipeline):
        await orchestrator.sync_entity("invoices")
        admin = AdminService(orchestrator, pipeline)

        results = await admin.search_similar_content("overdue invoice", limit=1)

        assert len(results) == 1
        assert results[0]["metadata"]["entity_type"] == "invoices"

    @pytest.mark.asyncio
    async def test_performance_metrics(self, orchestrator, pipeline):
        await orchestrator.sync_entity("invoices")
        admin = AdminService(orchestrator, pipeline)

        metrics = admin.get_performance_metrics()

        assert len(metrics["recent_sync_durations_ms"]["invoices"]) == 1
        assert metrics["sync_runs"]["invoices"]["runs"] == 1
        assert metrics["chat"] is None
