"""
Operational view over sync, indexing and chat.

Backs the admin router: status and health reports, data-quality and
performance metrics, forced syncs and index maintenance.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from bizrag.config.logger import app_logger
from bizrag.models.sync_status import as_utc, utc_now
from bizrag.services.conversation import ConversationService, get_conversation_service
from bizrag.services.indexing import IndexingPipeline, get_indexing_pipeline
from bizrag.services.sync_orchestrator import (
    SyncOrchestrator,
    SyncResult,
    SyncRunSummary,
    get_sync_orchestrator,
)

# A type not synced within this window is reported as stale
STALE_AFTER_HOURS = 24


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


class AdminService:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        pipeline: IndexingPipeline,
        conversation: Optional[ConversationService] = None,
    ):
        self.orchestrator = orchestrator
        self.pipeline = pipeline
        self.conversation = conversation
        self.started_at = utc_now()

    def get_sync_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            entity_type: {
                "last_sync": _iso(status.last_sync),
                "checksum": status.checksum,
                "document_count": status.document_count,
                "last_error": status.last_error,
                "last_duration_ms": status.last_duration_ms,
                "never_synced": status.never_synced,
                "updated_at": _iso(status.updated_at),
            }
            for entity_type, status in self.orchestrator.get_all_statuses().items()
        }

    async def get_service_health(self) -> Dict[str, Any]:
        """Store connectivity, embedding readiness and database liveness in one report."""
        db_ok, db_message = await self.orchestrator.repository.ping()
        store_ok = self.pipeline.is_ready()
        embedding_ok = self.pipeline.embedder.is_ready()
        generation = self.conversation.providers.status() if self.conversation else None

        healthy = db_ok and store_ok and embedding_ok
        return {
            "status": "healthy" if healthy else "degraded",
            "vector_store": {"ready": store_ok, "connected": self.pipeline.index.is_connected},
            "embeddings": {"ready": embedding_ok, "dimension": self.pipeline.embedder.dimension},
            "database": {"ok": db_ok, "message": db_message},
            "generation": generation,
            "uptime_seconds": int((utc_now() - self.started_at).total_seconds()),
            "last_sync": {t: _iso(s.last_sync) for t, s in self.orchestrator.get_all_statuses().items()},
        }

    async def get_data_quality_report(self) -> Dict[str, Any]:
        now = utc_now()
        error_rates = self.orchestrator.error_rates()
        chunks_by_type: Dict[str, int] = {}
        if self.pipeline.is_ready():
            chunks_by_type = (await self.pipeline.stats())["chunks_by_type"]

        entities: Dict[str, Any] = {}
        stale: List[str] = []
        for entity_type, status in self.orchestrator.get_all_statuses().items():
            hours = None
            if not status.never_synced:
                hours = round((now - as_utc(status.last_sync)).total_seconds() / 3600, 2)
            if hours is None or hours > STALE_AFTER_HOURS:
                stale.append(entity_type)
            entities[entity_type] = {
                "document_count": status.document_count,
                "indexed_chunks": chunks_by_type.get(entity_type, 0),
                "last_sync": _iso(status.last_sync),
                "hours_since_sync": hours,
                "error_rate": error_rates.get(entity_type, 0.0),
                "last_error": status.last_error,
            }

        return {
            "generated_at": now.isoformat(),
            "total_documents": sum(e["document_count"] for e in entities.values()),
            "stale_entity_types": stale,
            "entities": entities,
        }

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            "average_sync_duration_ms": self.orchestrator.average_durations(),
            "recent_sync_durations_ms": {
                t: self.orchestrator.durations(t) for t in self.orchestrator.entity_types
            },
            "sync_runs": self.orchestrator.run_counts(),
            "chat": self.conversation.stats() if self.conversation else None,
        }

    async def force_sync_entity(self, entity_type: str) -> SyncResult:
        return await self.orchestrator.force_sync(entity_type)

    async def force_full_resync(self) -> SyncRunSummary:
        return await self.orchestrator.force_full_resync()

    async def clear_vector_store(self) -> None:
        """Drop every indexed chunk and send every type back to the never-synced state."""
        app_logger.warning("Clearing vector store on admin request")
        await self.orchestrator.clear_index()

    async def search_similar_content(
        self, query: str, limit: int = 10, filter: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        chunks = await self.pipeline.search(query, k=limit, filter=filter)
        return [chunk.model_dump() for chunk in chunks]

    async def get_vector_store_stats(self) -> Dict[str, Any]:
        return await self.pipeline.stats()


_service: Optional[AdminService] = None


def get_admin_service() -> AdminService:
    global _service
    orchestrator = get_sync_orchestrator()
    # Rebuilt whenever the lifespan installs a new orchestrator
    if _service is None or _service.orchestrator is not orchestrator:
        _service = AdminService(orchestrator, get_indexing_pipeline(), get_conversation_service())
    return _service
