"""Incremental sync of business entities into the vector index.

Each entity type is an independent sync unit:

1. read the last successful sync timestamp
2. fetch records changed since then (everything on the epoch sentinel)
3. stop early with a "skipped" result when nothing changed
4. enrich the change set
5. replace every indexed chunk of the type with the freshly indexed set
6. checksum the change set and persist it with the new document count

Units run concurrently and are isolated from each other; retries, liveness
probes and failure bookkeeping happen per unit.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from bizrag.config.logger import app_logger, log_performance
from bizrag.config.settings import settings
from bizrag.models.documents import ENTITY_TYPES
from bizrag.models.sync_status import SyncStatus, as_utc, utc_now
from bizrag.services.document_enricher import ENRICHERS, EntityEnricher
from bizrag.services.entity_sources import EntitySource, changes_since
from bizrag.services.indexing import IndexingPipeline
from bizrag.services.sync_status import SyncStatusRepository, ensure_rows, sentinel_status
from bizrag.utils.errors import NotInitializedError, UnknownEntityTypeError

DURATION_SAMPLES = 10

Sleep = Callable[[float], Awaitable[Any]]


def compute_checksum(records: Sequence[Mapping[str, Any]]) -> str:
    """SHA-256 over the records sorted by id with sorted keys.

    Input order does not matter; the result is always 64 hex characters.
    """
    ordered = sorted(records, key=lambda r: str(r.get("id")))
    payload = json.dumps(ordered, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SyncUnit:
    entity_type: str
    source: EntitySource
    enricher: EntityEnricher


def build_registry(
    sources: Mapping[str, EntitySource],
    enrichers: Mapping[str, EntityEnricher] = ENRICHERS,
    entity_types: Sequence[str] = ENTITY_TYPES,
) -> Dict[str, SyncUnit]:
    """Pair every entity type with its source and enricher, failing fast on gaps."""
    missing_sources = [t for t in entity_types if t not in sources]
    missing_enrichers = [t for t in entity_types if t not in enrichers]
    if missing_sources or missing_enrichers:
        raise ValueError(
            f"Incomplete sync registry: sources missing for {missing_sources}, "
            f"enrichers missing for {missing_enrichers}"
        )
    unexpected = [t for t in sources if t not in entity_types]
    if unexpected:
        raise UnknownEntityTypeError(", ".join(unexpected))
    return {t: SyncUnit(t, sources[t], enrichers[t]) for t in entity_types}


class SyncResult(BaseModel):
    entity_type: str
    success: bool = True
    skipped: bool = False
    synced: int = 0
    chunks: int = 0
    attempts: int = 0
    duration_ms: int = 0
    checksum: Optional[str] = None
    error: Optional[str] = None


class SyncRunSummary(BaseModel):
    full_resync: bool = False
    total_synced: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    total_time_ms: int = 0
    results: Dict[str, SyncResult] = Field(default_factory=dict)


@dataclass
class _RunCounters:
    runs: int = 0
    failed_runs: int = 0
    attempts: int = 0
    failed_attempts: int = 0


class SyncOrchestrator:
    """Runs and tracks sync units for every registered entity type."""

    def __init__(
        self,
        pipeline: IndexingPipeline,
        repository: SyncStatusRepository,
        units: Mapping[str, SyncUnit],
        max_attempts: int = settings.SYNC_MAX_ATTEMPTS,
        recovery_delay: float = settings.SYNC_RECOVERY_DELAY_SECONDS,
        backoff_base: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ):
        for name, unit in units.items():
            if unit.entity_type != name or unit.enricher.entity_type != name:
                raise ValueError(f"Sync unit registered under '{name}' does not match its contents")
        self.pipeline = pipeline
        self.repository = repository
        self.units = dict(units)
        self.max_attempts = max(1, max_attempts)
        self.recovery_delay = recovery_delay
        self.backoff_base = backoff_base
        self._sleep = sleep

        self._statuses: Dict[str, SyncStatus] = {t: sentinel_status(t) for t in self.units}
        self._status_lock = asyncio.Lock()
        self._type_locks: Dict[str, asyncio.Lock] = {t: asyncio.Lock() for t in self.units}
        self._durations: Dict[str, Deque[int]] = {t: deque(maxlen=DURATION_SAMPLES) for t in self.units}
        self._counters: Dict[str, _RunCounters] = {t: _RunCounters() for t in self.units}
        self.started_at = utc_now()

    @property
    def entity_types(self) -> List[str]:
        return list(self.units)

    def _unit(self, entity_type: str) -> SyncUnit:
        try:
            return self.units[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type) from None

    # -- status bookkeeping -------------------------------------------------

    async def load_statuses(self) -> None:
        """Load checkpoints at boot, creating sentinel rows for new entity types."""
        try:
            rows = await ensure_rows(self.repository, self.entity_types)
        except Exception as e:
            app_logger.warning(f"Could not load sync status, starting from sentinels: {e}")
            return
        async with self._status_lock:
            for entity_type, row in rows.items():
                if entity_type in self.units:
                    self._statuses[entity_type] = row
        app_logger.info(f"Loaded sync status for {len(rows)} entity types")

    def get_status(self, entity_type: str) -> SyncStatus:
        self._unit(entity_type)
        return SyncStatus(**self._statuses[entity_type].model_dump())

    def get_all_statuses(self) -> Dict[str, SyncStatus]:
        return {t: self.get_status(t) for t in self.units}

    async def _persist(self, status: SyncStatus) -> None:
        async with self._status_lock:
            self._statuses[status.entity_type] = status
        try:
            healthy, message = await self.repository.ping()
            if not healthy:
                app_logger.warning(f"Sync status for {status.entity_type} kept in memory only: {message}")
                return
            await self.repository.upsert(status)
        except Exception as e:
            app_logger.error(f"Error persisting sync status for {status.entity_type}: {e}")

    async def _record_success(
        self, entity_type: str, checksum: str, document_count: int, duration_ms: int, sync_started
    ) -> None:
        current = self._statuses[entity_type]
        await self._persist(
            SyncStatus(
                entity_type=entity_type,
                last_sync=sync_started,
                checksum=checksum,
                document_count=document_count,
                last_error=None,
                last_duration_ms=duration_ms,
                created_at=current.created_at,
                updated_at=utc_now(),
            )
        )

    async def _record_failure(self, entity_type: str, error: str, duration_ms: int) -> None:
        # Checkpoint and checksum stay put so the failed window is retried next run
        current = self._statuses[entity_type]
        await self._persist(
            SyncStatus(
                entity_type=entity_type,
                last_sync=current.last_sync,
                checksum=current.checksum,
                document_count=0,
                last_error=error[:2000],
                last_duration_ms=duration_ms,
                created_at=current.created_at,
                updated_at=utc_now(),
            )
        )

    async def _reset_status(self, entity_type: str) -> None:
        # Caller holds the type lock
        reset = sentinel_status(entity_type)
        reset.created_at = self._statuses[entity_type].created_at
        await self._persist(reset)

    async def reset_checkpoints(self, entity_types: Optional[Sequence[str]] = None) -> None:
        """Return checkpoints to the "never synced" sentinel.

        Waits for any in-flight sync of the same type, so a finishing run can
        never overwrite the sentinel afterwards.
        """
        types = list(entity_types or self.entity_types)
        for entity_type in types:
            self._unit(entity_type)
            async with self._type_locks[entity_type]:
                await self._reset_status(entity_type)
        app_logger.info(f"Reset sync checkpoints for {types}")

    async def clear_index(self) -> None:
        """Drop every indexed chunk and reset every checkpoint with all types locked."""
        async with contextlib.AsyncExitStack() as stack:
            for entity_type in sorted(self.units):
                await stack.enter_async_context(self._type_locks[entity_type])
            await self.pipeline.clear()
            for entity_type in self.entity_types:
                await self._reset_status(entity_type)
        app_logger.warning("Vector store cleared and sync checkpoints reset")

    # -- single unit ----------------------------------------------------------

    async def _backing_store_healthy(self) -> tuple[bool, str]:
        try:
            return await self.repository.ping()
        except Exception as e:
            return False, str(e)

    async def _attempt_recovery(self) -> bool:
        await self._sleep(self.recovery_delay)
        healthy, message = await self._backing_store_healthy()
        if healthy:
            app_logger.info("Backing store connection recovered")
        else:
            app_logger.warning(f"Backing store still unreachable: {message}")
        return healthy

    async def _run_unit(self, unit: SyncUnit) -> SyncResult:
        started = time.perf_counter()
        status = self._statuses[unit.entity_type]
        last_sync = as_utc(status.last_sync)
        # Checkpoint is taken before fetching so edits made mid-sync are picked up next run
        sync_started = utc_now()

        changes = await changes_since(unit.source, last_sync)
        app_logger.info(
            f"Found {len(changes)} {unit.entity_type} changes since {last_sync.isoformat()}"
        )
        if not changes:
            return SyncResult(entity_type=unit.entity_type, skipped=True)

        docs = unit.enricher.enrich_batch(changes)
        indexed = await self.pipeline.replace_source_type(docs, unit.entity_type)
        checksum = compute_checksum(changes)
        duration_ms = int((time.perf_counter() - started) * 1000)

        await self._record_success(unit.entity_type, checksum, indexed.documents, duration_ms, sync_started)
        return SyncResult(
            entity_type=unit.entity_type,
            synced=indexed.documents,
            chunks=indexed.chunks,
            duration_ms=duration_ms,
            checksum=checksum,
        )

    async def sync_entity(self, entity_type: str, from_epoch: bool = False) -> SyncResult:
        """Sync one type with retries. Failures are recorded, never raised.

        ``from_epoch`` resets the checkpoint to the sentinel once the type lock
        is held, forcing a full re-fetch.
        """
        unit = self._unit(entity_type)
        counters = self._counters[entity_type]
        started = time.perf_counter()
        last_error: Optional[BaseException] = None

        async with self._type_locks[entity_type]:
            if from_epoch:
                await self._reset_status(entity_type)
            counters.runs += 1
            for attempt in range(1, self.max_attempts + 1):
                counters.attempts += 1
                healthy, message = await self._backing_store_healthy()
                if not healthy:
                    app_logger.warning(
                        f"Backing store unhealthy for {entity_type}, attempt {attempt}: {message}"
                    )
                    if not await self._attempt_recovery():
                        counters.failed_attempts += 1
                        last_error = ConnectionError(f"Backing store unreachable: {message}")
                        if attempt < self.max_attempts:
                            await self._sleep(self.backoff_base ** attempt)
                        continue

                try:
                    result = await self._run_unit(unit)
                except Exception as e:
                    last_error = e
                    counters.failed_attempts += 1
                    app_logger.warning(f"Sync attempt {attempt} failed for {entity_type}: {e}")
                    if attempt < self.max_attempts:
                        await self._sleep(self.backoff_base ** attempt)
                    continue

                result.attempts = attempt
                if not result.skipped:
                    self._durations[entity_type].append(result.duration_ms)
                    log_performance(f"sync:{entity_type}", result.duration_ms / 1000, documents=result.synced)
                    app_logger.info(
                        f"Synced {result.synced} {entity_type} documents in {result.duration_ms}ms (attempt {attempt})"
                    )
                else:
                    app_logger.info(f"{entity_type}: no changes since last sync, skipped")
                return result

            counters.failed_runs += 1
            duration_ms = int((time.perf_counter() - started) * 1000)
            error = str(last_error) if last_error else "Unknown error"
            app_logger.error(f"All {self.max_attempts} sync attempts failed for {entity_type}: {error}")
            await self._record_failure(entity_type, error, duration_ms)
            return SyncResult(
                entity_type=entity_type,
                success=False,
                attempts=self.max_attempts,
                duration_ms=duration_ms,
                error=error,
            )

    # -- fan-out ------------------------------------------------------------

    async def sync_all(self, full_resync: bool = False) -> SyncRunSummary:
        """Sync every type concurrently; one failure never blocks the others."""
        started = time.perf_counter()
        outcomes = await asyncio.gather(
            *(self.sync_entity(t, from_epoch=full_resync) for t in self.entity_types),
            return_exceptions=True,
        )

        summary = SyncRunSummary(full_resync=full_resync)
        for entity_type, outcome in zip(self.entity_types, outcomes):
            if isinstance(outcome, BaseException):
                app_logger.error(f"{entity_type}: sync crashed: {outcome}")
                outcome = SyncResult(entity_type=entity_type, success=False, error=str(outcome))
            summary.results[entity_type] = outcome
            if not outcome.success:
                summary.total_failed += 1
            elif outcome.skipped:
                summary.total_skipped += 1
            else:
                summary.total_synced += outcome.synced

        summary.total_time_ms = int((time.perf_counter() - started) * 1000)
        label = "Full" if full_resync else "Incremental"
        app_logger.info(
            f"{label} sync completed in {summary.total_time_ms}ms. Synced: {summary.total_synced}, "
            f"Skipped: {summary.total_skipped}, Failed: {summary.total_failed}"
        )
        log_performance("sync:all", summary.total_time_ms / 1000, full_resync=full_resync)
        return summary

    async def force_sync(self, entity_type: str) -> SyncResult:
        """Full re-fetch and re-index of one type."""
        self._unit(entity_type)
        app_logger.info(f"Starting forced full sync for {entity_type}")
        return await self.sync_entity(entity_type, from_epoch=True)

    async def force_full_resync(self) -> SyncRunSummary:
        """Reset every checkpoint, then sync every type from the epoch sentinel."""
        app_logger.info("Starting forced full sync of all entity types")
        return await self.sync_all(full_resync=True)

    # -- metrics ------------------------------------------------------------

    def durations(self, entity_type: str) -> List[int]:
        self._unit(entity_type)
        return list(self._durations[entity_type])

    def average_durations(self) -> Dict[str, Optional[float]]:
        return {
            t: (round(sum(samples) / len(samples), 2) if samples else None)
            for t, samples in self._durations.items()
        }

    def error_rates(self) -> Dict[str, float]:
        return {
            t: (round(c.failed_attempts / c.attempts, 4) if c.attempts else 0.0)
            for t, c in self._counters.items()
        }

    def run_counts(self) -> Dict[str, Dict[str, int]]:
        return {
            t: {
                "runs": c.runs,
                "failed_runs": c.failed_runs,
                "attempts": c.attempts,
                "failed_attempts": c.failed_attempts,
            }
            for t, c in self._counters.items()
        }

    # -- scheduling ---------------------------------------------------------

    async def run_periodic(self, interval_minutes: float, initial: bool = True) -> None:
        """Sync on a fixed interval until cancelled."""
        if initial:
            await self._safe_sync_all()
        while True:
            await asyncio.sleep(interval_minutes * 60)
            await self._safe_sync_all()

    async def _safe_sync_all(self) -> None:
        try:
            await self.sync_all()
        except Exception as e:
            app_logger.error(f"Scheduled sync failed: {e}")


_orchestrator: Optional[SyncOrchestrator] = None


def set_sync_orchestrator(orchestrator: Optional[SyncOrchestrator]) -> None:
    """Install the process-wide orchestrator (built at startup once sources exist)."""
    global _orchestrator
    _orchestrator = orchestrator


def get_sync_orchestrator() -> SyncOrchestrator:
    if _orchestrator is None:
        raise NotInitializedError("Sync orchestrator not initialized")
    return _orchestrator
