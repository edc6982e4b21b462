"""Indexing pipeline: clean, chunk, embed and store enriched documents."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

from bizrag.config.logger import app_logger
from bizrag.config.settings import effective_overlap, settings
from bizrag.models.documents import EnrichedDocument, ScoredChunk
from bizrag.services.embeddings import EmbeddingProvider, get_embedding_provider
from bizrag.services.vector_index import VectorIndex, VectorRecord, build_vector_index, iter_batches
from bizrag.utils.errors import NotInitializedError, SearchError
from bizrag.utils.readiness import ReadinessSignal

# Paragraph, line, table cell, word, character
SEPARATORS = ["\n\n", "\n", "|", " ", ""]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_RANGE_KEYS = ("from", "to")


def clean_content(text: str) -> str:
    """Strip control characters and normalise line endings."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_CHARS.sub("", text).strip()


def to_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds for an ISO string or datetime, None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return None


def _store_value(value: Any) -> Any:
    """Coerce a metadata value into something every backend can store."""
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None]
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def flatten_metadata(doc: EnrichedDocument) -> Dict[str, Any]:
    """Flatten a document's typed metadata plus enrichment fields into one level."""
    typed = doc.metadata.model_dump(exclude={"extra"})
    flat: Dict[str, Any] = {}
    for key, value in doc.metadata.extra.items():
        if value is not None:
            flat[key] = _store_value(value)
    for key, value in typed.items():
        if value is not None:
            flat[key] = _store_value(value)

    flat["keywords"] = list(doc.keywords)
    flat["tags"] = list(doc.tags)
    flat["summary"] = doc.summary
    flat["relationships"] = json.dumps(
        [r.model_dump() for r in doc.relationships], sort_keys=True
    )
    for field in ("created_at", "updated_at"):
        ts = to_timestamp(typed.get(field))
        if ts is not None:
            flat[field.replace("_at", "_ts")] = ts
    return flat


def translate_filter(filter: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Translate a structured filter into store-level operators.

    - scalar -> ``$eq``
    - list -> ``$in``
    - ``{"from": ..., "to": ...}`` -> ``$gte``/``$lte`` on the matching ``*_ts`` field
    - dicts already using ``$`` operators pass through unchanged
    """
    if not filter:
        return None
    translated: Dict[str, Any] = {}
    for key, value in filter.items():
        if value is None:
            continue
        if key.startswith("$"):
            translated[key] = value
        elif isinstance(value, dict) and any(k in value for k in _RANGE_KEYS):
            field = key.replace("_at", "_ts") if key.endswith("_at") else key
            bounds: Dict[str, Any] = {}
            start = to_timestamp(value.get("from"))
            end = to_timestamp(value.get("to"))
            if start is not None:
                bounds["$gte"] = start
            if end is not None:
                bounds["$lte"] = end
            if bounds:
                translated[field] = bounds
        elif isinstance(value, dict):
            translated[key] = value
        elif isinstance(value, (list, tuple, set)):
            translated[key] = {"$in": list(value)}
        else:
            translated[key] = {"$eq": value}
    return translated or None


@dataclass
class IndexResult:
    documents: int
    chunks: int


class IndexingPipeline:
    """Vector store service shared by the sync and query flows."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        chunk_size: int = settings.AI_CHUNK_SIZE,
        chunk_overlap: int = settings.AI_CHUNK_OVERLAP,
        batch_size: int = settings.AI_INDEX_BATCH_SIZE,
    ):
        self.embedder = embedder
        self.index = index
        self.chunk_size = chunk_size
        self.chunk_overlap = effective_overlap(chunk_size, chunk_overlap)
        self.batch_size = batch_size
        self.readiness = ReadinessSignal("Vector store")
        self.last_updated: Optional[datetime] = None
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=SEPARATORS,
        )

    async def initialize(self) -> None:
        """Connect the index once the embedding provider is ready."""
        try:
            self.embedder.readiness.ensure_ready()
            await self.index.connect(self.embedder.dimension)
        except Exception as e:
            self.readiness.set_failed(e)
            app_logger.error(f"Vector store failed to initialize: {e}")
            raise NotInitializedError(f"Vector store not initialized: {e}") from e
        self.readiness.set_ready()
        app_logger.info(
            f"Vector store ready (chunk_size={self.chunk_size}, overlap={self.chunk_overlap})"
        )

    def is_ready(self) -> bool:
        return self.readiness.is_ready and self.embedder.is_ready() and self.index.is_connected

    def _ensure_ready(self) -> None:
        if not self.is_ready():
            raise NotInitializedError("Vector store not initialized")

    async def wait_until_ready(self, timeout: float = settings.READINESS_TIMEOUT_SECONDS) -> None:
        await self.readiness.wait(timeout)
        self._ensure_ready()

    def split_document(self, doc: EnrichedDocument) -> List[VectorRecord]:
        """Chunk one document. Vectors are filled in by ``index_documents``."""
        content = clean_content(doc.content)
        if not content:
            return []
        pieces = self._splitter.split_text(content)
        base = flatten_metadata(doc)
        processed_at = datetime.now(timezone.utc).isoformat()
        records = []
        for i, piece in enumerate(pieces):
            metadata = {
                **base,
                "entity_type": doc.entity_type,
                "document_id": doc.id,
                "chunk_index": i,
                "total_chunks": len(pieces),
                "content_length": len(piece),
                "processed_at": processed_at,
            }
            records.append(
                VectorRecord(id=f"{doc.entity_type}:{doc.id}:{i}", values=[], text=piece, metadata=metadata)
            )
        return records

    async def index_documents(self, docs: Sequence[EnrichedDocument], source_type: str) -> IndexResult:
        """Embed and insert documents in batches. Returns documents and chunks written."""
        self._ensure_ready()
        total_chunks = 0
        for batch in iter_batches(list(docs), self.batch_size):
            records = [record for doc in batch for record in self.split_document(doc)]
            if not records:
                continue
            vectors = await self.embedder.embed_batch([r.text for r in records])
            for record, vector in zip(records, vectors):
                record.values = vector
            await self.index.upsert(records, namespace=source_type)
            total_chunks += len(records)
            app_logger.debug(f"Indexed batch of {len(batch)} {source_type} documents ({len(records)} chunks)")

        self.last_updated = datetime.now(timezone.utc)
        app_logger.info(f"Added {len(docs)} documents ({total_chunks} chunks) to vector store for {source_type}")
        return IndexResult(documents=len(docs), chunks=total_chunks)

    async def replace_source_type(self, docs: Sequence[EnrichedDocument], source_type: str) -> IndexResult:
        """Delete every chunk of ``source_type`` then index ``docs``.

        Not atomic: a failure after the delete leaves the type empty until the next sync.
        """
        await self.delete_by_source_type(source_type)
        return await self.index_documents(docs, source_type)

    async def search(
        self,
        query: str,
        k: int = 4,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredChunk]:
        """Similarity search with an optional structured filter."""
        self._ensure_ready()
        try:
            vector = await self.embedder.embed(query)
            chunks = await self.index.query(vector, top_k=k, filter=translate_filter(filter))
        except NotInitializedError:
            raise
        except Exception as e:
            app_logger.error(f"Similarity search failed: {e}")
            raise SearchError(f"Similarity search failed: {e}") from e
        for rank, chunk in enumerate(chunks, start=1):
            chunk.search_rank = rank
        return chunks

    async def delete_by_source_type(self, source_type: str) -> None:
        self._ensure_ready()
        await self.index.delete_namespace(source_type)
        app_logger.info(f"Removed all chunks for {source_type} from vector store")

    async def clear(self) -> None:
        self._ensure_ready()
        await self.index.delete_all()
        self.last_updated = datetime.now(timezone.utc)
        app_logger.info("Vector store cleared")

    async def stats(self) -> Dict[str, Any]:
        """Aggregate counts, dimensionality and approximate footprint."""
        self._ensure_ready()
        raw = await self.index.stats()
        dimension = raw.dimension or self.embedder.dimension or 0
        return {
            "total_chunks": raw.total,
            "chunks_by_type": dict(sorted(raw.counts.items())),
            "average_dimension": dimension,
            # float32 vectors only; metadata and text are not counted
            "storage_bytes": raw.total * dimension * 4,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


_pipeline: Optional[IndexingPipeline] = None


def get_indexing_pipeline() -> IndexingPipeline:
    """Return the process-wide indexing pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = IndexingPipeline(get_embedding_provider(), build_vector_index())
    return _pipeline
