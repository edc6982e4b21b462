"""Vector index backends.

Chunks are partitioned by entity type: Pinecone gets one namespace per type,
the in-memory backend one dict per type. Both accept the same Mongo-style
metadata filter operators ($eq, $ne, $in, $nin, $gt, $gte, $lt, $lte, $and, $or).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from pinecone import Pinecone, ServerlessSpec
from pinecone.exceptions import NotFoundException

from bizrag.config.logger import app_logger
from bizrag.config.settings import settings
from bizrag.models.documents import ENTITY_TYPES, ScoredChunk
from bizrag.utils.errors import NotInitializedError


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexStats:
    counts: Dict[str, int]
    dimension: Optional[int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def namespaces_for_filter(filter: Optional[Dict[str, Any]]) -> List[str]:
    """Pick the entity-type partitions a filter can match."""
    if not filter or "entity_type" not in filter:
        return list(ENTITY_TYPES)
    cond = filter["entity_type"]
    if isinstance(cond, dict):
        if "$eq" in cond:
            return [cond["$eq"]]
        if "$in" in cond:
            return list(cond["$in"])
        return list(ENTITY_TYPES)
    return [cond]


def _compare(value: Any, op: str, expected: Any) -> bool:
    if isinstance(value, list):
        if op in ("$eq", "$in"):
            pool = expected if op == "$in" else [expected]
            return any(v in pool for v in value)
        if op in ("$ne", "$nin"):
            pool = expected if op == "$nin" else [expected]
            return not any(v in pool for v in value)
        return False
    if op == "$eq":
        return value == expected
    if op == "$ne":
        return value != expected
    if op == "$in":
        return value in expected
    if op == "$nin":
        return value not in expected
    if value is None:
        return False
    try:
        if op == "$gt":
            return value > expected
        if op == "$gte":
            return value >= expected
        if op == "$lt":
            return value < expected
        if op == "$lte":
            return value <= expected
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def matches_filter(metadata: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    """Evaluate a Mongo-style filter against flat chunk metadata."""
    if not filter:
        return True
    for key, cond in filter.items():
        if key == "$and":
            if not all(matches_filter(metadata, sub) for sub in cond):
                return False
            continue
        if key == "$or":
            if not any(matches_filter(metadata, sub) for sub in cond):
                return False
            continue
        value = metadata.get(key)
        if isinstance(cond, dict):
            if not all(_compare(value, op, expected) for op, expected in cond.items()):
                return False
        elif not _compare(value, "$eq", cond):
            return False
    return True


class VectorIndex(ABC):
    """Storage for embedded chunks, partitioned by entity type."""

    @abstractmethod
    async def connect(self, dimension: int) -> None:
        """Open (and if needed create) the index for vectors of ``dimension``."""

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def upsert(self, records: List[VectorRecord], namespace: str) -> None: ...

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredChunk]: ...

    @abstractmethod
    async def delete_namespace(self, namespace: str) -> None: ...

    async def delete_all(self) -> None:
        for namespace in ENTITY_TYPES:
            await self.delete_namespace(namespace)

    @abstractmethod
    async def stats(self) -> IndexStats: ...

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise NotInitializedError("Vector store not initialized")


class InMemoryVectorIndex(VectorIndex):
    """Process-local index using numpy cosine similarity."""

    def __init__(self) -> None:
        self._partitions: Dict[str, Dict[str, VectorRecord]] = {}
        self._dimension: Optional[int] = None
        self._connected = False
        self._lock = asyncio.Lock()

    async def connect(self, dimension: int) -> None:
        self._dimension = dimension
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def upsert(self, records: List[VectorRecord], namespace: str) -> None:
        self._require_connection()
        async with self._lock:
            partition = self._partitions.setdefault(namespace, {})
            for record in records:
                partition[record.id] = record

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredChunk]:
        self._require_connection()
        candidates: List[VectorRecord] = []
        for namespace in namespaces_for_filter(filter):
            for record in self._partitions.get(namespace, {}).values():
                if matches_filter(record.metadata, filter):
                    candidates.append(record)
        if not candidates or top_k <= 0:
            return []

        matrix = np.asarray([r.values for r in candidates], dtype=float)
        query = np.asarray(vector, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        scores = matrix @ query / norms

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            ScoredChunk(
                id=candidates[i].id,
                text=candidates[i].text,
                score=float(scores[i]),
                metadata=dict(candidates[i].metadata),
            )
            for i in order
        ]

    async def delete_namespace(self, namespace: str) -> None:
        self._require_connection()
        async with self._lock:
            self._partitions.pop(namespace, None)

    async def stats(self) -> IndexStats:
        self._require_connection()
        counts = {ns: len(records) for ns, records in self._partitions.items() if records}
        return IndexStats(counts=counts, dimension=self._dimension)


class PineconeVectorIndex(VectorIndex):
    """Pinecone serverless index with one namespace per entity type.

    The Pinecone SDK is synchronous, so calls run in worker threads.
    """

    def __init__(
        self,
        api_key: str = settings.PINECONE_API_KEY,
        index_name: str = settings.PINECONE_INDEX_NAME,
        region: str = settings.PINECONE_REGION,
    ):
        self._api_key = api_key
        self.index_name = index_name
        self.region = region or "us-east-1"
        self._index = None

    async def connect(self, dimension: int) -> None:
        if not self._api_key:
            raise ValueError("PINECONE_API_KEY must be configured")
        self._index = await asyncio.to_thread(self._open_index, dimension)

    def _open_index(self, dimension: int):
        pc = Pinecone(api_key=self._api_key)
        existing = [idx["name"] for idx in pc.list_indexes()]
        if self.index_name not in existing:
            app_logger.info(f"Creating Pinecone index '{self.index_name}' (dimension={dimension})")
            pc.create_index(
                name=self.index_name,
                dimension=dimension,
                metric="cosine",
                spec=ServerlessSpec(cloud="aws", region=self.region),
            )
        app_logger.info(f"Using Pinecone index '{self.index_name}'")
        return pc.Index(self.index_name)

    @property
    def is_connected(self) -> bool:
        return self._index is not None

    async def upsert(self, records: List[VectorRecord], namespace: str) -> None:
        self._require_connection()
        if not records:
            return
        vectors = [
            {"id": r.id, "values": r.values, "metadata": {**r.metadata, "text": r.text}}
            for r in records
        ]
        await asyncio.to_thread(self._index.upsert, vectors=vectors, namespace=namespace)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[ScoredChunk]:
        self._require_connection()
        namespaces = namespaces_for_filter(filter)
        responses = await asyncio.gather(
            *(
                asyncio.to_thread(
                    self._index.query,
                    vector=vector,
                    top_k=top_k,
                    filter=filter or None,
                    namespace=namespace,
                    include_metadata=True,
                )
                for namespace in namespaces
            )
        )
        chunks: List[ScoredChunk] = []
        for response in responses:
            for match in response.matches:
                metadata = dict(match.metadata or {})
                text = metadata.pop("text", "")
                chunks.append(ScoredChunk(id=match.id, text=text, score=match.score, metadata=metadata))
        chunks.sort(key=lambda c: c.score, reverse=True)
        return chunks[:top_k]

    async def delete_namespace(self, namespace: str) -> None:
        self._require_connection()
        try:
            await asyncio.to_thread(self._index.delete, delete_all=True, namespace=namespace)
        except NotFoundException:
            app_logger.debug(f"Namespace '{namespace}' already empty")

    async def stats(self) -> IndexStats:
        self._require_connection()
        response = await asyncio.to_thread(self._index.describe_index_stats)
        counts = {
            namespace: summary.vector_count
            for namespace, summary in (response.namespaces or {}).items()
            if summary.vector_count
        }
        return IndexStats(counts=counts, dimension=response.dimension)


def build_vector_index(backend: str = settings.VECTOR_STORE_BACKEND) -> VectorIndex:
    """Instantiate the configured backend."""
    if backend == "memory":
        return InMemoryVectorIndex()
    if backend == "pinecone":
        return PineconeVectorIndex()
    raise ValueError(f"Unknown VECTOR_STORE_BACKEND: {backend}")


def iter_batches(items: List[Any], size: int) -> Iterable[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
