"""Test doubles and record factories shared across test modules."""

import asyncio
import re
import zlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bizrag.services.embeddings import EmbeddingProvider
from bizrag.services.generation import GenerationProvider

DIMENSION = 64


class HashingEmbedder(EmbeddingProvider):
    """Bag-of-words vectors hashed into a fixed number of buckets."""

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        vectors = []
        for text in texts:
            vector = [0.0] * DIMENSION
            for token in re.findall(r"\w+", text.lower()):
                vector[zlib.crc32(token.encode("utf-8")) % DIMENSION] += 1.0
            if not any(vector):
                vector[0] = 1.0
            vectors.append(vector)
        return vectors


class FailingEmbedder(EmbeddingProvider):
    async def _embed(self, texts: List[str]) -> List[List[float]]:
        raise ConnectionError("embedding backend unreachable")


class FakeSource:
    """Entity source backed by a list; can be told to fail or to wait on a gate."""

    def __init__(
        self,
        records: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.records = list(records or [])
        self.error = error
        self.gate = gate
        self.calls = 0

    async def list_all(self) -> List[Dict[str, Any]]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.records]


class ScriptedProvider(GenerationProvider):
    """Generation provider that replays scripted replies and records prompts."""

    name = "ollama"

    def __init__(self, replies: Optional[List[Any]] = None, model: str = "llama3.1:8b"):
        super().__init__(model)
        self.replies = list(replies or ["Scripted answer"])
        self.prompts: List[str] = []

    async def _probe(self) -> None:
        return None

    async def _generate(self, prompt: str, params: Dict[str, Any]) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def iso(days_ago: float = 0) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()


def make_invoice(
    invoice_id: int,
    status: str = "Pending",
    total: float = 500.0,
    client_id: int = 1,
    updated_at: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": invoice_id,
        "invoiceNumber": f"INV-{invoice_id:04d}",
        "clientId": client_id,
        "clientName": f"Client {client_id}",
        "status": status,
        "totalAmount": total,
        "paidAmount": total if status == "Paid" else 0,
        "issueDate": "2024-05-01",
        "dueDate": "2024-05-31",
        "createdAt": "2024-05-01T10:00:00+00:00",
        "updatedAt": updated_at or "2024-05-02T10:00:00+00:00",
    }


def make_product(product_id: int, stock: int = 50, category: str = "Hardware", **extra: Any) -> Dict[str, Any]:
    record = {
        "id": product_id,
        "name": f"Product {product_id}",
        "sku": f"SKU-{product_id}",
        "category": {"name": category},
        "brand": "Acme",
        "price": 25.0,
        "costPrice": 15.0,
        "stockQuantity": stock,
        "reorderPoint": 10,
        "status": "Active",
        "createdAt": "2024-04-01T10:00:00+00:00",
        "updatedAt": "2024-04-02T10:00:00+00:00",
    }
    record.update(extra)
    return record


