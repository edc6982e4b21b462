"""Read-only access to the business application's records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from bizrag.config.logger import app_logger
from bizrag.config.settings import settings
from bizrag.models.sync_status import EPOCH, as_utc
from bizrag.services.indexing import to_timestamp

Record = Dict[str, Any]

# Business API collection paths per entity type
ENTITY_PATHS: Dict[str, str] = {
    "users": "/users",
    "clients": "/clients",
    "products": "/inventory/products",
    "suppliers": "/purchasing/suppliers",
    "purchases": "/purchasing/purchases",
    "invoices": "/sales/invoices",
    "ledgers": "/accounting/journal-entries",
    "balances": "/accounting/accounts",
}

# Catalogue timestamp predates any real sync, so features only flow on the
# epoch path (first sync or forced full resync).
_CATALOGUE_UPDATED_AT = "2024-01-01T00:00:00+00:00"

SYSTEM_FEATURES: List[Record] = [
    {
        "id": "ai-agent",
        "name": "AI Agent",
        "description": "Natural language interface for business intelligence",
        "capabilities": ["Query processing", "Semantic search", "Data analysis"],
    },
    {
        "id": "inventory-management",
        "name": "Inventory Management",
        "description": "Product and stock management system",
        "capabilities": ["Product tracking", "Stock movements", "Batch management"],
    },
    {
        "id": "sales-management",
        "name": "Sales Management",
        "description": "Invoice and payment processing",
        "capabilities": ["Invoice creation", "Payment tracking", "Client management"],
    },
    {
        "id": "purchasing",
        "name": "Purchasing",
        "description": "Supplier and purchase order management",
        "capabilities": ["Supplier management", "Purchase orders", "Order tracking"],
    },
    {
        "id": "accounting",
        "name": "Accounting",
        "description": "Financial management and reporting",
        "capabilities": ["Journal entries", "Account management", "Financial reports"],
    },
]


class EntitySource(Protocol):
    """Anything that can list every record of one entity type."""

    async def list_all(self) -> List[Record]: ...


class StaticEntitySource:
    """Serves a fixed in-process catalogue."""

    def __init__(self, records: Sequence[Record], updated_at: str = _CATALOGUE_UPDATED_AT):
        self._records = [{"updatedAt": updated_at, "createdAt": updated_at, **r} for r in records]

    async def list_all(self) -> List[Record]:
        return [dict(r) for r in self._records]


class RestEntitySource:
    """Lists records from one collection endpoint of the business API."""

    def __init__(self, client: httpx.AsyncClient, path: str):
        self._client = client
        self.path = path

    async def list_all(self) -> List[Record]:
        response = await self._client.get(self.path)
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict):
            for key in ("data", "items", "results"):
                if isinstance(payload.get(key), list):
                    return payload[key]
            raise ValueError(f"Unexpected payload shape from {self.path}: keys={list(payload)}")
        return payload


def build_business_client(
    base_url: str = settings.BUSINESS_API_URL,
    token: str = settings.BUSINESS_API_TOKEN,
    timeout: float = settings.BUSINESS_API_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)


def build_default_sources(client: httpx.AsyncClient) -> Dict[str, EntitySource]:
    """One source per known entity type."""
    sources: Dict[str, EntitySource] = {
        entity_type: RestEntitySource(client, path) for entity_type, path in ENTITY_PATHS.items()
    }
    sources["system_features"] = StaticEntitySource(SYSTEM_FEATURES)
    return sources


def record_updated_ts(record: Record) -> Optional[float]:
    return to_timestamp(record.get("updatedAt") or record.get("createdAt"))


async def changes_since(source: EntitySource, last_sync: datetime) -> List[Record]:
    """Records changed strictly after ``last_sync``; everything for the epoch sentinel."""
    records = await source.list_all()
    last_sync = as_utc(last_sync)
    if last_sync <= EPOCH:
        return records
    cutoff = last_sync.timestamp()
    changed = []
    for record in records:
        ts = record_updated_ts(record)
        if ts is None:
            app_logger.debug(f"Skipping record {record.get('id')} without a usable updatedAt")
            continue
        if ts > cutoff:
            changed.append(record)
    return changed
