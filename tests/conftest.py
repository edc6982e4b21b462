"""Shared fixtures: deterministic embeddings, in-memory stores and a no-op sleep."""

import pytest
import pytest_asyncio

from bizrag.services.indexing import IndexingPipeline
from bizrag.services.sync_status import InMemorySyncStatusRepository
from bizrag.services.vector_index import InMemoryVectorIndex
from tests.factories import HashingEmbedder, RecordingSleep


@pytest_asyncio.fixture
async def embedder() -> HashingEmbedder:
    provider = HashingEmbedder()
    await provider.initialize()
    return provider


@pytest_asyncio.fixture
async def pipeline(embedder) -> IndexingPipeline:
    service = IndexingPipeline(embedder, InMemoryVectorIndex(), chunk_size=2000, chunk_overlap=100, batch_size=2)
    await service.initialize()
    return service


@pytest.fixture
def repository() -> InMemorySyncStatusRepository:
    return InMemorySyncStatusRepository()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()
