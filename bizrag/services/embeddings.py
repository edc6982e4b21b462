"""Embedding provider adapter (OpenAI or any OpenAI-compatible server)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from openai import AsyncOpenAI

from bizrag.config.logger import app_logger
from bizrag.config.settings import settings
from bizrag.utils.errors import NotInitializedError
from bizrag.utils.readiness import ReadinessSignal

# Max inputs per embeddings request
EMBED_REQUEST_LIMIT = 256


class EmbeddingProvider(ABC):
    """Turns text into fixed-length vectors once it has reported ready."""

    def __init__(self) -> None:
        self.readiness = ReadinessSignal("Embedding provider")
        self.dimension: Optional[int] = None

    @abstractmethod
    async def _embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a non-empty list of texts without readiness checks."""

    async def initialize(self) -> None:
        """Probe the backend once; failure is fatal and leaves the provider unready."""
        try:
            probe = await self._embed(["readiness probe"])
        except Exception as e:
            self.readiness.set_failed(e)
            app_logger.error(f"Embedding provider failed to initialize: {e}")
            raise NotInitializedError(f"Embedding provider failed to initialize: {e}") from e
        self.dimension = len(probe[0])
        self.readiness.set_ready()
        app_logger.info(f"Embedding provider ready (dimension={self.dimension})")

    def is_ready(self) -> bool:
        return self.readiness.is_ready

    async def wait_until_ready(self, timeout: float = settings.READINESS_TIMEOUT_SECONDS) -> None:
        await self.readiness.wait(timeout)

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.readiness.ensure_ready()
        if not texts:
            return []
        vectors: List[List[float]] = []
        items = list(texts)
        for i in range(0, len(items), EMBED_REQUEST_LIMIT):
            vectors.extend(await self._embed(items[i : i + EMBED_REQUEST_LIMIT]))
        return vectors


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings through the OpenAI SDK, optionally pointed at a local base URL."""

    def __init__(
        self,
        api_key: str = "",
        model: str = settings.EMBEDDING_MODEL,
        base_url: str = "",
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__()
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key and not self._base_url:
                raise ValueError("OPENAI_API_KEY or EMBEDDING_BASE_URL must be configured")
            self._client = AsyncOpenAI(
                # Local OpenAI-compatible servers ignore the key but the SDK requires one
                api_key=self._api_key or "local",
                base_url=self._base_url or None,
            )
            app_logger.info(f"OpenAI embeddings client initialized (model={self.model})")
        return self._client

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        response = await client.embeddings.create(model=self.model, input=texts)
        return [item.embedding for item in response.data]


_provider: Optional[EmbeddingProvider] = None


def get_embedding_provider() -> EmbeddingProvider:
    """Return the process-wide embedding provider."""
    global _provider
    if _provider is None:
        _provider = OpenAIEmbeddingProvider(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            base_url=settings.EMBEDDING_BASE_URL,
        )
    return _provider
