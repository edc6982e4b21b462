"""
Text generation providers.

Two interchangeable backends sit behind one ``generate(prompt, params)``
contract: a locally hosted Ollama server and a hosted OpenAI-compatible
inference API (Hugging Face router). Both are probed once at startup; a
provider that fails its probe stays unready and every ``generate`` call
raises ``NotInitializedError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

import httpx
from openai import AsyncOpenAI

from bizrag.config.logger import app_logger
from bizrag.config.settings import settings
from bizrag.utils.errors import NotInitializedError
from bizrag.utils.readiness import ReadinessSignal

PROBE_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ModelPreset:
    """Sampling and resource hints sent with each generation request."""
    temperature: float = 0.1
    top_p: float = 0.9
    top_k: int = 40
    repeat_penalty: float = 1.1
    num_ctx: int = 256
    num_predict: int = 128
    num_thread: int = 4
    num_gpu: int = 0

    def as_options(self) -> Dict[str, Any]:
        return asdict(self)


# CPU-friendly default for models without an entry below
DEFAULT_PRESET = ModelPreset()

MODEL_PRESETS: Dict[str, ModelPreset] = {
    "llama3.1:8b": replace(DEFAULT_PRESET, num_ctx=512, num_predict=256, num_thread=6),
    "llama3.1:70b": replace(DEFAULT_PRESET, num_ctx=1024, num_predict=512, num_thread=8),
    "gemma:2b": replace(
        DEFAULT_PRESET,
        temperature=0.2,
        top_p=0.8,
        top_k=30,
        repeat_penalty=1.05,
        num_ctx=512,
        num_predict=256,
        num_thread=4,
    ),
    "mistral:7b": replace(DEFAULT_PRESET, num_ctx=512, num_predict=256, num_thread=6),
    "phi3:mini": replace(DEFAULT_PRESET, num_ctx=512, num_predict=256, num_thread=4),
    "qwen2.5:0.5b": replace(DEFAULT_PRESET, num_ctx=256, num_predict=128, num_thread=2),
}


def preset_for(model: str) -> ModelPreset:
    """Look up tuning by model name, falling back to the CPU-friendly default."""
    preset = MODEL_PRESETS.get(model.lower())
    if preset is None:
        app_logger.warning(f"No preset for model {model}, using default configuration")
        return DEFAULT_PRESET
    return preset


class GenerationProvider(ABC):
    """Provider-agnostic ``prompt -> text`` contract."""

    name: str = "base"

    def __init__(self, model: str):
        self.model = model
        self.readiness = ReadinessSignal(f"{self.name} provider")

    @abstractmethod
    async def _generate(self, prompt: str, params: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def _probe(self) -> None:
        """Raise if the backend is unreachable."""

    async def probe(self) -> bool:
        """Connectivity check run once at startup. Marks the provider ready or failed."""
        try:
            await self._probe()
        except Exception as e:
            self.readiness.set_failed(e)
            app_logger.error(f"{self.name} provider probe failed: {e}")
            return False
        self.readiness.set_ready()
        app_logger.info(f"{self.name} provider ready (model={self.model})")
        return True

    def is_ready(self) -> bool:
        return self.readiness.is_ready

    async def generate(self, prompt: str, params: Optional[Dict[str, Any]] = None) -> str:
        self.readiness.ensure_ready()
        return await self._generate(prompt, params or {})

    async def aclose(self) -> None:
        return None


class OllamaProvider(GenerationProvider):
    """Locally hosted model served by Ollama's REST API."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = settings.OLLAMA_URL,
        model: str = settings.OLLAMA_CHAT_MODEL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(model)
        self.base_url = base_url.rstrip("/")
        self.preset = preset_for(model)
        # Per-call timeouts come from the strategy layer
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=None)

    async def _probe(self) -> None:
        response = await self._client.get("/api/tags", timeout=PROBE_TIMEOUT_SECONDS)
        response.raise_for_status()

    async def _generate(self, prompt: str, params: Dict[str, Any]) -> str:
        options = {**self.preset.as_options(), **params}
        response = await self._client.post(
            "/api/generate",
            json={"model": self.model, "prompt": prompt, "stream": False, "options": options},
        )
        response.raise_for_status()
        return response.json().get("response", "")

    async def aclose(self) -> None:
        await self._client.aclose()


class HuggingFaceProvider(GenerationProvider):
    """Hosted inference through the OpenAI-compatible Hugging Face router."""

    name = "huggingface"

    def __init__(
        self,
        api_key: str = settings.HUGGING_FACE_API_KEY,
        model: str = settings.HUGGING_FACE_MODEL,
        base_url: str = settings.HUGGING_FACE_BASE_URL,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(model)
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ValueError("HUGGING_FACE_API_KEY must be set for the huggingface provider")
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def _probe(self) -> None:
        await self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": "Hello"}],
            max_tokens=5,
            timeout=PROBE_TIMEOUT_SECONDS,
        )

    async def _generate(self, prompt: str, params: Dict[str, Any]) -> str:
        completion = await self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=params.get("max_tokens", 1024),
            temperature=params.get("temperature", 0.1),
            top_p=params.get("top_p", 0.9),
        )
        return completion.choices[0].message.content or ""

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()


class ProviderRegistry:
    """Named providers plus the one used when a turn does not pick one."""

    def __init__(self, providers: Dict[str, GenerationProvider], current: str):
        if current not in providers:
            raise ValueError(f"Unknown generation provider: {current}")
        self.providers = providers
        self.current = current

    def get(self, name: Optional[str] = None) -> GenerationProvider:
        key = name or self.current
        provider = self.providers.get(key)
        if provider is None:
            raise NotInitializedError(f"Generation provider '{key}' is not configured")
        return provider

    def switch_provider(self, name: str) -> str:
        if name not in self.providers:
            raise ValueError(f"Unknown generation provider: {name}")
        self.current = name
        app_logger.info(f"Switched to {name} provider")
        return self.current

    async def probe_all(self) -> Dict[str, bool]:
        return {name: await provider.probe() for name, provider in self.providers.items()}

    def status(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "providers": {
                name: {"model": p.model, "ready": p.is_ready()} for name, p in self.providers.items()
            },
        }

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Return the process-wide provider registry built from settings."""
    global _registry
    if _registry is None:
        providers: Dict[str, GenerationProvider] = {"ollama": OllamaProvider()}
        if settings.HUGGING_FACE_API_KEY:
            providers["huggingface"] = HuggingFaceProvider()
        current = settings.LLM_PROVIDER if settings.LLM_PROVIDER in providers else "ollama"
        _registry = ProviderRegistry(providers, current)
    return _registry
