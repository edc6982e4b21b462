"""
Tests for generation providers.

Covers:
- Model presets
- Ollama request shape and probing
- Provider registry switching and status
"""

import json

import httpx
import pytest

from bizrag.services.generation import (
    DEFAULT_PRESET,
    MODEL_PRESETS,
    OllamaProvider,
    ProviderRegistry,
    preset_for,
)
from bizrag.utils.errors import NotInitializedError
from tests.factories import ScriptedProvider


def ollama_with(handler, model="llama3.1:8b"):
    client = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))
    return OllamaProvider(base_url="http://ollama.test", model=model, client=client)


class TestPresets:
    def test_known_model(self):
        assert preset_for("llama3.1:8b") is MODEL_PRESETS["llama3.1:8b"]

    def test_unknown_model_uses_default(self):
        assert preset_for("tinyllama") is DEFAULT_PRESET
        assert DEFAULT_PRESET.as_options()["num_gpu"] == 0


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_generate_sends_preset_options(self):
        seen = {}

        def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": []})
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"response": "There are 3 overdue invoices."})

        provider = ollama_with(handler)
        assert await provider.probe()

        text = await provider.generate("How many overdue invoices?", {"temperature": 0.5})

        assert text == "There are 3 overdue invoices."
        assert seen["model"] == "llama3.1:8b"
        assert seen["stream"] is False
        assert seen["options"]["temperature"] == 0.5
        assert seen["options"]["num_ctx"] == MODEL_PRESETS["llama3.1:8b"].num_ctx
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_failed_probe_leaves_provider_unready(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = ollama_with(handler)

        assert await provider.probe() is False
        assert not provider.is_ready()
        with pytest.raises(NotInitializedError):
            await provider.generate("hello")
        await provider.aclose()


class TestProviderRegistry:
    @pytest.mark.asyncio
    async def test_switch_and_status(self):
        local = ScriptedProvider()
        hosted = ScriptedProvider(model="meta-llama/Llama-3.1-8B-Instruct")
        registry = ProviderRegistry({"ollama": local, "huggingface": hosted}, "ollama")
        await registry.probe_all()

        registry.switch_provider("huggingface")

        assert registry.get() is hosted
        assert registry.get("ollama") is local
        status = registry.status()
        assert status["current"] == "huggingface"
        assert status["providers"]["ollama"]["ready"] is True

    def test_unknown_provider(self):
        registry = ProviderRegistry({"ollama": ScriptedProvider()}, "ollama")

        with pytest.raises(ValueError):
            registry.switch_provider("openai")
        with pytest.raises(NotInitializedError):
            registry.get("huggingface")
