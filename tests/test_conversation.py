"""
Tests for chat turns with progressive fallback.

Covers:
- Strategy order and fallback
- Error classification
- Session updates on success and failure
- Concurrent turns, cleared sessions and stored history
- Language instruction in the prompt
"""

import asyncio
from unittest.mock import ANY, AsyncMock, MagicMock, patch

import httpx
import pytest

from bizrag.services.chat_sessions import ChatMessage, SessionStore
from bizrag.services.conversation import (
    GENERIC_FAILURE_MESSAGE,
    ConversationService,
    Strategy,
    classify_error,
)
from bizrag.services.generation import ProviderRegistry
from bizrag.services.retrieval import RetrievalService, SearchResult
from bizrag.utils.errors import GenerationError, NotInitializedError, SearchError
from tests.factories import ScriptedProvider

STRATEGIES = [
    Strategy("enhanced_search", 8, 1.0),
    Strategy("moderate_context", 4, 1.0),
    Strategy("history_only", 0, 1.0),
]


def make_service(provider, search=None):
    retrieval = MagicMock(spec=RetrievalService)
    retrieval.enhanced_search = search or AsyncMock(return_value=[])
    return ConversationService(
        retrieval,
        SessionStore(),
        ProviderRegistry({"ollama": provider}, "ollama"),
        strategies=STRATEGIES,
    )


async def ready_provider(replies=None):
    provider = ScriptedProvider(replies)
    await provider.probe()
    return provider


class TestStrategyOrder:
    @pytest.mark.asyncio
    async def test_primary_success(self):
        service = make_service(await ready_provider(["Two invoices are overdue."]))

        result = await service.chat("Which invoices are overdue?", "s1")

        assert result.response == "Two invoices are overdue."
        assert result.metadata.strategy_used == "enhanced_search"
        assert result.metadata.provider == "ollama"
        assert result.metadata.message_count == 2

    @pytest.mark.asyncio
    async def test_failing_primary_retrieval_falls_back(self):
        async def search(query, filters=None, limit=10):
            if limit == 8:
                raise SearchError("index timeout")
            return [SearchResult(id="c1", content="Invoice INV-0002 is overdue", entity_type="invoices")]

        provider = await ready_provider(["INV-0002 is overdue."])
        service = make_service(provider, AsyncMock(side_effect=search))

        result = await service.chat("overdue invoices?", "s1")

        assert result.metadata.strategy_used == "moderate_context"
        assert "Invoice INV-0002 is overdue" in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_history_only_when_search_is_down(self):
        search = AsyncMock(side_effect=NotInitializedError("Vector store not initialized"))
        service = make_service(await ready_provider(["Answer from history."]), search)

        result = await service.chat("And the totals?", "s1")

        assert result.metadata.strategy_used == "history_only"
        assert search.await_count == 2

    @pytest.mark.asyncio
    async def test_slow_strategy_times_out_and_falls_back(self):
        provider = await ready_provider()
        calls = []

        async def generate(prompt, params=None):
            calls.append(prompt)
            if len(calls) == 1:
                await asyncio.sleep(5)
            return "fast answer"

        provider.generate = generate
        service = make_service(provider)
        service.strategies = [Strategy("enhanced_search", 8, 0.05), Strategy("history_only", 0, 1.0)]

        result = await service.chat("hello", "s1")

        assert result.metadata.strategy_used == "history_only"


class TestFailures:
    @pytest.mark.asyncio
    async def test_total_failure_is_classified_and_not_stored(self):
        provider = await ready_provider([httpx.ConnectError("fetch failed")])
        service = make_service(provider)

        with pytest.raises(GenerationError) as exc:
            await service.chat("hi", "s1")

        assert exc.value.kind == "connection"
        messages = service.sessions.get("s1").messages
        assert [m.role for m in messages] == ["user"]
        assert service.stats()["failed_count"] == 1

    @pytest.mark.asyncio
    async def test_unready_provider_fails_every_strategy(self):
        provider = ScriptedProvider()  # never probed
        service = make_service(provider)

        with pytest.raises(GenerationError) as exc:
            await service.chat("hi", "s1")

        assert exc.value.kind == "index_not_ready"

    def test_classify_error(self):
        assert classify_error(asyncio.TimeoutError()).kind == "timeout"
        assert classify_error(httpx.ConnectError("refused")).kind == "connection"
        assert classify_error(RuntimeError("fetch failed")).kind == "connection"
        assert classify_error(NotInitializedError("Vector store not initialized")).kind == "index_not_ready"
        generic = classify_error(ValueError("boom"))
        assert generic.kind == "generic"
        assert generic.user_message == GENERIC_FAILURE_MESSAGE
        assert "boom" not in generic.user_message
        assert isinstance(generic.cause, ValueError)


class TestPrompting:
    @pytest.mark.asyncio
    async def test_history_and_language_reach_the_prompt(self):
        provider = await ready_provider(["first", "ثانيا"])
        service = make_service(provider)
        await service.chat("How many clients do we have?", "s1")

        await service.chat("كم عدد الفواتير المتأخرة؟", "s1")

        prompt = provider.prompts[-1]
        assert "User: How many clients do we have?" in prompt
        assert "Assistant: first" in prompt
        assert "Respond in Arabic only" in prompt

    @pytest.mark.asyncio
    async def test_stats_track_queries(self):
        service = make_service(await ready_provider(["ok"]))
        await service.chat("a", "s1")
        await service.chat("b", "s2")

        stats = service.stats()

        assert stats["query_count"] == 2
        assert stats["strategy_counts"]["enhanced_search"] == 2
        assert stats["active_sessions"] == 2


class TestSessionHandling:
    @pytest.mark.asyncio
    async def test_concurrent_turns_on_one_session_alternate(self):
        provider = await ready_provider(["first", "second"])
        original = provider.generate

        async def slow_generate(prompt, params=None):
            await asyncio.sleep(0.01)
            return await original(prompt, params)

        provider.generate = slow_generate
        service = make_service(provider)

        await asyncio.gather(service.chat("one", "s1"), service.chat("two", "s1"))

        messages = service.sessions.get("s1").messages
        assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
        assert [m.content for m in messages] == ["one", "first", "two", "second"]
        assert "Assistant: first" in provider.prompts[1]

    @pytest.mark.asyncio
    async def test_session_cleared_mid_turn_is_not_recreated(self):
        provider = await ready_provider()
        service = make_service(provider)

        async def generate(prompt, params=None):
            service.sessions.clear("s1")
            return "late answer"

        provider.generate = generate

        with patch("bizrag.services.chat_persistence.persist_chat_turn", new=AsyncMock()) as persist:
            result = await service.chat("hi", "s1")

        assert result.response == "late answer"
        assert service.sessions.get("s1") is None
        persist.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completed_turn_is_persisted(self):
        service = make_service(await ready_provider(["Twelve clients."]))

        with patch("bizrag.services.chat_persistence.persist_chat_turn", new=AsyncMock()) as persist:
            await service.chat("How many clients?", "s1", user_id="7")

        persist.assert_awaited_once_with("s1", "7", "How many clients?", "Twelve clients.", ANY)
        assert persist.await_args.args[4]["strategy_used"] == "enhanced_search"

    @pytest.mark.asyncio
    async def test_failed_turn_is_not_persisted(self):
        service = make_service(await ready_provider([RuntimeError("boom")]))

        with patch("bizrag.services.chat_persistence.persist_chat_turn", new=AsyncMock()) as persist:
            with pytest.raises(GenerationError):
                await service.chat("hi", "s1")

        persist.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stored_history_is_restored_before_the_turn(self):
        provider = await ready_provider(["About forty."])
        service = make_service(provider)

        async def restore(store, session_id):
            history = [ChatMessage("user", "How many clients?"), ChatMessage("assistant", "Twelve.")]
            return store.restore(session_id, "7", history)

        with patch("bizrag.services.chat_persistence.restore_session_from_db", new=AsyncMock(side_effect=restore)):
            result = await service.chat("And invoices?", "s1")

        assert "Assistant: Twelve." in provider.prompts[0]
        assert result.metadata.message_count == 4
        assert service.sessions.get("s1").user_id == "7"

    @pytest.mark.asyncio
    async def test_restore_failure_does_not_block_the_turn(self):
        service = make_service(await ready_provider(["ok"]))

        failing = AsyncMock(side_effect=RuntimeError("database down"))
        with patch("bizrag.services.chat_persistence.restore_session_from_db", new=failing):
            result = await service.chat("hi", "s1")

        assert result.response == "ok"
        assert result.metadata.message_count == 2

    @pytest.mark.asyncio
    async def test_live_session_is_not_restored(self):
        service = make_service(await ready_provider(["ok"]))
        service.sessions.get_or_create("s1")

        with patch("bizrag.services.chat_persistence.restore_session_from_db", new=AsyncMock()) as restore:
            await service.chat("hi", "s1")

        restore.assert_not_awaited()
