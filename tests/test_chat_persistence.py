"""Tests for stored conversations against a temporary SQLite database."""

from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio

from bizrag.config.settings import settings
from bizrag.db.db import close_db, init_db, is_initialized
from bizrag.models.conversations import DEFAULT_TITLE
from bizrag.services import chat_persistence
from bizrag.services.chat_persistence import (
    delete_chat_session,
    get_chat_session_detail,
    list_chat_sessions,
    load_chat_messages,
    make_title,
    persist_chat_turn,
    rename_chat_session,
    restore_session_from_db,
    search_chat_messages,
)
from bizrag.services.chat_sessions import SessionStore
from bizrag.services.conversation import ConversationService
from bizrag.services.generation import ProviderRegistry
from bizrag.services.retrieval import RetrievalService
from bizrag.utils.errors import NotInitializedError
from tests.factories import ScriptedProvider


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bizrag.db'}")
    await init_db()
    assert is_initialized()
    yield
    await close_db()


class TestTitles:
    def test_short_question_is_the_title(self):
        assert make_title("Which invoices are overdue?") == "Which invoices are overdue?"

    def test_long_question_is_truncated(self):
        title = make_title("x" * 80)

        assert title == "x" * 50 + "..."

    def test_blank_question_gets_default_title(self):
        assert make_title("   ") == DEFAULT_TITLE


class TestPersistTurns:
    @pytest.mark.asyncio
    async def test_turns_are_stored_in_order(self, database):
        await persist_chat_turn("s1", "7", "How many clients?", "Twelve.", {"strategy_used": "enhanced_search"})
        await persist_chat_turn("s1", "7", "And invoices?", "Forty.", {"strategy_used": "history_only"})

        record, messages = await load_chat_messages("s1")

        assert record.title == "How many clients?"
        assert record.user_id == "7"
        assert record.message_count == 4
        assert [(m.role, m.content) for m in messages] == [
            ("user", "How many clients?"),
            ("assistant", "Twelve."),
            ("user", "And invoices?"),
            ("assistant", "Forty."),
        ]
        assert messages[3].metadata["strategy_used"] == "history_only"

    @pytest.mark.asyncio
    async def test_database_errors_are_swallowed(self, database):
        with patch.object(chat_persistence, "db_session", MagicMock(side_effect=RuntimeError("disk full"))):
            await persist_chat_turn("s1", None, "hi", "hello")

        assert await load_chat_messages("s1") is None

    @pytest.mark.asyncio
    async def test_without_database_persistence_is_skipped(self):
        assert not is_initialized()

        await persist_chat_turn("s1", None, "hi", "hello")

        assert await load_chat_messages("s1") is None
        with pytest.raises(NotInitializedError):
            await list_chat_sessions()


class TestRestore:
    @pytest.mark.asyncio
    async def test_reaped_session_is_rebuilt(self, database):
        await persist_chat_turn("s1", "7", "How many clients?", "Twelve.")
        store = SessionStore()

        session = await restore_session_from_db(store, "s1")

        assert store.get("s1") is session
        assert session.user_id == "7"
        assert [m.content for m in session.messages] == ["How many clients?", "Twelve."]

    @pytest.mark.asyncio
    async def test_unknown_session_is_not_created(self, database):
        store = SessionStore()

        assert await restore_session_from_db(store, "missing") is None
        assert store.session_count == 0

    @pytest.mark.asyncio
    async def test_chat_resumes_stored_history(self, database):
        provider = ScriptedProvider(["Twelve.", "Forty."])
        await provider.probe()
        retrieval = MagicMock(spec=RetrievalService)
        retrieval.enhanced_search.return_value = []
        service = ConversationService(retrieval, SessionStore(), ProviderRegistry({"ollama": provider}, "ollama"))

        await service.chat("How many clients?", "s1", user_id="7")
        service.sessions.clear("s1")
        result = await service.chat("And invoices?", "s1")

        assert "Assistant: Twelve." in provider.prompts[-1]
        assert result.metadata.message_count == 4
        record, _ = await load_chat_messages("s1")
        assert record.message_count == 4


class TestBrowsing:
    @pytest.mark.asyncio
    async def test_list_filters_by_user_and_counts(self, database):
        await persist_chat_turn("a", "7", "first", "one")
        await persist_chat_turn("b", "7", "second", "two")
        await persist_chat_turn("c", "8", "third", "three")

        records, total = await list_chat_sessions(user_id="7")

        assert total == 2
        assert [r.id for r in records] == ["b", "a"]

        page, total = await list_chat_sessions(limit=1, offset=1)
        assert total == 3
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_detail_pages_messages(self, database):
        await persist_chat_turn("s1", None, "q1", "a1")
        await persist_chat_turn("s1", None, "q2", "a2")

        detail = await get_chat_session_detail("s1", limit=2, offset=2)

        assert detail["session"].message_count == 4
        assert [m.content for m in detail["messages"]] == ["q2", "a2"]
        assert await get_chat_session_detail("missing") is None

    @pytest.mark.asyncio
    async def test_rename(self, database):
        await persist_chat_turn("s1", None, "q1", "a1")

        renamed = await rename_chat_session("s1", "Overdue invoices")

        assert renamed.title == "Overdue invoices"
        assert (await get_chat_session_detail("s1"))["session"].title == "Overdue invoices"
        assert await rename_chat_session("missing", "x") is None

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, database):
        await persist_chat_turn("s1", None, "q1", "a1")

        assert await delete_chat_session("s1") is True
        assert await delete_chat_session("s1") is False
        assert await load_chat_messages("s1") is None
        assert await search_chat_messages("s1", "q1") is None

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, database):
        await persist_chat_turn("s1", None, "Which INVOICES are overdue?", "Two invoices are overdue.")
        await persist_chat_turn("s1", None, "And clients?", "Twelve clients.")

        matches = await search_chat_messages("s1", "invoices")

        assert [m.position for m in matches] == [1, 0]
        assert await search_chat_messages("s1", "payroll") == []
