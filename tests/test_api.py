"""
API tests for the assistant, conversation and admin routers.

Services are replaced through FastAPI dependency overrides so no model,
vector store or database is needed. Stored-conversation calls are patched
at the router module.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from bizrag.api.admin.router import admin_service
from bizrag.main import app
from bizrag.models.conversations import ChatMessageRecord, ChatSessionRecord
from bizrag.services.admin import AdminService
from bizrag.services.chat_sessions import SessionStore, get_session_store
from bizrag.services.conversation import (
    GENERIC_FAILURE_MESSAGE,
    ChatMetadata,
    ChatResult,
    ConversationService,
    get_conversation_service,
)
from bizrag.services.generation import ProviderRegistry
from bizrag.services.retrieval import RetrievalService, SearchResult, get_retrieval_service
from bizrag.services.sync_orchestrator import SyncResult
from bizrag.utils.errors import GenerationError, NotInitializedError, UnknownEntityTypeError
from tests.factories import ScriptedProvider

client = TestClient(app)


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def conversation():
    service = MagicMock(spec=ConversationService)
    service.chat = AsyncMock()
    service.providers = ProviderRegistry(
        {"ollama": ScriptedProvider(), "huggingface": ScriptedProvider(model="hosted-model")}, "ollama"
    )
    app.dependency_overrides[get_conversation_service] = lambda: service
    return service


@pytest.fixture
def admin():
    service = MagicMock(spec=AdminService)
    app.dependency_overrides[admin_service] = lambda: service
    return service


class TestChatEndpoint:
    def test_chat_success(self, conversation):
        conversation.chat.return_value = ChatResult(
            response="Two invoices are overdue.",
            session_id="s1",
            metadata=ChatMetadata(
                strategy_used="moderate_context",
                provider="ollama",
                response_time_ms=120,
                message_count=2,
                session_age_ms=5,
                request_id="abc12345",
            ),
        )

        response = client.post("/v1/ai/chat", json={"message": "Overdue invoices?", "session_id": "s1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["strategy_used"] == "moderate_context"
        assert body["data"]["response"] == "Two invoices are overdue."
        conversation.chat.assert_awaited_once()

    @pytest.mark.parametrize(
        "kind,expected",
        [("connection", 502), ("timeout", 504), ("index_not_ready", 503), ("generic", 500)],
    )
    def test_generation_errors_map_to_status(self, conversation, kind, expected):
        conversation.chat.side_effect = GenerationError(kind, "user-facing message")

        response = client.post("/v1/ai/chat", json={"message": "hi", "session_id": "s1"})

        assert response.status_code == expected
        assert response.json()["detail"] == "user-facing message"

    def test_empty_message_is_rejected(self, conversation):
        response = client.post("/v1/ai/chat", json={"message": "", "session_id": "s1"})

        assert response.status_code == 422

    def test_unexpected_error_does_not_leak_details(self, conversation):
        conversation.chat.side_effect = RuntimeError("password=hunter2 rejected by db")

        response = client.post("/v1/ai/chat", json={"message": "hi", "session_id": "s1"})

        assert response.status_code == 500
        assert response.json()["detail"] == GENERIC_FAILURE_MESSAGE
        assert "hunter2" not in response.text


class TestSearchEndpoints:
    def test_enhanced_search(self):
        retrieval = MagicMock(spec=RetrievalService)
        retrieval.enhanced_search = AsyncMock(
            return_value=[SearchResult(id="invoices:2:0", content="Invoice INV-0002", entity_type="invoices")]
        )
        app.dependency_overrides[get_retrieval_service] = lambda: retrieval

        response = client.post("/v1/ai/search/enhanced", json={"query": "overdue", "limit": 5})

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1
        retrieval.enhanced_search.assert_awaited_once_with("overdue", None, 5)

    def test_search_before_index_ready(self):
        retrieval = MagicMock(spec=RetrievalService)
        retrieval.enhanced_search = AsyncMock(side_effect=NotInitializedError("Vector store not initialized"))
        app.dependency_overrides[get_retrieval_service] = lambda: retrieval

        response = client.post("/v1/ai/search/enhanced", json={"query": "overdue"})

        assert response.status_code == 503


class TestSessionEndpoints:
    def test_list_get_and_clear(self):
        store = SessionStore()
        store.get_or_create("s1", user_id="u1")
        store.append("s1", "user", "hello")
        app.dependency_overrides[get_session_store] = lambda: store

        listed = client.get("/v1/ai/sessions").json()["data"]
        assert listed["total"] == 1
        assert listed["sessions"][0]["message_count"] == 1

        assert client.get("/v1/ai/sessions/s1").json()["data"]["user_id"] == "u1"
        assert client.delete("/v1/ai/sessions/s1").status_code == 200
        assert client.get("/v1/ai/sessions/s1").status_code == 404
        assert client.delete("/v1/ai/sessions/s1").status_code == 404


ROUTER = "bizrag.api.conversations.router"


def stored_conversation(session_id="s1", user_id="7", title="Overdue invoices", message_count=2):
    return ChatSessionRecord(id=session_id, user_id=user_id, title=title, message_count=message_count)


def stored_message(position, role, content):
    return ChatMessageRecord(session_id="s1", position=position, role=role, content=content)


class TestConversationEndpoints:
    def test_list(self):
        listing = AsyncMock(return_value=([stored_conversation()], 1))
        with patch(f"{ROUTER}.list_chat_sessions", listing):
            response = client.get("/v1/ai/conversations", params={"user_id": "7", "limit": 5})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["conversations"][0]["title"] == "Overdue invoices"
        listing.assert_awaited_once_with(user_id="7", limit=5, offset=0)

    def test_detail(self):
        detail = {
            "session": stored_conversation(),
            "messages": [stored_message(0, "user", "Overdue?"), stored_message(1, "assistant", "Two.")],
        }
        with patch(f"{ROUTER}.get_chat_session_detail", AsyncMock(return_value=detail)):
            response = client.get("/v1/ai/conversations/s1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["conversation"]["id"] == "s1"
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]

    def test_unknown_conversation_is_404(self):
        with patch(f"{ROUTER}.get_chat_session_detail", AsyncMock(return_value=None)):
            assert client.get("/v1/ai/conversations/missing").status_code == 404
        with patch(f"{ROUTER}.search_chat_messages", AsyncMock(return_value=None)):
            assert client.get("/v1/ai/conversations/missing/search", params={"q": "x"}).status_code == 404

    def test_rename(self):
        renaming = AsyncMock(return_value=stored_conversation(title="Q2 invoices"))
        with patch(f"{ROUTER}.rename_chat_session", renaming):
            response = client.patch("/v1/ai/conversations/s1/title", json={"title": "  Q2 invoices "})

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Q2 invoices"
        renaming.assert_awaited_once_with("s1", "Q2 invoices")

    def test_blank_title_is_rejected(self):
        response = client.patch("/v1/ai/conversations/s1/title", json={"title": "   "})

        assert response.status_code == 400

    def test_delete_also_clears_live_session(self):
        store = SessionStore()
        store.get_or_create("s1")
        app.dependency_overrides[get_session_store] = lambda: store

        with patch(f"{ROUTER}.delete_chat_session", AsyncMock(return_value=True)):
            response = client.delete("/v1/ai/conversations/s1")

        assert response.status_code == 200
        assert store.get("s1") is None

    def test_search(self):
        found = AsyncMock(return_value=[stored_message(1, "assistant", "Two invoices are overdue.")])
        with patch(f"{ROUTER}.search_chat_messages", found):
            response = client.get("/v1/ai/conversations/s1/search", params={"q": "invoices"})

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1
        found.assert_awaited_once_with("s1", "invoices", limit=20)

    def test_without_database_returns_503(self):
        failing = AsyncMock(side_effect=NotInitializedError("Database not initialized"))
        with patch(f"{ROUTER}.list_chat_sessions", failing):
            response = client.get("/v1/ai/conversations")

        assert response.status_code == 503


class TestProviderEndpoints:
    def test_status_and_switch(self, conversation):
        assert client.get("/v1/ai/provider").json()["data"]["current"] == "ollama"

        response = client.post("/v1/ai/provider/switch", json={"provider": "huggingface"})

        assert response.status_code == 200
        assert response.json()["data"]["current"] == "huggingface"

    def test_switch_to_unknown_provider(self, conversation):
        response = client.post("/v1/ai/provider/switch", json={"provider": "openai"})

        assert response.status_code == 422


class TestAdminEndpoints:
    def test_sync_status(self, admin):
        admin.get_sync_status.return_value = {"invoices": {"document_count": 3, "never_synced": False}}

        response = client.get("/v1/ai/admin/sync/status")

        assert response.status_code == 200
        assert response.json()["data"]["invoices"]["document_count"] == 3

    def test_force_sync(self, admin):
        admin.force_sync_entity = AsyncMock(return_value=SyncResult(entity_type="invoices", synced=3, chunks=3))

        response = client.post("/v1/ai/admin/sync/invoices")

        assert response.status_code == 200
        assert response.json()["data"]["synced"] == 3
        admin.force_sync_entity.assert_awaited_once_with("invoices")

    def test_force_sync_unknown_type(self, admin):
        admin.force_sync_entity = AsyncMock(side_effect=UnknownEntityTypeError("widgets"))

        response = client.post("/v1/ai/admin/sync/widgets")

        assert response.status_code == 404
        assert "widgets" in response.json()["detail"]

    def test_clear_vector_store(self, admin):
        admin.clear_vector_store = AsyncMock(return_value=None)

        response = client.delete("/v1/ai/admin/vector-store")

        assert response.status_code == 200
        assert response.json()["data"] == {"cleared": True}

    def test_unready_component_returns_503(self, admin):
        admin.get_service_health = AsyncMock(side_effect=NotInitializedError("Vector store not initialized"))

        response = client.get("/v1/ai/admin/health")

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["detail"] == "Vector store not initialized"

    def test_missing_orchestrator_returns_503(self):
        response = client.get("/v1/ai/admin/sync/status")

        assert response.status_code == 503
