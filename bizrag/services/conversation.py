"""
Chat turns with progressive fallback.

Each turn tries an ordered list of strategies, stopping at the first that
produces an answer:

1. ``enhanced_search``  - full retrieval (k=8), full history, 45s budget
2. ``moderate_context`` - reduced retrieval (k=4), full history, 25s budget
3. ``history_only``     - no retrieval, full history, 25s budget

A strategy's budget covers retrieval and generation together and is enforced
with ``asyncio.wait_for``, so a strategy that runs out of time has its
provider call cancelled before the next one starts. When every strategy
fails the turn raises a classified ``GenerationError`` and no assistant
message is stored.

Completed turns are written through ``chat_persistence`` when a database is
configured, and a session that is no longer live is restored from there
before its next turn.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx
import openai
from pydantic import BaseModel

from bizrag.config.logger import app_logger, log_performance
from bizrag.config.settings import settings
from bizrag.services import chat_persistence
from bizrag.services.chat_sessions import SessionStore, get_session_store
from bizrag.services.generation import GenerationProvider, ProviderRegistry, get_provider_registry
from bizrag.services.language import language_instruction
from bizrag.services.prompts import build_prompt, format_history
from bizrag.services.retrieval import (
    RetrievalService,
    SearchFilters,
    SearchResult,
    get_retrieval_service,
    preprocess_query,
)
from bizrag.utils.errors import GenerationError, NotInitializedError


@dataclass(frozen=True)
class Strategy:
    name: str
    search_k: int  # 0 disables retrieval
    timeout: float


DEFAULT_STRATEGIES = (
    Strategy("enhanced_search", settings.CHAT_MAX_SEARCH_RESULTS, settings.CHAT_PRIMARY_TIMEOUT_SECONDS),
    Strategy("moderate_context", settings.CHAT_MAX_SEARCH_RESULTS // 2, settings.CHAT_FALLBACK_TIMEOUT_SECONDS),
    Strategy("history_only", 0, settings.CHAT_FALLBACK_TIMEOUT_SECONDS),
)


class ChatMetadata(BaseModel):
    strategy_used: str
    provider: str
    response_time_ms: int
    message_count: int
    session_age_ms: int
    request_id: str


class ChatResult(BaseModel):
    response: str
    session_id: str
    metadata: ChatMetadata


class EmptyResponseError(Exception):
    """The provider answered with no text."""


_CONNECTION_MARKERS = ("fetch failed", "econnrefused", "connection refused", "connect error")
_NOT_READY_MARKERS = ("vector store not initialized", "not initialized")
# Unclassified failures never echo the underlying exception text
GENERIC_FAILURE_MESSAGE = "Something went wrong while answering. Please try again."


def classify_error(error: Optional[BaseException]) -> GenerationError:
    """Map an internal failure to a user-facing ``GenerationError``."""
    message = str(error or "").lower()
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, openai.APITimeoutError)) or (
        "timed out" in message or "timeout" in message
    ):
        return GenerationError(
            "timeout", "Request timed out. Please try again with a simpler question.", error
        )
    if isinstance(error, (httpx.ConnectError, openai.APIConnectionError, ConnectionError)) or any(
        marker in message for marker in _CONNECTION_MARKERS
    ):
        return GenerationError(
            "connection",
            "Unable to connect to the language model service. Please check that it is running.",
            error,
        )
    if isinstance(error, NotInitializedError) or any(marker in message for marker in _NOT_READY_MARKERS):
        return GenerationError(
            "index_not_ready", "Search service is not ready. Please try again in a moment.", error
        )
    return GenerationError("generic", GENERIC_FAILURE_MESSAGE, error)


def format_context(results: Sequence[SearchResult]) -> str:
    """Retrieved records as prompt context, one block per result."""
    blocks = []
    for result in results:
        header = f"[{result.entity_type}] {result.title or result.entity_id or result.id}"
        blocks.append(f"{header}\n{result.content}")
    return "\n\n".join(blocks)


class ConversationService:
    """Runs chat turns against the session store, retrieval and generation."""

    def __init__(
        self,
        retrieval: RetrievalService,
        sessions: SessionStore,
        providers: ProviderRegistry,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.retrieval = retrieval
        self.sessions = sessions
        self.providers = providers
        self.strategies = list(strategies)
        self.query_count = 0
        self.failed_count = 0
        self._total_response_ms = 0
        self.strategy_counts: Dict[str, int] = {s.name: 0 for s in self.strategies}

    async def chat(
        self,
        message: str,
        session_id: str,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
        filters: Optional[SearchFilters] = None,
    ) -> ChatResult:
        request_id = uuid.uuid4().hex[:8]
        start = time.perf_counter()
        generator = self.providers.get(provider)
        if self.sessions.get(session_id) is None:
            try:
                await chat_persistence.restore_session_from_db(self.sessions, session_id)
            except Exception as e:
                app_logger.warning(f"[{request_id}] Could not restore session {session_id}: {e}")
        session = self.sessions.get_or_create(session_id, user_id)

        async with session.lock:
            history = format_history(session.history())
            self.sessions.append(
                session_id, "user", message, {"request_id": request_id, "provider": generator.name}
            )
            app_logger.debug(f"[{request_id}] Chat turn for session {session_id} with {generator.name}")
            try:
                response, strategy = await self._try_strategies(
                    message, history, generator, filters, request_id
                )
            except GenerationError:
                self.failed_count += 1
                raise

            stored = self.sessions.append(
                session_id,
                "assistant",
                response,
                {"request_id": request_id, "strategy_used": strategy.name, "provider": generator.name},
            )
            if stored is None:
                app_logger.info(f"[{request_id}] Session {session_id} was cleared during the turn; reply not stored")
            else:
                await chat_persistence.persist_chat_turn(
                    session_id, session.user_id, message, response, stored.metadata
                )

        elapsed = time.perf_counter() - start
        response_ms = int(elapsed * 1000)
        self.query_count += 1
        self._total_response_ms += response_ms
        self.strategy_counts[strategy.name] = self.strategy_counts.get(strategy.name, 0) + 1
        log_performance("chat_turn", elapsed, strategy=strategy.name, provider=generator.name)

        return ChatResult(
            response=response,
            session_id=session_id,
            metadata=ChatMetadata(
                strategy_used=strategy.name,
                provider=generator.name,
                response_time_ms=response_ms,
                message_count=len(session.messages),
                session_age_ms=session.age_ms(),
                request_id=request_id,
            ),
        )

    async def _try_strategies(
        self,
        question: str,
        history: str,
        generator: GenerationProvider,
        filters: Optional[SearchFilters],
        request_id: str,
    ) -> tuple[str, Strategy]:
        last_error: Optional[BaseException] = None
        for strategy in self.strategies:
            try:
                response = await asyncio.wait_for(
                    self._run_strategy(strategy, question, history, generator, filters),
                    timeout=strategy.timeout,
                )
                app_logger.debug(f"[{request_id}] Strategy {strategy.name} succeeded")
                return response, strategy
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                app_logger.warning(f"[{request_id}] Strategy {strategy.name} failed: {e!r}")

        error = classify_error(last_error)
        app_logger.error(f"[{request_id}] All strategies failed ({error.kind}): {last_error!r}")
        raise error

    async def _run_strategy(
        self,
        strategy: Strategy,
        question: str,
        history: str,
        generator: GenerationProvider,
        filters: Optional[SearchFilters],
    ) -> str:
        processed = preprocess_query(question)
        context = ""
        if strategy.search_k:
            results = await self.retrieval.enhanced_search(processed, filters, limit=strategy.search_k)
            context = format_context(results)
        prompt = build_prompt(question, context, history, language_instruction(question))
        response = (await generator.generate(prompt)).strip()
        if not response:
            raise EmptyResponseError(f"{generator.name} returned an empty response")
        return response

    def stats(self) -> Dict[str, Any]:
        average = self._total_response_ms / self.query_count if self.query_count else 0.0
        return {
            "query_count": self.query_count,
            "failed_count": self.failed_count,
            "average_response_time_ms": round(average, 1),
            "strategy_counts": dict(self.strategy_counts),
            "active_sessions": self.sessions.session_count,
        }


_service: Optional[ConversationService] = None


def get_conversation_service() -> ConversationService:
    global _service
    if _service is None:
        _service = ConversationService(get_retrieval_service(), get_session_store(), get_provider_registry())
    return _service
