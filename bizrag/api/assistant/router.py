"""Chat, search and session endpoints for the business assistant."""

from fastapi import APIRouter, Depends, HTTPException, status

from bizrag.api.assistant.schemas import (
    AdvancedSearchRequest,
    ChatRequest,
    ChatResponse,
    ContextSearchRequest,
    ProviderStatusResponse,
    ProviderSwitchRequest,
    SearchRequest,
    SearchResponse,
    SessionInfo,
    SessionListResponse,
)
from bizrag.config.logger import app_logger
from bizrag.services.chat_sessions import SessionStore, get_session_store
from bizrag.services.conversation import GENERIC_FAILURE_MESSAGE, ConversationService, get_conversation_service
from bizrag.services.retrieval import (
    AdvancedSearchResult,
    EnrichedContext,
    RetrievalService,
    get_retrieval_service,
)
from bizrag.utils.errors import GenerationError, NotInitializedError
from bizrag.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/ai", tags=["assistant"])

_GENERATION_STATUS = {
    "connection": status.HTTP_502_BAD_GATEWAY,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "index_not_ready": status.HTTP_503_SERVICE_UNAVAILABLE,
    "generic": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post(
    "/chat",
    response_model=SuccessResponse[ChatResponse],
    summary="Ask the assistant a question about business data",
)
async def chat(
    request: ChatRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> SuccessResponse[ChatResponse]:
    """One chat turn with retrieval over synced business records.

    Tries full retrieval first, then reduced retrieval, then history only.
    """
    try:
        result = await service.chat(
            request.message,
            request.session_id,
            user_id=request.user_id,
            provider=request.provider,
            filters=request.filters,
        )
    except GenerationError as exc:
        raise HTTPException(status_code=_GENERATION_STATUS[exc.kind], detail=exc.user_message)
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Chat failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=GENERIC_FAILURE_MESSAGE,
        )

    meta = result.metadata
    data = ChatResponse(
        response=result.response,
        session_id=result.session_id,
        strategy_used=meta.strategy_used,
        provider=meta.provider,
        response_time_ms=meta.response_time_ms,
        message_count=meta.message_count,
        session_age_ms=meta.session_age_ms,
    )
    return success_response(data, message="Chat response generated")


@router.post(
    "/search/enhanced",
    response_model=SuccessResponse[SearchResponse],
    summary="Relevance-ranked search with filters",
)
async def enhanced_search(
    request: SearchRequest,
    retrieval: RetrievalService = Depends(get_retrieval_service),
) -> SuccessResponse[SearchResponse]:
    try:
        results = await retrieval.enhanced_search(request.query, request.filters, request.limit)
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Enhanced search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Enhanced search failed: {str(e)}",
        )
    return success_response(SearchResponse(query=request.query, total=len(results), results=results))


@router.post(
    "/search/advanced",
    response_model=SuccessResponse[AdvancedSearchResult],
    summary="Search with grouping by entity type and facets",
)
async def advanced_search(
    request: AdvancedSearchRequest,
    retrieval: RetrievalService = Depends(get_retrieval_service),
) -> SuccessResponse[AdvancedSearchResult]:
    try:
        result = await retrieval.advanced_search(
            request.query,
            request.filters,
            limit=request.limit,
            group_by_type=request.group_by_type,
            include_facets=request.include_facets,
        )
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Advanced search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Advanced search failed: {str(e)}",
        )
    return success_response(result)


@router.post(
    "/search/context",
    response_model=SuccessResponse[EnrichedContext],
    summary="Search plus related documents, insights and recommendations",
)
async def context_search(
    request: ContextSearchRequest,
    retrieval: RetrievalService = Depends(get_retrieval_service),
) -> SuccessResponse[EnrichedContext]:
    try:
        result = await retrieval.enrich_context(
            request.query, request.filters, limit=request.limit, include_related=request.include_related
        )
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except Exception as e:
        app_logger.error(f"Context search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Context search failed: {str(e)}",
        )
    return success_response(result)


@router.get(
    "/sessions",
    response_model=SuccessResponse[SessionListResponse],
    summary="List active chat sessions",
)
async def list_sessions(
    sessions: SessionStore = Depends(get_session_store),
) -> SuccessResponse[SessionListResponse]:
    active = [SessionInfo(**info) for info in sessions.list_active()]
    return success_response(SessionListResponse(total=len(active), sessions=active))


@router.get(
    "/sessions/{session_id}",
    response_model=SuccessResponse[SessionInfo],
    summary="Get one chat session",
)
async def get_session(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
) -> SuccessResponse[SessionInfo]:
    info = sessions.session_info(session_id)
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return success_response(SessionInfo(**info))


@router.delete(
    "/sessions/{session_id}",
    response_model=SuccessResponse[dict],
    summary="Clear a chat session",
)
async def clear_session(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
) -> SuccessResponse[dict]:
    if not sessions.clear(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    app_logger.info(f"Cleared chat session {session_id}")
    return success_response({"session_id": session_id}, message="Session cleared")


@router.get(
    "/provider",
    response_model=SuccessResponse[ProviderStatusResponse],
    summary="Current generation provider and readiness",
)
async def get_provider(
    service: ConversationService = Depends(get_conversation_service),
) -> SuccessResponse[ProviderStatusResponse]:
    return success_response(ProviderStatusResponse(**service.providers.status()))


@router.post(
    "/provider/switch",
    response_model=SuccessResponse[ProviderStatusResponse],
    summary="Switch the default generation provider",
)
async def switch_provider(
    request: ProviderSwitchRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> SuccessResponse[ProviderStatusResponse]:
    try:
        service.providers.switch_provider(request.provider)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return success_response(
        ProviderStatusResponse(**service.providers.status()),
        message=f"Switched to {request.provider} provider",
    )
