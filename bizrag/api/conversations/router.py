"""Endpoints for browsing and managing stored conversations."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bizrag.api.conversations.schemas import (
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    MessageSearchResponse,
    RenameRequest,
    StoredMessage,
)
from bizrag.config.logger import app_logger
from bizrag.services.chat_persistence import (
    delete_chat_session,
    get_chat_session_detail,
    list_chat_sessions,
    rename_chat_session,
    search_chat_messages,
)
from bizrag.services.chat_sessions import SessionStore, get_session_store
from bizrag.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/v1/ai/conversations", tags=["conversations"])

_NOT_FOUND = "Conversation not found"


@router.get(
    "",
    response_model=SuccessResponse[ConversationListResponse],
    summary="List stored conversations, most recent first",
)
async def list_conversations(
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> SuccessResponse[ConversationListResponse]:
    records, total = await list_chat_sessions(user_id=user_id, limit=limit, offset=offset)
    data = ConversationListResponse(
        total=total,
        limit=limit,
        offset=offset,
        conversations=[ConversationSummary.model_validate(r) for r in records],
    )
    return success_response(data)


@router.get(
    "/{session_id}",
    response_model=SuccessResponse[ConversationDetail],
    summary="Get a stored conversation with its messages",
)
async def get_conversation(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> SuccessResponse[ConversationDetail]:
    detail = await get_chat_session_detail(session_id, limit=limit, offset=offset)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    data = ConversationDetail(
        conversation=ConversationSummary.model_validate(detail["session"]),
        messages=[StoredMessage.model_validate(m) for m in detail["messages"]],
    )
    return success_response(data)


@router.patch(
    "/{session_id}/title",
    response_model=SuccessResponse[ConversationSummary],
    summary="Rename a stored conversation",
)
async def rename_conversation(session_id: str, request: RenameRequest) -> SuccessResponse[ConversationSummary]:
    title = request.title.strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title must not be blank")
    record = await rename_chat_session(session_id, title)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return success_response(ConversationSummary.model_validate(record), message="Conversation renamed")


@router.delete(
    "/{session_id}",
    response_model=SuccessResponse[dict],
    summary="Delete a stored conversation and its messages",
)
async def delete_conversation(
    session_id: str,
    sessions: SessionStore = Depends(get_session_store),
) -> SuccessResponse[dict]:
    if not await delete_chat_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    if sessions.clear(session_id):
        app_logger.info(f"Cleared live chat session {session_id} with its stored conversation")
    return success_response({"session_id": session_id}, message="Conversation deleted")


@router.get(
    "/{session_id}/search",
    response_model=SuccessResponse[MessageSearchResponse],
    summary="Search messages within a stored conversation",
)
async def search_conversation(
    session_id: str,
    q: str = Query(..., min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> SuccessResponse[MessageSearchResponse]:
    messages = await search_chat_messages(session_id, q, limit=limit)
    if messages is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    data = MessageSearchResponse(
        session_id=session_id,
        query=q,
        total=len(messages),
        messages=[StoredMessage.model_validate(m) for m in messages],
    )
    return success_response(data)
