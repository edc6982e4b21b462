"""Request and response schemas for the assistant endpoints."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from bizrag.services.retrieval import SearchFilters, SearchResult


class ChatRequest(BaseModel):
    """Request schema for POST /v1/ai/chat."""

    message: str = Field(..., min_length=1, description="The user's question.")
    session_id: str = Field(..., min_length=1, description="Client-chosen conversation id.")
    user_id: Optional[str] = Field(default=None, description="Caller id, stored on the session.")
    provider: Optional[Literal["ollama", "huggingface"]] = Field(
        default=None, description="Generation provider for this turn; defaults to the current one."
    )
    filters: Optional[SearchFilters] = Field(default=None, description="Restrict retrieval.")

    model_config = {
        "json_schema_extra": {
            "example": {
                "message": "Which invoices are overdue?",
                "session_id": "c0ffee-01",
                "user_id": "42",
            }
        }
    }


class ChatResponse(BaseModel):
    response: str
    session_id: str
    strategy_used: str
    provider: str
    response_time_ms: int
    message_count: int
    session_age_ms: int


class SearchRequest(BaseModel):
    """Request schema for the enhanced and advanced search endpoints."""

    query: str = Field(..., min_length=1)
    filters: Optional[SearchFilters] = None
    limit: int = Field(default=10, ge=1, le=100)


class AdvancedSearchRequest(SearchRequest):
    limit: int = Field(default=20, ge=1, le=100)
    group_by_type: bool = True
    include_facets: bool = True


class ContextSearchRequest(SearchRequest):
    limit: int = Field(default=8, ge=1, le=50)
    include_related: bool = True


class SearchResponse(BaseModel):
    query: str
    total: int
    results: List[SearchResult]


class SessionInfo(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    message_count: int
    created_at: str
    last_activity: str


class SessionListResponse(BaseModel):
    total: int
    sessions: List[SessionInfo]


class ProviderSwitchRequest(BaseModel):
    provider: Literal["ollama", "huggingface"]


class ProviderStatusResponse(BaseModel):
    current: str
    providers: Dict[str, Any]
