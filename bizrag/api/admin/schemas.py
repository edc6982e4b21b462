"""Request schemas for the admin endpoints.

Responses are plain report dicts wrapped in ``SuccessResponse``.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SimilarSearchRequest(BaseModel):
    """Request schema for POST /v1/ai/admin/search/similar."""

    query: str = Field(..., min_length=1)
    limit: int = Field(default=10, ge=1, le=100)
    filter: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Structured filter: scalar equality, list for one-of, {from, to} for ranges.",
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "query": "low stock products",
                "limit": 5,
                "filter": {"entity_type": ["products"]},
            }
        }
    }
