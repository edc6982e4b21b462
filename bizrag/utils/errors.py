"""Domain exceptions shared by services and routers."""

from __future__ import annotations

from typing import Optional


class BizRagError(Exception):
    """Base class for service errors."""


class NotInitializedError(BizRagError):
    """A provider or store was used before it reported ready."""


class UnknownEntityTypeError(BizRagError):
    """An entity type name has no registered sync unit."""

    def __init__(self, entity_type: str):
        super().__init__(f"Unknown entity type: {entity_type}")
        self.entity_type = entity_type


class SearchError(BizRagError):
    """Similarity search against the vector index failed."""


class GenerationError(BizRagError):
    """A chat turn failed after every strategy was tried.

    ``kind`` is one of ``connection``, ``timeout``, ``index_not_ready`` or
    ``generic``. ``user_message`` is safe to show to end users; the original
    exception is kept on ``cause``.
    """

    def __init__(self, kind: str, user_message: str, cause: Optional[BaseException] = None):
        super().__init__(user_message)
        self.kind = kind
        self.user_message = user_message
        self.cause = cause
