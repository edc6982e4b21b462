"""Chat persistence for storing and retrieving assistant conversations.

Every successful chat turn is written to the relational store so users can
list past conversations and resume them after the in-memory session has been
reaped. When no database is configured persistence is skipped and the
in-memory session store is the only history.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func
from sqlmodel import col, select

from bizrag.config.logger import app_logger
from bizrag.db.db import db_session, is_initialized
from bizrag.models.conversations import DEFAULT_TITLE, ChatMessageRecord, ChatSessionRecord
from bizrag.models.sync_status import as_utc
from bizrag.services.chat_sessions import ChatMessage, ChatSession, SessionStore
from bizrag.utils.errors import NotInitializedError

TITLE_LENGTH = 50


def make_title(first_message: str) -> str:
    """Conversation title from the opening question."""
    text = " ".join(first_message.split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= TITLE_LENGTH:
        return text
    return text[:TITLE_LENGTH].rstrip() + "..."


def _require_db() -> None:
    if not is_initialized():
        raise NotInitializedError("Database not initialized; conversations are not persisted")


async def persist_chat_turn(
    session_id: str,
    user_id: Optional[str],
    user_message: str,
    assistant_reply: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Persist a complete chat turn (user message + assistant reply).

    Creates the conversation row on its first turn. Failures are logged and
    swallowed so that a database outage never breaks the chat itself.

    Args:
        session_id: The chat session id
        user_id: Caller id, stored on the conversation when first created
        user_message: The user's question
        assistant_reply: The assistant's answer
        metadata: Strategy/provider details stored with the reply
    """
    if not is_initialized():
        app_logger.debug(f"Database not initialized; turn for session {session_id} kept in memory only")
        return

    try:
        async with db_session() as db:
            record = await db.get(ChatSessionRecord, session_id)
            if record is None:
                record = ChatSessionRecord(id=session_id, user_id=user_id, title=make_title(user_message))
                db.add(record)
                app_logger.debug(f"Created stored conversation {session_id}")

            now = datetime.now(timezone.utc)
            position = record.message_count
            request_id = (metadata or {}).get("request_id")
            db.add(
                ChatMessageRecord(
                    session_id=session_id,
                    position=position,
                    role="user",
                    content=user_message,
                    details={"request_id": request_id} if request_id else None,
                    created_at=now,
                )
            )
            db.add(
                ChatMessageRecord(
                    session_id=session_id,
                    position=position + 1,
                    role="assistant",
                    content=assistant_reply,
                    details=metadata or None,
                    created_at=now,
                )
            )
            record.message_count = position + 2
            record.updated_at = now
            await db.commit()

        app_logger.debug(f"Persisted chat turn for session {session_id}")

    except Exception as e:
        app_logger.warning(f"Failed to persist chat turn: {e}")


async def load_chat_messages(session_id: str) -> Optional[Tuple[ChatSessionRecord, List[ChatMessage]]]:
    """Stored conversation and its messages in order, or ``None`` if unknown."""
    if not is_initialized():
        return None

    async with db_session() as db:
        record = await db.get(ChatSessionRecord, session_id)
        if record is None:
            return None
        result = await db.execute(
            select(ChatMessageRecord)
            .where(ChatMessageRecord.session_id == session_id)
            .order_by(col(ChatMessageRecord.position))
        )
        messages = [
            ChatMessage(
                role=row.role,
                content=row.content,
                timestamp=as_utc(row.created_at),
                metadata=dict(row.details or {}),
            )
            for row in result.scalars().all()
        ]
    return record, messages


async def restore_session_from_db(store: SessionStore, session_id: str) -> Optional[ChatSession]:
    """Rebuild an in-memory session from the database.

    Used when a turn arrives for a session that is no longer live, e.g. after
    the idle sweep removed it or the process restarted.

    Returns:
        The restored (or already live) session, or ``None`` if nothing is stored
    """
    try:
        loaded = await load_chat_messages(session_id)
    except Exception as e:
        app_logger.error(f"Failed to restore session from database: {e}")
        raise

    if loaded is None:
        return None
    record, messages = loaded
    return store.restore(session_id, record.user_id, messages)


async def list_chat_sessions(
    user_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[ChatSessionRecord], int]:
    """Stored conversations, most recently updated first, plus the total count."""
    _require_db()
    async with db_session() as db:
        query = select(ChatSessionRecord)
        count_query = select(func.count()).select_from(ChatSessionRecord)
        if user_id is not None:
            query = query.where(ChatSessionRecord.user_id == user_id)
            count_query = count_query.where(ChatSessionRecord.user_id == user_id)

        result = await db.execute(
            query.order_by(col(ChatSessionRecord.updated_at).desc()).offset(offset).limit(limit)
        )
        total = (await db.execute(count_query)).scalar_one()
        return list(result.scalars().all()), total


async def get_chat_session_detail(
    session_id: str,
    limit: int = 50,
    offset: int = 0,
) -> Optional[Dict[str, Any]]:
    """A stored conversation with a page of its messages, or ``None`` if unknown."""
    _require_db()
    async with db_session() as db:
        record = await db.get(ChatSessionRecord, session_id)
        if record is None:
            return None
        result = await db.execute(
            select(ChatMessageRecord)
            .where(ChatMessageRecord.session_id == session_id)
            .order_by(col(ChatMessageRecord.position))
            .offset(offset)
            .limit(limit)
        )
        return {"session": record, "messages": list(result.scalars().all())}


async def rename_chat_session(session_id: str, title: str) -> Optional[ChatSessionRecord]:
    _require_db()
    async with db_session() as db:
        record = await db.get(ChatSessionRecord, session_id)
        if record is None:
            return None
        record.title = title
        record.updated_at = datetime.now(timezone.utc)
        await db.commit()
        app_logger.info(f"Renamed conversation {session_id}")
        return record


async def delete_chat_session(session_id: str) -> bool:
    """Delete a stored conversation and all its messages.

    Returns:
        True if deleted, False if not found
    """
    _require_db()
    async with db_session() as db:
        record = await db.get(ChatSessionRecord, session_id)
        if record is None:
            return False
        await db.execute(delete(ChatMessageRecord).where(ChatMessageRecord.session_id == session_id))
        await db.delete(record)
        await db.commit()
    app_logger.info(f"Deleted stored conversation {session_id}")
    return True


async def search_chat_messages(
    session_id: str,
    query: str,
    limit: int = 20,
) -> Optional[List[ChatMessageRecord]]:
    """Case-insensitive substring search over one conversation, newest first."""
    _require_db()
    async with db_session() as db:
        if await db.get(ChatSessionRecord, session_id) is None:
            return None
        result = await db.execute(
            select(ChatMessageRecord)
            .where(ChatMessageRecord.session_id == session_id)
            .where(col(ChatMessageRecord.content).ilike(f"%{query}%"))
            .order_by(col(ChatMessageRecord.position).desc())
            .limit(limit)
        )
        return list(result.scalars().all())
