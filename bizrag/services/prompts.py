"""Prompt assembly for the business assistant."""

from __future__ import annotations

from typing import Iterable

SYSTEM_PROMPT = """You are an assistant for an inventory and accounting system.

Rules:
- Answer in the same language as the user's question and never switch languages mid-answer.
- Use only the business records in the context. If nothing relevant is there, say that no matching records were found.
- Never invent records, amounts or internal identifiers.
- Prefer short answers; use markdown tables for lists of records.
"""

_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


def format_history(messages: Iterable[dict]) -> str:
    """Render chat turns as ``User: ...`` / ``Assistant: ...`` lines."""
    lines = []
    for message in messages:
        label = _ROLE_LABELS.get(message["role"], message["role"].title())
        lines.append(f"{label}: {message['content']}")
    return "\n".join(lines)


def build_prompt(question: str, context: str = "", history: str = "", language_line: str = "") -> str:
    """Full prompt: instructions, retrieved context, history, then the question."""
    parts = [SYSTEM_PROMPT.strip()]
    parts.append("## Business records\n" + (context.strip() or "No records retrieved."))
    if history.strip():
        parts.append("## Conversation so far\n" + history.strip())
    if language_line:
        parts.append(language_line)
    parts.append(f"Question: {question.strip()}\n\nAnswer:")
    return "\n\n".join(parts)
