"""Helpers shared by the conversation and room services."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from app.config import get_settings
from app.models import ChatTheme

settings = get_settings()


def page_bounds(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Clamp client supplied pagination to the configured history window."""

    if limit is None or limit <= 0:
        limit = settings.chat_history_default_limit
    limit = min(limit, settings.chat_history_max_limit)
    offset = max(offset or 0, 0)
    return limit, offset


def summarize(text: str) -> str:
    return text[: settings.chat_activity_summary_length]


def clean_content(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is required")
    if len(text) > settings.chat_message_max_length:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is too long")
    return text


def clean_emoji(emoji: str | None) -> str:
    value = (emoji or "").strip()
    if not value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Emoji is required")
    return value


def toggle_reaction(reactions: list[dict[str, Any]] | None, user_id: int, emoji: str) -> list[dict[str, Any]]:
    """Remove the user's reaction when it matches ``emoji``, otherwise replace it."""

    current = list(reactions or [])
    existing = next((item for item in current if item.get("user_id") == user_id), None)
    updated = [item for item in current if item.get("user_id") != user_id]
    if existing is None or existing.get("emoji") != emoji:
        updated.append({"user_id": user_id, "emoji": emoji})
    return updated


def replace_reaction(reactions: list[dict[str, Any]] | None, user_id: int, emoji: str) -> list[dict[str, Any]]:
    """Set the user's reaction to ``emoji`` without ever removing it."""

    updated = [item for item in (reactions or []) if item.get("user_id") != user_id]
    updated.append({"user_id": user_id, "emoji": emoji})
    return updated


def parse_theme(value: str | None) -> ChatTheme:
    try:
        return ChatTheme((value or "").strip())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid theme") from None
