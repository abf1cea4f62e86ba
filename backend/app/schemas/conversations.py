"""Schemas for direct conversations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ActivityType, ChatTheme, MessageType
from app.schemas.users import PublicUser


class ReactionRead(BaseModel):
    """A single user's reaction on a message."""

    user_id: int
    emoji: str


class ReactionRequest(BaseModel):
    """Payload for reacting to a message."""

    emoji: str = Field(..., max_length=32, description="Emoji to react with")


class ArchiveUpdate(BaseModel):
    """Payload for archiving or restoring a chat for the current user."""

    is_archived: bool = Field(..., description="Whether the chat should be archived")


class ThemeUpdate(BaseModel):
    """Payload for switching the shared chat theme."""

    theme: str = Field(..., max_length=32, description="Theme identifier")


class DirectMessageCreate(BaseModel):
    """Payload for sending a new direct message."""

    content: str = Field(..., max_length=4000, description="Message text; surrounding whitespace is trimmed")


class DirectMessageRead(BaseModel):
    """Representation of a direct message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender_id: int
    sender: PublicUser
    content: str
    type: MessageType
    reactions: list[ReactionRead] = Field(default_factory=list)
    created_at: datetime


class ConversationRead(BaseModel):
    """A conversation as listed in one participant's inbox."""

    id: int
    other_user: PublicUser
    last_message: DirectMessageRead | None = None
    last_message_at: datetime | None = None
    last_activity_type: ActivityType | None = None
    last_activity_summary: str | None = None
    last_activity_actor_id: int | None = None
    chat_theme: ChatTheme = ChatTheme.DEFAULT
    is_archived: bool = False
