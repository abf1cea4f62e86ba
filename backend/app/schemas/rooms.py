"""Schemas for chat rooms and their messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, constr

from app.models.enums import ActivityType, ChatTheme, MessageType
from app.schemas.conversations import ReactionRead
from app.schemas.users import PublicUser


class RoomCreate(BaseModel):
    """Payload for creating a new room."""

    title: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Human readable room title"
    )
    category: constr(strip_whitespace=True, min_length=1, max_length=64) = Field(
        ..., description="Discovery category"
    )
    description: str | None = Field(default=None, max_length=2000)
    tags: list[constr(strip_whitespace=True, min_length=1, max_length=32)] = Field(
        default_factory=list, max_length=20
    )
    is_private: bool = False
    icon: str | None = Field(default=None, max_length=64)


class RoomUpdate(BaseModel):
    """Payload for editing room details. Omitted fields are left untouched."""

    title: constr(strip_whitespace=True, min_length=1, max_length=128) | None = None
    category: constr(strip_whitespace=True, min_length=1, max_length=64) | None = None
    description: str | None = Field(default=None, max_length=2000)
    tags: list[constr(strip_whitespace=True, min_length=1, max_length=32)] | None = None
    icon: str | None = Field(default=None, max_length=64)


class RoomRead(BaseModel):
    """Room representation returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    category: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_private: bool = False
    icon: str | None = None
    member_count: int
    chat_theme: ChatTheme
    last_activity_at: datetime | None = None
    last_activity_type: ActivityType | None = None
    last_activity_summary: str | None = None
    last_activity_actor_id: int | None = None
    created_at: datetime


class RoomMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user: PublicUser
    is_creator: bool
    joined_at: datetime


class RoomDetail(RoomRead):
    """Room details including the member list."""

    members: list[RoomMemberRead] = Field(default_factory=list)
    is_member: bool = False
    is_creator: bool = False


class MyRoomRead(RoomRead):
    """Room as listed for one of its members."""

    is_creator: bool = False
    is_archived: bool = False


class JoinableCount(BaseModel):
    count: int


class RoomMessageCreate(BaseModel):
    """Payload for posting a message to a room."""

    content: str | None = Field(default=None, max_length=4000)
    type: str = Field(default=MessageType.TEXT.value, description="One of text, image, file or voice")
    image_url: str | None = Field(default=None, max_length=1024)
    file_data: dict[str, Any] | None = None
    voice_data: dict[str, Any] | None = None


class RoomMessageRead(BaseModel):
    """Serialized representation of a room message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    room_id: int
    user_id: int | None = None
    user: PublicUser | None = None
    content: str
    type: MessageType
    image_url: str | None = None
    file_data: dict[str, Any] | None = None
    voice_data: dict[str, Any] | None = None
    reactions: list[ReactionRead] = Field(default_factory=list)
    created_at: datetime


class RoomMembershipResult(BaseModel):
    """Outcome of leaving a room or removing a member from it."""

    room_id: int
    user_id: int
    member_count: int
    new_creator_id: int | None = None
