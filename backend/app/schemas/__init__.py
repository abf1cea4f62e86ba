"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, Token, UserCreate
from .conversations import (
    ArchiveUpdate,
    ConversationRead,
    DirectMessageCreate,
    DirectMessageRead,
    ReactionRead,
    ReactionRequest,
    ThemeUpdate,
)
from .rooms import (
    JoinableCount,
    MyRoomRead,
    RoomCreate,
    RoomDetail,
    RoomMemberRead,
    RoomMembershipResult,
    RoomMessageCreate,
    RoomMessageRead,
    RoomRead,
    RoomUpdate,
)
from .users import PublicUser, UserRead

__all__ = [
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "PublicUser",
    "ArchiveUpdate",
    "ThemeUpdate",
    "ReactionRead",
    "ReactionRequest",
    "ConversationRead",
    "DirectMessageCreate",
    "DirectMessageRead",
    "RoomCreate",
    "RoomUpdate",
    "RoomRead",
    "RoomDetail",
    "RoomMemberRead",
    "RoomMembershipResult",
    "MyRoomRead",
    "JoinableCount",
    "RoomMessageCreate",
    "RoomMessageRead",
]
