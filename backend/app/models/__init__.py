"""Database models package."""

from .base import Base, utcnow
from .chat import (
    ChatRoom,
    Conversation,
    ConversationState,
    DirectMessage,
    DirectMessageVisibility,
    RoomMember,
    RoomMemberState,
    RoomMessage,
    RoomMessageVisibility,
    User,
)
from .enums import (
    DIRECT_MESSAGE_TYPES,
    USER_ROOM_MESSAGE_TYPES,
    ActivityType,
    ChatTheme,
    MessageType,
)

__all__ = [
    "Base",
    "utcnow",
    "User",
    "Conversation",
    "ConversationState",
    "DirectMessage",
    "DirectMessageVisibility",
    "ChatRoom",
    "RoomMember",
    "RoomMemberState",
    "RoomMessage",
    "RoomMessageVisibility",
    "ActivityType",
    "ChatTheme",
    "MessageType",
    "DIRECT_MESSAGE_TYPES",
    "USER_ROOM_MESSAGE_TYPES",
]
