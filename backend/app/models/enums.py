from __future__ import annotations

from enum import Enum


class MessageType(str, Enum):
    """Kinds of messages stored in conversations and rooms."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VOICE = "voice"
    SYSTEM = "system"


DIRECT_MESSAGE_TYPES: frozenset[MessageType] = frozenset({MessageType.TEXT, MessageType.SYSTEM})
USER_ROOM_MESSAGE_TYPES: frozenset[MessageType] = frozenset(
    {MessageType.TEXT, MessageType.IMAGE, MessageType.FILE, MessageType.VOICE}
)


class ActivityType(str, Enum):
    """Last-activity markers used to sort inbox style listings."""

    MESSAGE = "message"
    REACTION = "reaction"
    THEME = "theme"
    SYSTEM = "system"
    UPDATE = "update"


class ChatTheme(str, Enum):
    """Colour themes a conversation or room can be switched to."""

    DEFAULT = "default"
    MIDNIGHT = "midnight"
    OCEAN = "ocean"
    SUNSET = "sunset"
    FOREST = "forest"
    ROSE = "rose"
    LAVENDER = "lavender"
