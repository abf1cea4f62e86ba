"""Realtime helpers for websocket fan-out."""

from .managers import (  # noqa: F401
    ChannelConnectionManager,
    RealtimeBroadcaster,
    conversation_channel,
    get_broadcaster,
    get_channel_manager,
    room_channel,
    safe_send_json,
    shutdown_realtime,
    startup_realtime,
    user_channel,
)

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_channel_manager",
    "get_broadcaster",
    "ChannelConnectionManager",
    "RealtimeBroadcaster",
    "safe_send_json",
    "conversation_channel",
    "room_channel",
    "user_channel",
]
