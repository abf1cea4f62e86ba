"""Channel routing and event fan-out for connected websocket clients."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .transport import (
    EVENTS_TOPIC,
    BrokerConfig,
    RedisTransport,
    Subscription,
    TransportUnavailableError,
)

logger = logging.getLogger(__name__)


# Server -> client event names.
MESSAGE_NEW = "message:new"
MESSAGE_REACTION = "message:reaction"
THEME_CHANGED = "theme:changed"
ROOM_UPDATED = "room:updated"
ROOM_MEMBER_LEFT = "room:member_left"
ROOM_MEMBER_KICKED = "room:member_kicked"
ROOM_ADMIN_CHANGED = "room:admin_changed"
ROOM_DELETED = "room:deleted"
CONVERSATION_UPDATED = "conversation:updated"
USER_ROOM_UPDATED = "user:room_updated"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"


def conversation_channel(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


def room_channel(room_id: int) -> str:
    return f"room:{room_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


def _channel_kind(channel: str) -> str:
    return channel.split(":", 1)[0]


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------


class ChannelConnectionManager:
    """Track which local sockets are subscribed to which named channels.

    The routing table lives in process memory; other nodes only learn about
    events through the backplane.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._socket_channels: Dict[WebSocket, Set[str]] = defaultdict(set)
        self._socket_users: Dict[WebSocket, int] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket, user_id: int | None = None) -> None:
        async with self._lock:
            self._socket_channels.setdefault(websocket, set())
            if user_id is not None:
                self._socket_users[websocket] = user_id
            realtime_connections.labels("sockets").inc()

    async def unregister(self, websocket: WebSocket) -> list[str]:
        """Drop the socket from every channel it joined."""

        async with self._lock:
            self._socket_users.pop(websocket, None)
            channels = self._socket_channels.pop(websocket, set())
            for channel in channels:
                self._discard(channel, websocket)
            realtime_connections.labels("sockets").dec()
            return sorted(channels)

    async def connect(self, channel: str, websocket: WebSocket) -> bool:
        async with self._lock:
            bucket = self._connections.setdefault(channel, set())
            if websocket in bucket:
                return False
            bucket.add(websocket)
            self._socket_channels[websocket].add(channel)
            realtime_subscriptions.labels(_channel_kind(channel)).inc()
            return True

    async def disconnect(self, channel: str, websocket: WebSocket) -> bool:
        async with self._lock:
            removed = self._discard(channel, websocket)
            channels = self._socket_channels.get(websocket)
            if channels is not None:
                channels.discard(channel)
            return removed

    async def evict(self, channel: str, user_ids: Iterable[int] | None = None) -> int:
        """Unsubscribe the given users' sockets from a channel, or every socket when no ids are given."""

        async with self._lock:
            targets = set(user_ids) if user_ids is not None else None
            evicted = 0
            for websocket in list(self._connections.get(channel, ())):
                if targets is not None and self._socket_users.get(websocket) not in targets:
                    continue
                self._discard(channel, websocket)
                channels = self._socket_channels.get(websocket)
                if channels is not None:
                    channels.discard(channel)
                evicted += 1
            return evicted

    def _discard(self, channel: str, websocket: WebSocket) -> bool:
        connections = self._connections.get(channel)
        if not connections or websocket not in connections:
            return False
        connections.remove(websocket)
        realtime_subscriptions.labels(_channel_kind(channel)).dec()
        if not connections:
            self._connections.pop(channel, None)
        return True

    def channels_for(self, websocket: WebSocket) -> set[str]:
        return set(self._socket_channels.get(websocket, set()))

    def subscriber_count(self, channel: str) -> int:
        return len(self._connections.get(channel, ()))

    async def broadcast(
        self,
        channel: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> int:
        connections = self._connections.get(channel, set()).copy()
        exclude_set = set(exclude or [])
        delivered = 0
        for connection in connections:
            if connection in exclude_set:
                continue
            if await safe_send_json(connection, payload):
                delivered += 1
        return delivered


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------


class RealtimeBroadcaster:
    """Push persisted changes to interested sockets.

    Delivery is best effort: callers emit only after their transaction has
    committed and nothing raised here ever reaches them. When a backplane is
    configured every event is also published with this node's id so that other
    nodes can relay it to their own sockets.
    """

    def __init__(
        self,
        connection_manager: ChannelConnectionManager,
        transport: RedisTransport | None = None,
        *,
        node_id: str,
    ) -> None:
        self._connections = connection_manager
        self._transport = transport
        self._node_id = node_id
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    @property
    def connections(self) -> ChannelConnectionManager:
        return self._connections

    @property
    def node_id(self) -> str:
        return self._node_id

    async def start(self) -> None:
        if self._transport is None or not self._transport.connected:
            return

        async def handle(message: dict[str, Any]) -> None:
            if message.get("origin") == self._node_id:
                return
            channel = message.get("channel")
            if "evict" in message:
                if isinstance(channel, str):
                    await self._connections.evict(channel, message.get("evict"))
                return
            payload = message.get("payload")
            if not isinstance(channel, str) or not isinstance(payload, dict):
                return
            await self._connections.broadcast(channel, payload)
            realtime_events_total.labels(payload.get("type", "unknown"), "in").inc()

        try:
            self._subscription = await self._transport.subscribe(EVENTS_TOPIC, handle)
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; events will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

    async def emit(
        self,
        channel: str,
        event: str,
        data: dict[str, Any] | None = None,
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> None:
        payload = {"type": event, **(data or {})}
        try:
            await self._connections.broadcast(channel, payload, exclude=exclude)
        except Exception:
            realtime_publish_errors_total.labels("local", "error").inc()
            logger.exception("Unexpected error while delivering %s to %s", event, channel)
        realtime_events_total.labels(event, "out").inc()
        await self._publish(channel, payload)

    async def emit_to_users(self, user_ids: Iterable[int], event: str, data: dict[str, Any] | None = None) -> None:
        for user_id in dict.fromkeys(user_ids):
            await self.emit(user_channel(user_id), event, data)

    async def evict(self, channel: str, user_ids: Iterable[int] | None = None) -> None:
        """Stop delivering a channel to former members on every node."""

        targets = sorted(set(user_ids)) if user_ids is not None else None
        evicted = await self._connections.evict(channel, targets)
        logger.debug("Evicted %d local sockets from %s", evicted, channel)
        await self._send(
            {"origin": self._node_id, "channel": channel, "evict": targets},
            "evict",
        )

    async def _publish(self, channel: str, payload: dict[str, Any]) -> None:
        await self._send(
            {"origin": self._node_id, "channel": channel, "payload": payload},
            payload.get("type"),
        )

    async def _send(self, message: dict[str, Any], label: Any) -> None:
        if self._transport is None or not self._transport.connected:
            return
        try:
            await self._transport.publish(EVENTS_TOPIC, message)
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while broadcasting %s; operating in local-only mode",
                    label,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels("redis", "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels("redis", "error").inc()
            logger.exception("Unexpected error while broadcasting %s", label)
        else:
            self._publish_warning_logged = False


# ---------------------------------------------------------------------------
# Module level singletons
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        namespace=settings.realtime_namespace,
        node_id=_node_id,
    )
)

channel_manager = ChannelConnectionManager()
broadcaster = RealtimeBroadcaster(channel_manager, transport, node_id=_node_id)


async def startup_realtime() -> None:
    if not transport.enabled:
        logger.info("No realtime backplane configured; broadcasting within this process only")
        return
    try:
        await transport.start()
    except (TransportUnavailableError, OSError):
        logger.warning(
            "Realtime backend unavailable during startup; continuing without cross-node sync",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        return
    await broadcaster.start()


async def shutdown_realtime() -> None:
    await broadcaster.stop()
    await transport.stop()


def get_channel_manager() -> ChannelConnectionManager:
    return channel_manager


def get_broadcaster() -> RealtimeBroadcaster:
    return broadcaster


__all__ = [
    "ChannelConnectionManager",
    "RealtimeBroadcaster",
    "safe_send_json",
    "conversation_channel",
    "room_channel",
    "user_channel",
    "startup_realtime",
    "shutdown_realtime",
    "get_channel_manager",
    "get_broadcaster",
]
