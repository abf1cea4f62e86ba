"""WebSocket endpoint for realtime chat events."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.database import get_db_session
from app.models import User
from app.services import conversations as conversation_service
from app.services import rooms as room_service
from driftzo.realtime.managers import (
    TYPING_START,
    TYPING_STOP,
    conversation_channel,
    get_broadcaster,
    get_channel_manager,
    room_channel,
    safe_send_json,
    user_channel,
)

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

manager = get_channel_manager()
broadcaster = get_broadcaster()

T = TypeVar("T")

_SCOPES = {
    "conversation": ("conversation_id", conversation_channel),
    "room": ("room_id", room_channel),
}


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


def _coerce_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _check_access(scope: str, target_id: int, user_id: int) -> str | None:
    """Return an error message when the user may not follow the channel."""

    try:
        with get_db_session() as db:
            if scope == "conversation":
                conversation_service.load_conversation(target_id, user_id, db)
            else:
                room_service.load_room(target_id, db)
                room_service.require_member(target_id, user_id, db)
    except HTTPException as exc:
        return str(exc.detail)
    return None


def _resolve_scope(payload: dict[str, Any]) -> tuple[str, int] | None:
    for scope, (key, _) in _SCOPES.items():
        if key in payload:
            target_id = _coerce_id(payload.get(key))
            if target_id is not None:
                return scope, target_id
    return None


async def _handle_subscription(websocket: WebSocket, user: User, action: str, scope: str, payload: dict[str, Any]) -> None:
    key, channel_for = _SCOPES[scope]
    target_id = _coerce_id(payload.get(key))
    if target_id is None:
        await _send_error(websocket, f"{key} is required")
        return

    channel = channel_for(target_id)
    if action == "leave":
        await manager.disconnect(channel, websocket)
        return

    error = _check_access(scope, target_id, user.id)
    if error is not None:
        await _send_error(websocket, error)
        return
    await manager.connect(channel, websocket)
    logger.debug("User %s subscribed to %s", user.id, channel)


async def _handle_typing(websocket: WebSocket, user: User, event: str, payload: dict[str, Any]) -> None:
    resolved = _resolve_scope(payload)
    if resolved is None:
        await _send_error(websocket, "conversation_id or room_id is required")
        return
    scope, target_id = resolved
    key, channel_for = _SCOPES[scope]
    channel = channel_for(target_id)
    if channel not in manager.channels_for(websocket):
        await _send_error(websocket, "Join the chat before sending typing updates")
        return
    await broadcaster.emit(
        channel,
        event,
        {key: target_id, "user_id": user.id, "username": user.username},
        exclude={websocket},
    )


async def _handle_frame(websocket: WebSocket, user: User, payload: dict[str, Any]) -> None:
    kind = payload.get("type")
    if kind == "ping":
        await safe_send_json(websocket, {"type": "pong"})
    elif kind == "pong":
        return
    elif kind in {"join_conversation", "leave_conversation", "join_room", "leave_room"}:
        action, scope = kind.split("_", 1)
        await _handle_subscription(websocket, user, action, scope, payload)
    elif kind in {TYPING_START, TYPING_STOP}:
        await _handle_typing(websocket, user, kind, payload)
    else:
        await _send_error(websocket, "Unsupported message type")


@router.websocket("/ws")
async def websocket_events(websocket: WebSocket) -> None:
    """Deliver chat events to an authenticated client.

    Every socket follows its owner's personal channel; conversation and room
    channels are joined on request once participation is verified.
    """

    user = await _resolve_user(websocket)
    if user is None:
        return

    await websocket.accept()
    await manager.register(websocket, user.id)
    await manager.connect(user_channel(user.id), websocket)
    try:
        await safe_send_json(websocket, {"type": "ready", "user_id": user.id})
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid payload")
                continue
            if not isinstance(payload, dict):
                await _send_error(websocket, "Invalid payload")
                continue
            await _handle_frame(websocket, user, payload)
    finally:
        channels = await manager.unregister(websocket)
        logger.debug("User %s disconnected from %d channels", user.id, len(channels))
