"""Redis pub/sub backplane relaying realtime events between server nodes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_RECOVERY_BASE_DELAY = 0.5
_RECOVERY_MAX_DELAY = 30.0

# Topic carrying every broadcaster event.
EVENTS_TOPIC = "events"

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the realtime backplane."""

    redis_url: str | None
    namespace: str = "driftzo.realtime"
    node_id: str | None = None


class TransportUnavailableError(RuntimeError):
    """Raised when the backplane is not configured or cannot be reached."""


class Subscription:
    """Handle returned when subscribing to a backplane topic."""

    def __init__(self, channel: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self._channel = channel
        self._cleanup = cleanup
        self._closed = False

    @property
    def channel(self) -> str:
        return self._channel

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._cleanup()


class RedisTransport:
    """Publish and subscribe JSON payloads over Redis channels."""

    def __init__(self, config: BrokerConfig, *, client_factory: Callable[..., Any] | None = None) -> None:
        self._config = config
        self._client_factory = client_factory or redis_asyncio.from_url
        self._redis: Any | None = None
        self._readers: dict[str, asyncio.Task[Any]] = {}
        self._handlers: dict[str, MessageHandler] = {}

    @property
    def enabled(self) -> bool:
        return bool(self._config.redis_url)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    def channel_for(self, topic: str) -> str:
        prefix = self._config.namespace.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    async def start(self) -> None:
        if not self.enabled or self._redis is not None:
            return
        client = self._client_factory(self._config.redis_url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except _REDIS_ERRORS + (OSError,) as exc:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client
        logger.info("Connected to Redis realtime backend", extra={"node_id": self.node_id})

    async def stop(self) -> None:
        for channel in list(self._readers):
            await self._stop_reader(channel)
        self._handlers.clear()
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not configured")
        channel = self.channel_for(topic)
        try:
            await self._redis.publish(channel, json.dumps(payload))
        except _REDIS_ERRORS as exc:
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        logger.debug("Published realtime payload via Redis", extra={"channel": channel})

    async def subscribe(self, topic: str, handler: MessageHandler) -> Subscription:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not configured")
        channel = self.channel_for(topic)
        self._handlers[channel] = handler
        await self._start_reader(channel)

        async def cleanup() -> None:
            self._handlers.pop(channel, None)
            await self._stop_reader(channel)

        return Subscription(channel, cleanup)

    # ------------------------------------------------------------------
    # Reader lifecycle
    # ------------------------------------------------------------------
    async def _start_reader(self, channel: str) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except _REDIS_ERRORS as exc:
            with contextlib.suppress(Exception):
                await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc

        task = asyncio.create_task(self._read(channel, pubsub), name=f"realtime-redis-{channel}")
        self._readers[channel] = task

    async def _stop_reader(self, channel: str) -> None:
        task = self._readers.pop(channel, None)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _read(self, channel: str, pubsub: Any) -> None:
        attempt = 0
        while True:
            try:
                async for message in pubsub.listen():
                    attempt = 0
                    if message.get("type") != "message":
                        continue
                    await self._dispatch(channel, message.get("data"))
                return
            except asyncio.CancelledError:
                raise
            except _REDIS_ERRORS:
                attempt += 1
                delay = min(_RECOVERY_BASE_DELAY * (2 ** (attempt - 1)), _RECOVERY_MAX_DELAY)
                logger.warning(
                    "Redis subscription reader failed; retrying in %.1fs",
                    delay,
                    extra={"channel": channel, "attempt": attempt},
                )
                await asyncio.sleep(delay)
                with contextlib.suppress(Exception):
                    await pubsub.subscribe(channel)
            finally:
                if channel not in self._readers:
                    with contextlib.suppress(Exception):
                        await pubsub.unsubscribe(channel)
                    with contextlib.suppress(Exception):
                        await pubsub.aclose()

    async def _dispatch(self, channel: str, raw: Any) -> None:
        handler = self._handlers.get(channel)
        if handler is None or not isinstance(raw, str):
            return
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarded malformed realtime payload", extra={"channel": channel})
            return
        try:
            await handler(payload)
        except Exception:
            logger.exception("Realtime handler failed", extra={"channel": channel})
