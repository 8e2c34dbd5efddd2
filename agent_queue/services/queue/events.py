"""Subscription to a queue's lifecycle event channel."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from contextlib import suppress
from typing import Any, Callable, Optional

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from agent_queue.services.queue.models import QueueEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[dict[str, Any]], None]


class QueueEvents:
    """Listens on one queue's pub/sub channel and fans events out to listeners."""

    def __init__(self, queue_name: str, redis: Redis, channel: str):
        self._queue_name = queue_name
        self._redis = redis
        self._channel = channel
        self._listeners: dict[QueueEvent, list[EventListener]] = defaultdict(list)
        self._pubsub: Optional[PubSub] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def on(self, event: QueueEvent, listener: EventListener) -> None:
        """Register a callback for ``event``."""
        self._listeners[event].append(listener)

    async def start(self) -> None:
        """Subscribe to the channel. Calling it again is a no-op."""
        if self._task is not None:
            return
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._task = asyncio.create_task(self._listen(), name=f"queue-events:{self._queue_name}")
        logger.debug("Listening for events on %s", self._channel)

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") == "message":
                    self.dispatch(message["data"])
        except (RedisError, OSError) as e:
            logger.error("Event subscription on %s lost: %s", self._channel, e)

    def dispatch(self, raw: bytes | str) -> None:
        """Decode one published message and call the matching listeners."""
        try:
            message = json.loads(raw)
            event = QueueEvent(message["event"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed event on %s: %r", self._channel, raw)
            return

        for listener in self._listeners.get(event, ()):
            try:
                listener(message)
            except Exception:
                logger.exception(
                    "Event listener for %s on %s raised", event.value, self._queue_name
                )

    async def close(self) -> None:
        """Stop listening and release the pub/sub connection."""
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.warning("Failed to release event subscription on %s: %s", self._channel, e)
            self._pubsub = None
