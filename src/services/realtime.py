"""Real-time fanout of feed changes to connected observers.

``BroadcastHub`` delivers events to subscribers in this process. Subscribers
get events published after they subscribed, in publish order, and nothing
from before. ``RedisBroadcastHub`` routes publishes through Redis pub/sub so
that observers attached to other worker processes see them too.
"""

import asyncio
import json
import logging
import threading
from collections.abc import AsyncIterator
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import redis
import redis.asyncio as aioredis

from src.config import Settings

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

POSTS_TOPIC = "posts"

_CLOSED = object()


class PostAction(StrEnum):
    """Actions carried on the posts topic."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Subscription:
    """One observer's queue of events for a topic.

    Bound to the event loop it was created on; publishers on other threads
    hand events over with ``call_soon_threadsafe``.
    """

    def __init__(self, hub: "BroadcastHub", topic: str) -> None:
        self.hub = hub
        self.topic = topic
        self.loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def _put(self, payload: Any) -> None:
        self.loop.call_soon_threadsafe(self._queue.put_nowait, payload)

    async def get(self) -> dict:
        """Wait for the next event. Raises StopAsyncIteration once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> AsyncIterator[dict]:
        return self

    async def __anext__(self) -> dict:
        return await self.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub._unsubscribe(self)
        try:
            self._put(_CLOSED)
        except RuntimeError:
            pass  # loop already closed

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class BroadcastHub:
    """In-process publish/subscribe point for feed events."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str) -> Subscription:
        """Register an observer. Must be called from a running event loop."""
        subscription = Subscription(self, topic)
        with self._lock:
            self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug(f"Observer subscribed to {topic}")
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            observers = self._subscribers.get(subscription.topic)
            if observers is not None:
                observers.discard(subscription)
                if not observers:
                    del self._subscribers[subscription.topic]

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, payload: dict) -> int:
        """Deliver ``payload`` to every current subscriber of ``topic``.

        Never raises: a failed publish must not fail the caller's request.
        Returns the number of local observers the event was handed to.
        """
        try:
            return self._deliver(topic, payload)
        except Exception as e:
            logger.error(f"Failed to publish {topic} event: {e}")
            return 0

    def _deliver(self, topic: str, payload: dict) -> int:
        with self._lock:
            observers = list(self._subscribers.get(topic, ()))
        delivered = 0
        for subscription in observers:
            try:
                subscription._put(payload)
                delivered += 1
            except RuntimeError:
                # The observer's loop has shut down underneath it
                self._unsubscribe(subscription)
        logger.debug(f"Published {payload.get('action')} to {topic} ({delivered} observers)")
        return delivered

    async def start(self) -> None:
        """Start background work. Nothing to do in-process."""

    async def stop(self) -> None:
        """End every open subscription."""
        with self._lock:
            observers = [s for subs in self._subscribers.values() for s in subs]
        for subscription in observers:
            subscription.close()


class RedisBroadcastHub(BroadcastHub):
    """Fanout across worker processes via Redis pub/sub.

    Publishes go to Redis only; a relay task subscribed to the same channels
    hands every message to this process's local observers, including the
    ones published from here.
    """

    def __init__(self, redis_url: str, topics: tuple[str, ...] = (POSTS_TOPIC,)) -> None:
        super().__init__()
        self.redis_url = redis_url
        self.topics = topics
        self._sync_redis: redis.Redis | None = None
        self._redis: aioredis.Redis | None = None
        self._pubsub: "PubSub | None" = None
        self._relay_task: asyncio.Task | None = None

    def get_sync_redis(self) -> redis.Redis:
        """Synchronous client for publishing from threadpool endpoints."""
        if self._sync_redis is None:
            self._sync_redis = redis.from_url(self.redis_url)
        return self._sync_redis

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url)
        return self._redis

    def publish(self, topic: str, payload: dict) -> int:
        try:
            receivers = self.get_sync_redis().publish(topic, json.dumps(payload))
            logger.debug(f"Published {payload.get('action')} to redis channel {topic}")
            return receivers
        except Exception as e:
            # Don't fail the request if pub/sub fails
            logger.error(f"Failed to publish {topic} event: {e}")
            return 0

    async def start(self) -> None:
        redis_conn = await self._get_redis()
        self._pubsub = redis_conn.pubsub()
        await self._pubsub.subscribe(*self.topics)
        self._relay_task = asyncio.create_task(self._relay())
        logger.info(f"Relaying redis channels {', '.join(self.topics)}")

    async def _relay(self) -> None:
        assert self._pubsub is not None
        try:
            async for message in self._pubsub.listen():
                self._relay_message(message)
        except Exception as e:
            # Local observers stay connected but will receive nothing further
            logger.error(f"Redis relay stopped: {e}", exc_info=True)

    def _relay_message(self, message: dict) -> None:
        if message["type"] != "message":
            return
        channel = message["channel"]
        if isinstance(channel, bytes):
            channel = channel.decode()
        try:
            data = json.loads(message["data"])
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON in pub/sub message: {message['data']}")
            return
        self._deliver(channel, data)

    async def stop(self) -> None:
        await super().stop()
        try:
            if self._relay_task:
                self._relay_task.cancel()
                try:
                    await self._relay_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Redis relay failed: {e}")
                self._relay_task = None
        finally:
            await self._close_connections()

    async def _close_connections(self) -> None:
        if self._pubsub:
            try:
                await self._pubsub.unsubscribe(*self.topics)
                await self._pubsub.close()
            except Exception as e:
                # A dropped connection can fail the unsubscribe; still close the clients
                logger.warning(f"Failed to close redis pub/sub: {e}")
        if self._redis:
            await self._redis.close()
        if self._sync_redis:
            self._sync_redis.close()
        self._pubsub = self._redis = self._sync_redis = None


def create_broadcast_hub(settings: Settings) -> BroadcastHub:
    """Build the hub selected by ``broadcast_backend``."""
    if settings.broadcast_backend == "redis":
        return RedisBroadcastHub(settings.redis_url)
    return BroadcastHub()
