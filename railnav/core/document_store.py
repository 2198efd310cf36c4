"""Token-keyed shared documents backing mirroring sessions."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import orjson
import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from railnav.config import settings

logger = logging.getLogger(__name__)

# Called with the new document, or None once the document was deleted
ChangeCallback = Callable[[dict[str, Any] | None], Awaitable[None] | None]

DELETED = b""
RESUBSCRIBE_DELAY_SECONDS = 2


class DocumentStore(Protocol):
    """Port to the remote document store shared by publisher and subscribers."""

    async def get(self, token: str) -> dict[str, Any] | None:
        ...

    async def set(self, token: str, payload: dict[str, Any]) -> None:
        """Write the full payload; no partial-field updates."""
        ...

    async def delete(self, token: str) -> None:
        ...

    async def on_change(self, token: str, callback: ChangeCallback) -> Callable[[], None]:
        """Start a change feed for ``token``; returns a function detaching it.

        The feed is live when this returns: no write made afterwards is
        missed, and a document deleted in the meantime is reported as None.
        """
        ...


class RedisDocumentStore:
    """Stores documents as Redis keys and announces changes over pub/sub.

    Every ``set`` and ``delete`` publishes to ``<key>:changes``: the full
    serialized document, or an empty message for a deletion.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str | None = None,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url or settings.redis_url
        self._prefix = key_prefix or settings.mirroring_key_prefix
        self._redis: aioredis.Redis | None = client
        self._feeds: set[asyncio.Task] = set()

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        for task in list(self._feeds):
            task.cancel()
        if self._feeds:
            await asyncio.gather(*self._feeds, return_exceptions=True)
        self._feeds.clear()
        if self._redis:
            await self._redis.aclose()

    def _key(self, token: str) -> str:
        return f"{self._prefix}:{token}"

    def _channel(self, token: str) -> str:
        return f"{self._prefix}:{token}:changes"

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("RedisDocumentStore is not connected")
        return self._redis

    async def get(self, token: str) -> dict[str, Any] | None:
        data = await self.redis.get(self._key(token))
        if data is None:
            return None
        return orjson.loads(data)

    async def set(self, token: str, payload: dict[str, Any]) -> None:
        data = orjson.dumps(payload)
        await self.redis.set(self._key(token), data)
        await self.redis.publish(self._channel(token), data)

    async def delete(self, token: str) -> None:
        await self.redis.delete(self._key(token))
        await self.redis.publish(self._channel(token), DELETED)

    async def on_change(self, token: str, callback: ChangeCallback) -> Callable[[], None]:
        pubsub = await self._open_feed(token)
        try:
            # A delete published before the subscription took effect is only visible here
            missing = not await self.redis.exists(self._key(token))
        except RedisError:
            await self._close_feed(pubsub)
            raise

        detached = False
        task = asyncio.create_task(
            self._listen(token, callback, pubsub, missing, lambda: detached),
            name=f"mirroring-feed-{token}",
        )
        self._feeds.add(task)
        task.add_done_callback(self._feeds.discard)

        def unsubscribe() -> None:
            nonlocal detached
            detached = True
            task.cancel()

        return unsubscribe

    async def _open_feed(self, token: str) -> PubSub:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self._channel(token))
        return pubsub

    async def _listen(
        self,
        token: str,
        callback: ChangeCallback,
        pubsub: PubSub | None,
        missing: bool,
        is_detached: Callable[[], bool],
    ) -> None:
        try:
            if missing:
                await self._deliver(token, callback, DELETED)
            while not is_detached():
                try:
                    if pubsub is None:
                        pubsub = await self._open_feed(token)
                        # Catch up on whatever was written while disconnected
                        data = await self.redis.get(self._key(token))
                        await self._deliver(token, callback, data or DELETED)
                    async for message in pubsub.listen():
                        if is_detached():
                            return
                        if message.get("type") == "message":
                            await self._deliver(token, callback, message["data"])
                except RedisError as e:
                    logger.warning(
                        "Change feed for %s lost (%s), resubscribing in %ds",
                        token, e, RESUBSCRIBE_DELAY_SECONDS,
                    )
                    await self._close_feed(pubsub)
                    pubsub = None
                    await asyncio.sleep(RESUBSCRIBE_DELAY_SECONDS)
        except asyncio.CancelledError:
            pass
        finally:
            await self._close_feed(pubsub)

    async def _deliver(self, token: str, callback: ChangeCallback, data: bytes) -> None:
        try:
            doc = orjson.loads(data) if data else None
        except orjson.JSONDecodeError:
            logger.warning("Ignoring malformed document update for %s", token)
            return
        try:
            result = callback(doc)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Change callback for %s failed", token)

    @staticmethod
    async def _close_feed(pubsub: PubSub | None) -> None:
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.debug("Closing change feed failed: %s", e)
