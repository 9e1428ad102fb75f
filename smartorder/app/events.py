# events.py

"""Cross-process change feed over Redis Pub/Sub.

Each process keeps its own live queries. When a process writes to a
collection it publishes the collection name; every other process receiving
the message re-runs its live queries on that collection so staff screens
attached to different workers converge.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

if TYPE_CHECKING:  # pragma: no cover
    from .store.base import DocumentStore

logger = logging.getLogger("events")

CHANNEL_PREFIX = "rt:docs"
POLL_TIMEOUT = 1.0


class ChangeFeed:
    """Publish and consume collection change notifications."""

    def __init__(self, redis, *, prefix: str = CHANNEL_PREFIX) -> None:
        self.redis = redis
        self.prefix = prefix
        self.origin = uuid.uuid4().hex

    def channel(self, collection: str) -> str:
        return f"{self.prefix}:{collection}"

    async def publish(self, collection: str) -> None:
        """Announce that ``collection`` changed. Best effort."""

        payload = {
            "collection": collection,
            "origin": self.origin,
            "ts": datetime.now(timezone.utc).timestamp(),
        }
        try:
            await self.redis.publish(self.channel(collection), json.dumps(payload))
        except RedisError:
            # Local subscribers are still notified; remote ones catch up on
            # the next change.
            logger.warning("change feed publish failed for %s", collection, exc_info=True)

    async def handle_message(self, message: dict[str, Any], store: "DocumentStore") -> bool:
        """Re-notify ``store`` for a message from another process.

        Returns ``True`` if local subscribers were notified.
        """

        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode()
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.warning("ignoring malformed change feed message: %r", data)
            return False
        if payload.get("origin") == self.origin or not payload.get("collection"):
            return False
        await store.notify(payload["collection"])
        return True

    async def run(self, store: "DocumentStore") -> None:
        """Consume the feed until cancelled."""

        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(f"{self.prefix}:*")
        try:
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=POLL_TIMEOUT
                )
                if message is None:
                    continue
                await self.handle_message(message, store)
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()


__all__ = ["ChangeFeed", "CHANNEL_PREFIX"]
