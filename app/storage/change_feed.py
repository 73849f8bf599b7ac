"""
Redis Change Feed

Push notifications for the remote backend. After every committed write
the backend publishes a ping on the collection's channel; watchers
re-query the database and hand the full snapshot to their callback.
Messages carry no data, so a watcher can never apply a partial update.

Channels: <namespace>:products, <namespace>:orders, <namespace>:tables

Version: 1.0.0
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.storage.base import Subscription

logger = logging.getLogger(__name__)


class ChangeFeed:
    """
    Publishes and listens to collection change pings.

    A listener that loses its Redis connection keeps retrying with a
    growing delay for as long as its subscription is active. Pings sent
    during the outage are lost, so a listener calls its callback once
    right away whenever it is subscribed again, whether it reconnected
    itself or the Redis client did.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "venue",
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ):
        self._client = client
        self._namespace = namespace
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._listeners: set[asyncio.Task] = set()
        self._subscriptions: set[Subscription] = set()

    def channel(self, collection: str) -> str:
        return f"{self._namespace}:{collection}"

    async def publish(self, *collections: str) -> None:
        """
        Announce that collections changed.

        The write being announced is already committed; a publish failure
        only delays watchers, so it is logged and not raised.
        """
        for collection in collections:
            try:
                await self._client.publish(self.channel(collection), "changed")
            except RedisError as e:
                logger.warning(f"Change notification for '{collection}' not sent: {e}")

    async def _open(self, collection: str) -> PubSub:
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(self.channel(collection))
        except RedisError:
            await pubsub.aclose()
            raise
        return pubsub

    async def _discard(self, collection: str, pubsub: PubSub) -> None:
        try:
            await pubsub.unsubscribe()
        except RedisError as e:
            logger.debug(f"Change feed for '{collection}' closed uncleanly: {e}")
        finally:
            await pubsub.aclose()

    async def watch(
        self,
        collection: str,
        on_change: Callable[[], Awaitable[None]],
    ) -> Subscription:
        """
        Call ``on_change`` now and after every ping on ``collection``.

        The channel is subscribed before the first call so no change
        slips between the initial snapshot and the listener.
        """
        task: Optional[asyncio.Task] = None

        def stop() -> None:
            self._subscriptions.discard(subscription)
            if task is not None:
                task.cancel()

        subscription = Subscription(collection, on_cancel=stop)
        self._subscriptions.add(subscription)

        try:
            pubsub = await self._open(collection)
        except RedisError:
            subscription.cancel()
            raise
        try:
            await on_change()
        except Exception:
            subscription.cancel()
            await pubsub.aclose()
            raise

        if not subscription.active:
            # Cancelled during the first delivery
            await pubsub.aclose()
            return subscription

        task = asyncio.get_running_loop().create_task(
            self._listen(collection, pubsub, on_change, subscription),
            name=f"feed:{collection}",
        )
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)

        return subscription

    async def _listen(
        self,
        collection: str,
        pubsub: Optional[PubSub],
        on_change: Callable[[], Awaitable[None]],
        subscription: Subscription,
    ) -> None:
        delay = self.reconnect_delay
        try:
            while subscription.active:
                try:
                    if pubsub is None:
                        pubsub = await self._open(collection)
                        logger.info(f"Change feed for '{collection}' reconnected")
                        delay = self.reconnect_delay
                        await on_change()
                    confirmed = False
                    async for message in pubsub.listen():
                        if not subscription.active:
                            break
                        kind = message.get("type")
                        if kind == "message":
                            await on_change()
                        elif kind == "subscribe":
                            # A second confirmation means the client re-subscribed on its own
                            if confirmed:
                                logger.info(f"Change feed for '{collection}' re-subscribed")
                                await on_change()
                            confirmed = True
                except RedisError as e:
                    logger.warning(
                        f"Change feed for '{collection}' lost its connection, "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    if pubsub is not None:
                        await pubsub.aclose()
                        pubsub = None
                if not subscription.active:
                    break
                if pubsub is not None:
                    # listen() ended on its own, start over on a fresh connection
                    await self._discard(collection, pubsub)
                    pubsub = None
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
        finally:
            if pubsub is not None:
                await self._discard(collection, pubsub)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Change feed ping failed - {e}")
            return False

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        await self._client.aclose()
