"""Bridges Redis pub/sub change notifications to local subscriptions.

Every process publishes committed row changes on ``pubsub:cg:<table>``
(see :class:`genesis.state.sql.SqlStateStore`). The feed listens on the
whole prefix and hands each event to the store's subscription registry,
which filters by table and record columns.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from genesis.state.store import ChangeEvent, SubscriptionRegistry, Table

logger = structlog.get_logger()


class RedisChangeFeed:
    """Subscribes to the change channels and dispatches events locally."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        registry: SubscriptionRegistry,
        channel_prefix: str = "pubsub:cg:",
    ) -> None:
        self.redis = redis_client
        self.registry = registry
        self.channel_prefix = channel_prefix
        self._running = False

    @property
    def pattern(self) -> str:
        return f"{self.channel_prefix}*"

    def parse(self, channel: str, data: str | bytes) -> ChangeEvent | None:
        """Decode one pub/sub message. Returns None (and logs) when it is unusable."""
        if isinstance(data, bytes):
            try:
                data = data.decode()
            except UnicodeDecodeError:
                logger.warning("pubsub_invalid_message", channel=channel)
                return None
        try:
            payload = json.loads(data)
            event = ChangeEvent.from_payload(payload)
        except (json.JSONDecodeError, ValueError, TypeError):
            logger.warning("pubsub_invalid_message", channel=channel)
            return None

        table_name = channel[len(self.channel_prefix):]
        if table_name != event.table.value:
            logger.warning("pubsub_table_mismatch", channel=channel, table=event.table.value)
            return None
        return event

    async def start(self) -> None:
        """Listen until :meth:`stop` is called or the task is cancelled."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(self.pattern)

        logger.info(
            "change_feed_started",
            pattern=self.pattern,
            tables=[table.value for table in Table],
        )

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                channel = message.get("channel", "")
                if isinstance(channel, bytes):
                    channel = channel.decode()
                if not channel.startswith(self.channel_prefix):
                    continue

                event = self.parse(channel, message.get("data", b""))
                if event is None:
                    continue

                delivered = await self.registry.dispatch(event)
                if delivered > 0:
                    logger.debug(
                        "change_dispatched",
                        table=event.table.value,
                        event=event.event.value,
                        recipients=delivered,
                    )

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.close()
            logger.info("change_feed_stopped")

    async def stop(self) -> None:
        """Signal the feed to stop."""
        self._running = False
