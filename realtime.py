"""
Change feed subscriptions

One TableSubscription per mirrored table. Its task is the only consumer of that
table's feed, so events are handed to the store strictly in arrival order.
Events are held back while the store is (re)loading its snapshot.

States: disconnected -> subscribing -> active, and back to disconnected on
teardown or when the feed breaks. A broken feed is retried with exponential
backoff up to max_retries attempts; after that the subscription stays
disconnected and stale.
"""
import asyncio
import logging
from enum import Enum

import config
from exceptions import GatewayError

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * 2 ** (attempt - 1), cap)


class TableSubscription:
    def __init__(self, gateway, table, on_event, ready: asyncio.Event, on_reconnect=None,
                 max_retries=None, backoff_base=None, backoff_cap=None):
        self.table = table
        self.state = FeedState.DISCONNECTED
        self.stale = False
        self.attempts = 0
        self._gateway = gateway
        self._on_event = on_event
        self._on_reconnect = on_reconnect
        self._ready = ready
        self._max_retries = config.FEED_MAX_RETRIES if max_retries is None else max_retries
        self._backoff_base = config.FEED_BACKOFF_BASE if backoff_base is None else backoff_base
        self._backoff_cap = config.FEED_BACKOFF_CAP if backoff_cap is None else backoff_cap
        self._feed = None
        self._task = None
        self._first_attempt = asyncio.Event()

    async def start(self):
        """Spawn the consumer and wait until the first subscribe attempt resolved."""
        self._task = asyncio.create_task(self._run(), name=f"feed:{self.table}")
        await self._first_attempt.wait()

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close_feed()
        self.state = FeedState.DISCONNECTED

    async def _close_feed(self):
        feed, self._feed = self._feed, None
        if feed is not None:
            await feed.close()

    async def _run(self):
        while True:
            self.state = FeedState.SUBSCRIBING
            try:
                self._feed = await self._gateway.subscribe(self.table)
            except GatewayError as e:
                logger.warning(f"Subscribing to {self.table} failed: {e}")
            else:
                self.state = FeedState.ACTIVE
                reconnected = self.attempts > 0
                self.attempts = 0
                self._first_attempt.set()
                if reconnected:
                    logger.info(f"Change feed on {self.table} reconnected, resyncing")
                    # Still stale until a resync succeeds
                    if self._on_reconnect is None:
                        self.stale = False
                    elif not await self._on_reconnect(self):
                        logger.warning(f"Resync after reconnecting {self.table} failed, data may be stale")
                    else:
                        self.stale = False
                try:
                    await self._consume(self._feed)
                    logger.warning(f"Change feed on {self.table} ended")
                except GatewayError as e:
                    logger.warning(f"Change feed on {self.table} dropped: {e}")
                finally:
                    await self._close_feed()

            self.state = FeedState.DISCONNECTED
            self.stale = True
            self._first_attempt.set()
            self.attempts += 1
            if self.attempts > self._max_retries:
                logger.error(f"Giving up on change feed for {self.table} after {self._max_retries} retries")
                return
            await asyncio.sleep(backoff_delay(self.attempts, self._backoff_base, self._backoff_cap))

    async def _consume(self, feed):
        async for event in feed:
            await self._ready.wait()
            self._on_event(event)
