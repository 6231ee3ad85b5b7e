"""Simulated spot feed and the bridge from store change events to the Redis stream."""

import asyncio
import logging
import os
import random
from typing import Callable

from fxmarket.notify import MarketChanged
from fxmarket.twoway import TwoWay

from app import store as runtime
from app.redis_client import get_redis

logger = logging.getLogger(__name__)

STREAM_KEY = "market_changes"
STREAM_MAXLEN = 1000
FEED_INTERVAL_SEC = float(os.environ.get("FEED_INTERVAL_SEC", "0.5"))
# Random relative move (bp) per tick to simulate a live spot
SPOT_DELTA_BP_MIN = -1.0
SPOT_DELTA_BP_MAX = 1.0
SPOT_HALF_SPREAD_BP = 0.5


def next_spot(pair6: str, current: TwoWay) -> TwoWay:
    """Random-walk the mid of `current`; seed from the sample spots when unset."""
    mid = current.mid if current.mid > 0.0 else runtime.SAMPLE_SPOTS.get(pair6, 1.0)
    mid *= 1.0 + random.uniform(SPOT_DELTA_BP_MIN, SPOT_DELTA_BP_MAX) / 10000.0
    half = mid * SPOT_HALF_SPREAD_BP / 10000.0
    return TwoWay(mid - half, mid + half)


def tick() -> None:
    """One feed tick for the pair the store currently holds."""
    snap = runtime.store.current
    runtime.store.set_spot_from_feed(snap.pair6, next_spot(snap.pair6, snap.spot.effective), runtime.now())


async def run_feed() -> None:
    """Background task: every FEED_INTERVAL_SEC, tick the spot of the current pair."""
    while True:
        try:
            tick()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Spot feed tick failed")
        await asyncio.sleep(FEED_INTERVAL_SEC)


def make_stream_publisher(loop: asyncio.AbstractEventLoop) -> Callable[[MarketChanged], None]:
    """
    Store listener that XADDs each batched event to the Redis stream.

    Events fire on the debounce timer thread, so the write is handed to the
    app's event loop.
    """

    async def _publish(payload: str) -> None:
        redis = await get_redis()
        await redis.xadd(STREAM_KEY, {"payload": payload}, maxlen=STREAM_MAXLEN)

    def _on_changed(event: MarketChanged) -> None:
        payload = runtime.event_to_payload(event)
        future = asyncio.run_coroutine_threadsafe(_publish(payload), loop)
        future.add_done_callback(_log_failure)

    return _on_changed


def _log_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Publishing to %s failed: %s", STREAM_KEY, exc)
