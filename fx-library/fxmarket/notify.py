"""
Batched change notification.

A single triangulation writes rd and rf as two store calls; a burst of feed
ticks can write spot many times per frame. Listeners should see one event per
burst, so writes only bump a per-category counter and (re)arm a short
single-shot timer; when it fires, one `MarketChanged` carries the latest
snapshot and the aggregated counts.

The timer goes through a `Scheduler` so the window can be driven with virtual
time in tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Protocol

if TYPE_CHECKING:
    from fxmarket.snapshot import MarketSnapshot

logger = logging.getLogger(__name__)

CATEGORIES = ("rd", "rf", "spot", "forward", "other")


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Runs `fn` once after `delay` seconds unless the handle is cancelled."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Scheduler backed by daemon `threading.Timer`s."""

    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class MarketChanged:
    """One batched notification: latest snapshot plus what changed since the last one."""

    snapshot: "MarketSnapshot"
    reason: str
    counts: dict[str, int] = field(default_factory=dict)


def format_reason(counts: dict[str, int]) -> str:
    return "Batch:Rd={rd};Rf={rf};Spot={spot};Forward={forward};Other={other}".format(
        **{c: counts.get(c, 0) for c in CATEGORIES}
    )


class ChangeBatcher:
    """
    Debounces `record()` calls into single `MarketChanged` emissions.

    Every record re-arms the timer, so a steady stream of writes closer together
    than `window` keeps postponing the event until the stream pauses.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        window: float,
        snapshot_provider: Callable[[], "MarketSnapshot"],
        emit: Callable[[MarketChanged], None],
    ) -> None:
        self._scheduler = scheduler
        self._window = window
        self._snapshot_provider = snapshot_provider
        self._emit = emit
        self._lock = threading.Lock()
        self._counts = {c: 0 for c in CATEGORIES}
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return any(self._counts.values())

    def record(self, category: str) -> None:
        if category not in self._counts:
            category = "other"
        with self._lock:
            self._counts[category] += 1
            if self._handle is not None:
                self._handle.cancel()
            self._handle = self._scheduler.call_later(self._window, self._fire)

    def flush(self) -> Optional[MarketChanged]:
        """Emit the pending batch now, if any. Returns the emitted event."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None
        return self._fire()

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _fire(self) -> Optional[MarketChanged]:
        with self._lock:
            counts = dict(self._counts)
            for c in self._counts:
                self._counts[c] = 0
            self._handle = None
            if not any(counts.values()):
                return None
            snapshot = self._snapshot_provider()
        event = MarketChanged(snapshot=snapshot, reason=format_reason(counts), counts=counts)
        logger.debug("MarketChanged %s pair=%s", event.reason, snapshot.pair6)
        self._emit(event)
        return event
