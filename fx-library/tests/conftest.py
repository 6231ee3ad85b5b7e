"""Shared fixtures: virtual-time scheduler, fake clock, sample curves."""

from datetime import date, datetime, timedelta, timezone
from typing import Callable

import pytest

from fxmarket.config import Settings
from fxmarket.curves import DiscountCurve
from fxmarket.sources import InMemoryMarketDataSource
from fxmarket.store import MarketStore

VAL_DATE = date(2024, 3, 1)
SPOT_DATE = date(2024, 3, 5)
NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class _Handle:
    def __init__(self, due: float, fn: Callable[[], None]) -> None:
        self.due = due
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by `advance()`; nothing fires on its own."""

    def __init__(self) -> None:
        self.time = 0.0
        self._handles: list[_Handle] = []

    def call_later(self, delay: float, fn: Callable[[], None]) -> _Handle:
        handle = _Handle(self.time + delay, fn)
        self._handles.append(handle)
        return handle

    @property
    def armed(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)

    def advance(self, seconds: float) -> None:
        self.time += seconds
        due = sorted(
            (h for h in self._handles if not h.cancelled and h.due <= self.time),
            key=lambda h: h.due,
        )
        self._handles = [h for h in self._handles if not h.cancelled and h not in due]
        for h in due:
            h.fn()


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(scheduler: ManualScheduler) -> MarketStore:
    return MarketStore(settings=Settings(), scheduler=scheduler, now=NOW)


@pytest.fixture
def events(store: MarketStore) -> list:
    received: list = []
    store.subscribe(received.append)
    return received


@pytest.fixture
def usd_curve() -> DiscountCurve:
    """Roughly 5% ACT/360 simple curve."""
    return DiscountCurve.from_pairs(
        "USD_SOFR",
        VAL_DATE,
        [
            (date(2024, 3, 5), 0.99945),
            (date(2024, 6, 5), 0.98680),
            (date(2024, 9, 5), 0.97440),
            (date(2025, 3, 5), 0.95060),
        ],
    )


def forward_rows(spot: float, points: list[tuple[date, float]]) -> list[dict]:
    return [{"Settlement Date": d.isoformat(), "Tenor": f"{i + 1}M", "Mid Points": p} for i, (d, p) in enumerate(points)]


@pytest.fixture
def source(usd_curve: DiscountCurve) -> InMemoryMarketDataSource:
    src = InMemoryMarketDataSource(usd_curve)
    src.add_forward_table(
        "EURUSD BGN Curncy",
        forward_rows(1.08, [(date(2024, 6, 5), 30.0), (date(2024, 9, 5), 60.0), (date(2025, 3, 5), 120.0)]),
        {"PX_BID": 1.0799, "PX_ASK": 1.0801, "PX_MID": 1.08},
        VAL_DATE,
        SPOT_DATE,
    )
    src.add_forward_table(
        "USDSEK BGN Curncy",
        forward_rows(10.50, [(date(2024, 6, 5), -450.0), (date(2024, 9, 5), -900.0), (date(2025, 3, 5), -1800.0)]),
        {"PX_BID": 10.499, "PX_ASK": 10.501, "PX_MID": 10.50},
        VAL_DATE,
        SPOT_DATE,
    )
    return src
