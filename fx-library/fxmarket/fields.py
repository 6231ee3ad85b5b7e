"""
Market field: a TwoWay value plus the metadata the store merges on.

Fields are immutable; the store swaps in a new field for every change. The
feed/override precedence lives in `merge_feed`, a pure function so the rules
sit in one place and can be tested without a store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from fxmarket.twoway import TwoWay


class MarketSource(Enum):
    FEED = "Feed"
    USER = "User"


class ViewMode(Enum):
    """How a field is shown/edited. Storage is always two-way."""

    FOLLOW_FEED = "FollowFeed"
    MID = "Mid"
    TWO_WAY = "TwoWay"


class OverrideMode(Enum):
    """Which sides the user has pinned against the feed."""

    NONE = "None"
    MID = "Mid"
    BID = "Bid"
    ASK = "Ask"
    BOTH = "Both"

    @property
    def is_locked(self) -> bool:
        return self in (OverrideMode.MID, OverrideMode.BOTH)


class ForwardPricingMode(Enum):
    MID = "Mid"
    FULL = "Full"
    NET = "Net"

    @property
    def default_view_mode(self) -> ViewMode:
        """View mode given to rate fields created while this mode is active."""
        return ViewMode.MID if self is ForwardPricingMode.MID else ViewMode.TWO_WAY


@dataclass(frozen=True)
class MarketField:
    """
    One market input (spot, or rd/rf for a leg).

    - `version` moves only when a user replaces the value.
    - `is_stale` is independent of validity: a stale field is still usable.
    """

    effective: TwoWay
    source: MarketSource
    view_mode: ViewMode
    override: OverrideMode
    last_updated_utc: datetime
    version: int = 0
    is_stale: bool = False

    @classmethod
    def empty(cls, now: datetime, view_mode: ViewMode = ViewMode.FOLLOW_FEED) -> "MarketField":
        """Zeroed, stale, feed-owned placeholder used when a pair is (re)initialised."""
        return cls(
            effective=TwoWay(0.0, 0.0),
            source=MarketSource.FEED,
            view_mode=view_mode,
            override=OverrideMode.NONE,
            last_updated_utc=now,
            version=0,
            is_stale=True,
        )

    def with_feed_value(self, value: TwoWay, now: datetime, is_stale: bool) -> "MarketField":
        """Apply a feed tick through `merge_feed`. Version is preserved."""
        merged = merge_feed(self.effective, value, self.override)
        # A feed write with no override hands ownership back to the feed.
        source = MarketSource.FEED if self.override is OverrideMode.NONE else self.source
        return replace(
            self,
            effective=merged,
            source=source,
            last_updated_utc=now,
            is_stale=is_stale,
        )

    def with_stale(self, is_stale: bool, now: datetime) -> "MarketField":
        return replace(self, is_stale=is_stale, last_updated_utc=now)

    def with_view_mode(self, view_mode: ViewMode, now: datetime) -> "MarketField":
        return replace(self, view_mode=view_mode, last_updated_utc=now)

    def with_override(self, override: OverrideMode, now: datetime) -> "MarketField":
        return replace(self, override=override, last_updated_utc=now)


def merge_feed(current: TwoWay, incoming: TwoWay, override: OverrideMode) -> TwoWay:
    """
    Merge a feed value into the current value under an override mode.

    None -> take incoming; Bid -> keep bid, take ask; Ask -> keep ask, take bid;
    Mid/Both -> keep current.

    The pinned side never moves: a feed side that would cross it is clamped
    to it.
    """
    if override is OverrideMode.NONE:
        return incoming
    if override is OverrideMode.BID:
        return TwoWay(current.bid, max(current.bid, incoming.ask))
    if override is OverrideMode.ASK:
        return TwoWay(min(current.ask, incoming.bid), current.ask)
    if override.is_locked:
        return current
    raise ValueError(f"unknown override mode: {override!r}")


def moved(a: TwoWay, b: TwoWay, eps: float = 1e-10) -> bool:
    """True if either side differs by more than eps."""
    return abs(a.bid - b.bid) > eps or abs(a.ask - b.ask) > eps
