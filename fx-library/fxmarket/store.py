"""
MarketStore: the single mutation surface for market inputs.

The store holds one "current" `MarketSnapshot` and replaces it on every write.
Feed ticks and user edits go through separate operations so the override
rules can decide who wins:

- User writes always land and pin the value (override Mid or Both).
- Feed writes are merged with `merge_feed`; locked fields only take the stale
  flag.
- Rates (rd/rf) are quantized to 5 decimals before they are compared, so a
  feed re-sending the same rate does not produce a notification.

Every write runs read-compute-publish under one lock, so concurrent writers
(feed thread, UI thread, on-demand triangulation) cannot lose each other's
updates. Notifications are batched by `ChangeBatcher`.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from fxmarket.config import Settings
from fxmarket.conventions import normalize_pair6, require_leg_id
from fxmarket.fields import (
    ForwardPricingMode,
    MarketField,
    MarketSource,
    OverrideMode,
    ViewMode,
    merge_feed,
    moved,
)
from fxmarket.notify import ChangeBatcher, MarketChanged, Scheduler, ThreadingScheduler
from fxmarket.snapshot import MarketSnapshot
from fxmarket.twoway import TwoWay, quantize_rate, quantize_two_way

logger = logging.getLogger(__name__)

Listener = Callable[[MarketChanged], None]

_RATE_EPS = 1e-10


class MarketStore:
    """
    Owns the current snapshot and merges feed/user writes into it.

    Usage:
        store = MarketStore()
        store.subscribe(on_changed)
        store.set_spot_from_feed("EURSEK", TwoWay(11.20, 11.21), now)
        store.set_rd_from_user("EURSEK", "A", TwoWay(0.03, 0.03), True, ViewMode.MID, now)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._lock = threading.RLock()
        seeded_at = now or datetime.now(timezone.utc)
        self._current = MarketSnapshot.empty(self._settings.default_pair, seeded_at)
        self._forward_mode = ForwardPricingMode.MID
        self._listeners: list[Listener] = []
        self._batcher = ChangeBatcher(
            scheduler=scheduler or ThreadingScheduler(),
            window=self._settings.debounce_sec,
            snapshot_provider=lambda: self._current,
            emit=self._dispatch,
        )

    @property
    def current(self) -> MarketSnapshot:
        return self._current

    @property
    def forward_pricing_mode(self) -> ForwardPricingMode:
        return self._forward_mode

    # --- listeners ---

    def subscribe(self, callback: Listener) -> None:
        """Register a listener for batched `MarketChanged` events."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def flush(self) -> Optional[MarketChanged]:
        """Deliver any pending batch immediately."""
        return self._batcher.flush()

    def close(self) -> None:
        self._batcher.cancel()

    # --- spot ---

    def set_spot_from_user(
        self,
        pair6: str,
        value: TwoWay,
        was_mid: bool,
        view_mode: ViewMode,
        now: datetime,
    ) -> None:
        """User spot: pins the value (Mid if entered as a mid, else Both)."""
        p6 = normalize_pair6(pair6)
        tw = value.collapsed() if was_mid else value
        with self._lock:
            prev = self._current
            same_pair = prev.pair6 == p6
            field = MarketField(
                effective=tw,
                source=MarketSource.USER,
                view_mode=view_mode,
                override=OverrideMode.MID if was_mid else OverrideMode.BOTH,
                last_updated_utc=now,
                version=(prev.spot.version + 1) if same_pair else 1,
                is_stale=False,
            )
            nxt = prev.with_spot(field) if same_pair else MarketSnapshot(p6, field)
            self._publish(nxt, "spot", "UserSpot", p6)

    def set_spot_from_feed(
        self, pair6: str, value: TwoWay, now: datetime, is_stale: bool = False
    ) -> None:
        """Feed spot: merged under the field's override; rd/rf are kept."""
        p6 = normalize_pair6(pair6)
        with self._lock:
            snap = self._snapshot_for(p6, now)
            cur = snap.spot
            if cur.override.is_locked:
                if cur.is_stale != is_stale:
                    self._current = snap.with_spot(cur.with_stale(is_stale, now))
                return
            self._publish(
                snap.with_spot(cur.with_feed_value(value, now, is_stale)), "spot", "FeedSpot", p6
            )

    def set_spot_view_mode(self, pair6: str, view_mode: ViewMode, now: datetime) -> None:
        p6 = normalize_pair6(pair6)
        with self._lock:
            snap = self._current
            if snap.pair6 != p6:
                # New pair: start from an empty snapshot, rates are not carried across pairs.
                self._publish(MarketSnapshot.empty(p6, now, view_mode), "spot", "SpotViewMode", p6)
                return
            if snap.spot.view_mode == view_mode:
                return
            self._publish(
                snap.with_spot(snap.spot.with_view_mode(view_mode, now)), "spot", "SpotViewMode", p6
            )

    def set_spot_override(self, pair6: str, override: OverrideMode, now: datetime) -> None:
        p6 = normalize_pair6(pair6)
        with self._lock:
            snap = self._current
            if snap.pair6 != p6 or snap.spot.override == override:
                return
            self._publish(
                snap.with_spot(snap.spot.with_override(override, now)), "other", "SpotOverride", p6
            )

    # --- rd / rf ---

    def set_rd_from_feed(
        self, pair6: str, leg_id: str, value: TwoWay, now: datetime, is_stale: bool = False
    ) -> None:
        self._set_rate_from_feed("rd", pair6, leg_id, value, now, is_stale)

    def set_rf_from_feed(
        self, pair6: str, leg_id: str, value: TwoWay, now: datetime, is_stale: bool = False
    ) -> None:
        self._set_rate_from_feed("rf", pair6, leg_id, value, now, is_stale)

    def set_rd_from_user(
        self,
        pair6: str,
        leg_id: str,
        value: TwoWay,
        was_mid: bool,
        view_mode: ViewMode,
        now: datetime,
    ) -> None:
        self._set_rate_from_user("rd", pair6, leg_id, value, was_mid, view_mode, now)

    def set_rf_from_user(
        self,
        pair6: str,
        leg_id: str,
        value: TwoWay,
        was_mid: bool,
        view_mode: ViewMode,
        now: datetime,
    ) -> None:
        self._set_rate_from_user("rf", pair6, leg_id, value, was_mid, view_mode, now)

    def set_rd_view_mode(self, pair6: str, leg_id: str, view_mode: ViewMode, now: datetime) -> None:
        self._update_rate_meta("rd", pair6, leg_id, now, view_mode=view_mode)

    def set_rf_view_mode(self, pair6: str, leg_id: str, view_mode: ViewMode, now: datetime) -> None:
        self._update_rate_meta("rf", pair6, leg_id, now, view_mode=view_mode)

    def set_rd_override(self, pair6: str, leg_id: str, override: OverrideMode, now: datetime) -> None:
        self._update_rate_meta("rd", pair6, leg_id, now, override=override)

    def set_rf_override(self, pair6: str, leg_id: str, override: OverrideMode, now: datetime) -> None:
        self._update_rate_meta("rf", pair6, leg_id, now, override=override)

    def invalidate_rates_for_leg(self, pair6: str, leg_id: str, now: datetime) -> None:
        """Drop rd/rf for a leg so the next pricing has to re-derive them."""
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        with self._lock:
            snap = self._current
            if snap.pair6 != p6:
                logger.debug("invalidate pair=%s leg=%s: not the current pair", p6, leg)
                return
            if snap.has_rd(leg):
                snap = snap.without_rd(leg)
                self._publish(snap, "other", "InvalidateRd:" + leg, p6)
            if snap.has_rf(leg):
                snap = snap.without_rf(leg)
                self._publish(snap, "other", "InvalidateRf:" + leg, p6)

    def set_forward_pricing_mode(self, pair6: str, mode: ForwardPricingMode, now: datetime) -> None:
        """Switch Mid/Full/Net; decides the view mode of rate fields created afterwards."""
        normalize_pair6(pair6)
        with self._lock:
            if self._forward_mode == mode:
                return
            self._forward_mode = mode
            logger.debug("ForwardMode -> %s", mode.value)
            self._batcher.record("forward")

    # --- internals ---

    def _snapshot_for(self, p6: str, now: datetime) -> MarketSnapshot:
        """Current snapshot if it is for p6, else a fresh empty one (not yet installed)."""
        if self._current.pair6 == p6:
            return self._current
        return MarketSnapshot.empty(p6, now)

    def _set_rate_from_feed(
        self,
        kind: str,
        pair6: str,
        leg_id: str,
        value: TwoWay,
        now: datetime,
        is_stale: bool,
    ) -> None:
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        tw = quantize_two_way(value)
        with self._lock:
            snap = self._snapshot_for(p6, now)
            cur = _rate_field(snap, kind, leg)
            reason = f"Feed{kind.capitalize()}:{leg}"
            if cur is None:
                field = MarketField(
                    effective=tw,
                    source=MarketSource.FEED,
                    view_mode=self._forward_mode.default_view_mode,
                    override=OverrideMode.NONE,
                    last_updated_utc=now,
                    version=0,
                    is_stale=is_stale,
                )
                self._publish(_with_rate(snap, kind, leg, field), kind, reason, p6)
                return
            if cur.override.is_locked:
                if cur.is_stale != is_stale:
                    self._current = _with_rate(snap, kind, leg, cur.with_stale(is_stale, now))
                return
            merged = merge_feed(cur.effective, tw, cur.override)
            if not moved(merged, cur.effective, _RATE_EPS) and cur.is_stale == is_stale:
                return
            field = cur.with_feed_value(tw, now, is_stale)
            self._publish(_with_rate(snap, kind, leg, field), kind, reason, p6)

    def _set_rate_from_user(
        self,
        kind: str,
        pair6: str,
        leg_id: str,
        value: TwoWay,
        was_mid: bool,
        view_mode: ViewMode,
        now: datetime,
    ) -> None:
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        tw = quantize_two_way(value)
        if was_mid:
            tw = TwoWay.flat(quantize_rate(tw.mid))
        with self._lock:
            snap = self._snapshot_for(p6, now)
            prev = _rate_field(snap, kind, leg)
            field = MarketField(
                effective=tw,
                source=MarketSource.USER,
                view_mode=view_mode,
                override=OverrideMode.MID if was_mid else OverrideMode.BOTH,
                last_updated_utc=now,
                version=(prev.version + 1) if prev is not None else 1,
                is_stale=False,
            )
            self._publish(
                _with_rate(snap, kind, leg, field), kind, f"User{kind.capitalize()}:{leg}", p6
            )

    def _update_rate_meta(
        self,
        kind: str,
        pair6: str,
        leg_id: str,
        now: datetime,
        view_mode: Optional[ViewMode] = None,
        override: Optional[OverrideMode] = None,
    ) -> None:
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        with self._lock:
            snap = self._current
            if snap.pair6 != p6:
                return
            cur = _rate_field(snap, kind, leg)
            if cur is None:
                return
            field = cur
            if view_mode is not None and view_mode != cur.view_mode:
                field = field.with_view_mode(view_mode, now)
            if override is not None and override != cur.override:
                field = field.with_override(override, now)
            if field is cur:
                return
            self._publish(_with_rate(snap, kind, leg, field), "other", f"{kind.capitalize()}Meta:{leg}", p6)

    def _publish(self, snapshot: MarketSnapshot, category: str, reason: str, p6: str) -> None:
        self._current = snapshot
        logger.debug("store write %s pair=%s", reason, p6)
        self._batcher.record(category)

    def _dispatch(self, event: MarketChanged) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("MarketChanged listener failed")


def _rate_field(snap: MarketSnapshot, kind: str, leg: str) -> Optional[MarketField]:
    return snap.try_get_rd(leg) if kind == "rd" else snap.try_get_rf(leg)


def _with_rate(snap: MarketSnapshot, kind: str, leg: str, field: MarketField) -> MarketSnapshot:
    return snap.with_rd(leg, field) if kind == "rd" else snap.with_rf(leg, field)
