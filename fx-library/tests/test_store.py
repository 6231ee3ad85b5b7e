"""Tests for MarketStore write semantics and batched notification."""

import threading
from datetime import timedelta

import pytest

from fxmarket.fields import ForwardPricingMode, MarketSource, OverrideMode, ViewMode
from fxmarket.store import MarketStore
from fxmarket.twoway import TwoWay

from conftest import NOW, ManualScheduler

LATER = NOW + timedelta(seconds=1)


def test_seeded_with_default_pair(store: MarketStore) -> None:
    """A new store holds an empty, stale snapshot for the default pair."""
    snap = store.current
    assert snap.pair6 == "EURSEK"
    assert snap.spot.is_stale
    assert snap.all_leg_ids() == []
    assert store.forward_pricing_mode is ForwardPricingMode.MID


def test_user_spot_versions_and_override(store: MarketStore) -> None:
    """User spot bumps the version and pins Mid or Both."""
    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), True, ViewMode.MID, NOW)
    spot = store.current.spot
    assert spot.effective.bid == pytest.approx(11.1)
    assert spot.effective.ask == spot.effective.bid
    assert spot.override is OverrideMode.MID
    assert spot.source is MarketSource.USER
    assert spot.version == 1
    assert not spot.is_stale

    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), False, ViewMode.TWO_WAY, LATER)
    spot = store.current.spot
    assert spot.effective == TwoWay(11.0, 11.2)
    assert spot.override is OverrideMode.BOTH
    assert spot.version == 2


def test_user_spot_on_new_pair_drops_rates(store: MarketStore) -> None:
    """User spot for another pair starts a fresh snapshot."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    store.set_spot_from_user("usd/jpy", TwoWay(150.0, 150.1), False, ViewMode.TWO_WAY, NOW)
    snap = store.current
    assert snap.pair6 == "USDJPY"
    assert snap.all_leg_ids() == []
    assert snap.spot.version == 1


def test_user_spot_keeps_rates_on_same_pair(store: MarketStore) -> None:
    """User spot on the same pair keeps existing rates."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), False, ViewMode.TWO_WAY, NOW)
    assert store.current.has_rd("A")


def test_feed_spot_merges_and_keeps_version(store: MarketStore) -> None:
    """Feed spot under a Bid pin moves the ask only, version unchanged."""
    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), False, ViewMode.TWO_WAY, NOW)
    store.set_spot_override("EURSEK", OverrideMode.BID, NOW)
    store.set_spot_from_feed("EURSEK", TwoWay(11.05, 11.25), LATER)
    spot = store.current.spot
    assert spot.effective == TwoWay(11.0, 11.25)
    assert spot.version == 1
    assert spot.last_updated_utc == LATER


@pytest.mark.parametrize("override", [OverrideMode.MID, OverrideMode.BOTH])
def test_locked_spot_only_takes_stale_flag(
    store: MarketStore, scheduler: ManualScheduler, events: list, override: OverrideMode
) -> None:
    """A locked spot takes the stale flag silently and keeps its value."""
    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), override is OverrideMode.MID, ViewMode.MID, NOW)
    store.flush()
    before = store.current.spot.effective
    events.clear()

    store.set_spot_from_feed("EURSEK", TwoWay(12.0, 12.2), LATER, is_stale=True)
    scheduler.advance(1.0)
    spot = store.current.spot
    assert spot.effective == before
    assert spot.is_stale
    assert events == []


def test_feed_spot_on_new_pair_creates_snapshot(store: MarketStore) -> None:
    """Feed spot for another pair resets to that pair."""
    store.set_spot_from_feed("GBPUSD", TwoWay(1.27, 1.2702), NOW)
    snap = store.current
    assert snap.pair6 == "GBPUSD"
    assert snap.spot.effective == TwoWay(1.27, 1.2702)
    assert snap.spot.source is MarketSource.FEED
    assert not snap.spot.is_stale


def test_spot_view_mode(store: MarketStore, events: list) -> None:
    """Same view mode is a no-op; another pair resets first."""
    first = store.current
    store.set_spot_view_mode("EURSEK", ViewMode.FOLLOW_FEED, NOW)
    assert store.current is first

    store.set_spot_view_mode("EURSEK", ViewMode.TWO_WAY, NOW)
    assert store.current.spot.view_mode is ViewMode.TWO_WAY

    store.set_spot_view_mode("EURNOK", ViewMode.MID, NOW)
    snap = store.current
    assert snap.pair6 == "EURNOK"
    assert snap.spot.view_mode is ViewMode.MID
    assert snap.spot.version == 0
    store.flush()
    assert events[-1].counts["spot"] == 2


def test_spot_override_ignored_for_other_pair(store: MarketStore) -> None:
    """Override changes for another pair, or to the same value, do nothing."""
    first = store.current
    store.set_spot_override("USDJPY", OverrideMode.BOTH, NOW)
    store.set_spot_override("EURSEK", OverrideMode.NONE, NOW)
    assert store.current is first


def test_rate_feed_quantizes(store: MarketStore) -> None:
    """Feed rates are rounded to five decimals."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay(0.0312346, 0.0312351), NOW)
    rd = store.current.try_get_rd("A")
    assert rd.effective == TwoWay(0.03123, 0.03124)
    assert rd.source is MarketSource.FEED
    assert rd.version == 0


def test_same_quantized_rate_publishes_once(store: MarketStore, events: list) -> None:
    """Rates equal after rounding do not publish again."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.031231), NOW)
    after_first = store.current
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.031229), LATER)
    assert store.current is after_first
    store.flush()
    assert len(events) == 1
    assert events[0].counts["rd"] == 1


def test_rate_stale_flag_change_publishes(store: MarketStore, events: list) -> None:
    """A stale flag change alone is published."""
    store.set_rf_from_feed("EURSEK", "A", TwoWay.flat(0.02), NOW)
    store.set_rf_from_feed("EURSEK", "A", TwoWay.flat(0.02), LATER, is_stale=True)
    assert store.current.try_get_rf("A").is_stale
    store.flush()
    assert events[0].counts["rf"] == 2


def test_new_rate_view_mode_follows_forward_mode(store: MarketStore) -> None:
    """New rate fields take their view from the forward pricing mode."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    assert store.current.try_get_rd("A").view_mode is ViewMode.MID

    store.set_forward_pricing_mode("EURSEK", ForwardPricingMode.FULL, NOW)
    store.set_rd_from_feed("EURSEK", "B", TwoWay.flat(0.03), NOW)
    assert store.current.try_get_rd("B").view_mode is ViewMode.TWO_WAY
    assert store.current.try_get_rd("A").view_mode is ViewMode.MID


def test_forward_mode_publishes_only_on_change(store: MarketStore, events: list) -> None:
    """Setting the current pricing mode again is a no-op."""
    store.set_forward_pricing_mode("EURSEK", ForwardPricingMode.MID, NOW)
    assert store.flush() is None
    store.set_forward_pricing_mode("EURSEK", ForwardPricingMode.NET, NOW)
    assert store.forward_pricing_mode is ForwardPricingMode.NET
    assert store.flush().counts["forward"] == 1


def test_user_rate_was_mid(store: MarketStore) -> None:
    """was_mid pins Mid at the mid; otherwise Both."""
    store.set_rd_from_user("EURSEK", "A", TwoWay(0.030001, 0.030004), True, ViewMode.MID, NOW)
    rd = store.current.try_get_rd("A")
    assert rd.effective == TwoWay(0.03, 0.03)
    assert rd.override is OverrideMode.MID
    assert rd.version == 1

    store.set_rd_from_user("EURSEK", "A", TwoWay(0.029, 0.031), False, ViewMode.TWO_WAY, LATER)
    rd = store.current.try_get_rd("A")
    assert rd.override is OverrideMode.BOTH
    assert rd.version == 2


def test_locked_rate_ignores_feed_value(store: MarketStore, events: list) -> None:
    """A locked rate ignores feed values without notifying."""
    store.set_rf_from_user("EURSEK", "A", TwoWay.flat(0.02), True, ViewMode.MID, NOW)
    store.flush()
    events.clear()
    store.set_rf_from_feed("EURSEK", "A", TwoWay.flat(0.05), LATER, is_stale=True)
    rf = store.current.try_get_rf("A")
    assert rf.effective == TwoWay.flat(0.02)
    assert rf.is_stale
    assert store.flush() is None
    assert events == []


def test_rate_bid_override_feed_moves_ask_only(store: MarketStore) -> None:
    """Under a Bid pin the feed moves only the ask."""
    store.set_rd_from_user("EURSEK", "A", TwoWay(0.030, 0.032), False, ViewMode.TWO_WAY, NOW)
    store.set_rd_override("EURSEK", "A", OverrideMode.BID, NOW)
    store.set_rd_from_feed("EURSEK", "A", TwoWay(0.040, 0.041), LATER)
    rd = store.current.try_get_rd("A")
    assert rd.effective == TwoWay(0.030, 0.041)
    assert rd.version == 1


def test_crossing_rate_feed_keeps_pinned_bid(store: MarketStore) -> None:
    """A feed ask below the pinned bid is clamped to it; the bid stays the user's."""
    store.set_rd_from_user("EURSEK", "A", TwoWay(0.030, 0.032), False, ViewMode.TWO_WAY, NOW)
    store.set_rd_override("EURSEK", "A", OverrideMode.BID, NOW)
    store.set_rd_from_feed("EURSEK", "A", TwoWay(0.010, 0.020), LATER)
    rd = store.current.try_get_rd("A")
    assert rd.effective == TwoWay(0.030, 0.030)
    assert rd.source is MarketSource.USER


def test_crossing_spot_feed_keeps_pinned_ask(store: MarketStore) -> None:
    """A feed bid above the pinned ask is clamped to it; the ask stays the user's."""
    store.set_spot_from_user("EURSEK", TwoWay(11.0, 11.2), False, ViewMode.TWO_WAY, NOW)
    store.set_spot_override("EURSEK", OverrideMode.ASK, NOW)
    store.set_spot_from_feed("EURSEK", TwoWay(11.5, 11.6), LATER)
    assert store.current.spot.effective == TwoWay(11.2, 11.2)

    store.set_spot_from_feed("EURSEK", TwoWay(11.1, 11.6), LATER)
    assert store.current.spot.effective == TwoWay(11.1, 11.2)


def test_rate_meta_noops(store: MarketStore) -> None:
    """Unchanged or other-pair metadata writes leave the snapshot as is."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    snap = store.current
    store.set_rd_view_mode("EURSEK", "A", ViewMode.MID, LATER)
    store.set_rf_view_mode("EURSEK", "A", ViewMode.TWO_WAY, LATER)
    store.set_rd_override("USDJPY", "A", OverrideMode.BOTH, LATER)
    assert store.current is snap

    store.set_rd_view_mode("EURSEK", "a", ViewMode.TWO_WAY, LATER)
    assert store.current.try_get_rd("A").view_mode is ViewMode.TWO_WAY


def test_invalidate_publishes_per_removed_field(store: MarketStore, events: list) -> None:
    """Invalidating a leg counts one change per removed field."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    store.set_rf_from_feed("EURSEK", "A", TwoWay.flat(0.02), NOW)
    store.set_rd_from_feed("EURSEK", "B", TwoWay.flat(0.03), NOW)
    store.flush()
    events.clear()

    store.invalidate_rates_for_leg("EURSEK", "a", LATER)
    snap = store.current
    assert snap.all_leg_ids() == ["B"]
    assert store.flush().counts["other"] == 2

    store.invalidate_rates_for_leg("EURSEK", "A", LATER)
    assert store.flush() is None


@pytest.mark.parametrize("pair,leg", [("", "A"), ("EURSE", "A"), ("EURSEK", ""), ("EURSEK", "  ")])
def test_invalid_arguments_raise(store: MarketStore, pair: str, leg: str) -> None:
    """Malformed pairs and blank leg ids raise ValueError."""
    with pytest.raises(ValueError):
        store.set_rd_from_feed(pair, leg, TwoWay.flat(0.01), NOW)


def test_debounced_single_event(store: MarketStore, scheduler: ManualScheduler, events: list) -> None:
    """Writes inside the window are delivered as one event."""
    store.set_rd_from_feed("EURSEK", "A", TwoWay.flat(0.03), NOW)
    store.set_rf_from_feed("EURSEK", "A", TwoWay.flat(0.02), NOW)
    store.set_spot_from_feed("EURSEK", TwoWay(11.0, 11.01), NOW)
    assert events == []
    scheduler.advance(0.05)
    assert len(events) == 1
    assert events[0].reason == "Batch:Rd=1;Rf=1;Spot=1;Forward=0;Other=0"
    assert events[0].snapshot is store.current


def test_failing_listener_does_not_block_others(store: MarketStore) -> None:
    """A raising listener is logged; others still receive the event."""
    seen: list = []

    def broken(event) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.set_spot_from_feed("EURSEK", TwoWay(11.0, 11.01), NOW)
    store.flush()
    assert len(seen) == 1

    store.unsubscribe(seen.append)
    store.set_spot_from_feed("EURSEK", TwoWay(11.1, 11.11), NOW)
    store.flush()
    assert len(seen) == 1


def test_close_cancels_pending(store: MarketStore, scheduler: ManualScheduler, events: list) -> None:
    """Closing drops the pending batch."""
    store.set_spot_from_feed("EURSEK", TwoWay(11.0, 11.01), NOW)
    store.close()
    scheduler.advance(1.0)
    assert events == []


def test_concurrent_writers_lose_no_update(store: MarketStore) -> None:
    """Racing rate writes on distinct legs all land in the final snapshot."""
    legs = [f"L{i}" for i in range(16)]
    barrier = threading.Barrier(len(legs))

    def write(leg: str) -> None:
        barrier.wait()
        for i in range(25):
            store.set_rd_from_feed("EURSEK", leg, TwoWay.flat(0.01 + i * 1e-4), NOW)
            store.set_rf_from_feed("EURSEK", leg, TwoWay.flat(0.02 + i * 1e-4), NOW)

    threads = [threading.Thread(target=write, args=(leg,)) for leg in legs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    snap = store.current
    assert snap.all_leg_ids() == sorted(legs)
    for leg in legs:
        assert snap.try_get_rd(leg).effective == TwoWay.flat(0.0124)
        assert snap.try_get_rf(leg).effective == TwoWay.flat(0.0224)
