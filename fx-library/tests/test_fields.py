"""Tests for merge_feed, MarketField transitions and MarketSnapshot."""

from datetime import timedelta

import pytest

from fxmarket.fields import (
    ForwardPricingMode,
    MarketField,
    MarketSource,
    OverrideMode,
    ViewMode,
    merge_feed,
)
from fxmarket.snapshot import MarketSnapshot
from fxmarket.twoway import TwoWay

from conftest import NOW

CURRENT = TwoWay(1.00, 1.10)
INCOMING = TwoWay(2.00, 2.10)


@pytest.mark.parametrize(
    "override,expected",
    [
        (OverrideMode.NONE, TwoWay(2.00, 2.10)),
        (OverrideMode.BID, TwoWay(1.00, 2.10)),
        (OverrideMode.ASK, TwoWay(1.10, 1.10)),
        (OverrideMode.MID, CURRENT),
        (OverrideMode.BOTH, CURRENT),
    ],
)
def test_merge_feed_arms(override: OverrideMode, expected: TwoWay) -> None:
    """Each override arm keeps its pinned side; a crossing feed side is clamped to it."""
    assert merge_feed(CURRENT, INCOMING, override) == expected


def test_crossing_feed_never_moves_pinned_side() -> None:
    """Bid pin keeps the user bid; Ask pin keeps the user ask, whatever the feed sends."""
    pinned = TwoWay(0.030, 0.032)
    assert merge_feed(pinned, TwoWay(0.010, 0.020), OverrideMode.BID) == TwoWay(0.030, 0.030)
    assert merge_feed(pinned, TwoWay(0.010, 0.031), OverrideMode.BID) == TwoWay(0.030, 0.031)

    spot = TwoWay(11.0, 11.2)
    assert merge_feed(spot, TwoWay(11.5, 11.6), OverrideMode.ASK) == TwoWay(11.2, 11.2)
    assert merge_feed(spot, TwoWay(11.1, 11.6), OverrideMode.ASK) == TwoWay(11.1, 11.2)


def test_locked_modes() -> None:
    """Mid and Both lock the field; Bid and None do not."""
    assert OverrideMode.MID.is_locked and OverrideMode.BOTH.is_locked
    assert not OverrideMode.BID.is_locked
    assert not OverrideMode.NONE.is_locked


def test_forward_mode_default_view_mode() -> None:
    """Only the Mid pricing mode gives new rates a Mid view."""
    assert ForwardPricingMode.MID.default_view_mode is ViewMode.MID
    assert ForwardPricingMode.FULL.default_view_mode is ViewMode.TWO_WAY
    assert ForwardPricingMode.NET.default_view_mode is ViewMode.TWO_WAY


def test_empty_field_is_stale_and_zeroed() -> None:
    """An empty field is zero, stale and unversioned."""
    f = MarketField.empty(NOW)
    assert f.effective == TwoWay(0.0, 0.0)
    assert f.is_stale
    assert f.version == 0
    assert f.override is OverrideMode.NONE
    assert f.view_mode is ViewMode.FOLLOW_FEED


def test_feed_value_preserves_version_and_returns_ownership() -> None:
    """A feed write keeps the version and hands the source back to the feed."""
    user = MarketField(TwoWay(1.0, 1.0), MarketSource.USER, ViewMode.MID, OverrideMode.NONE, NOW, version=3)
    later = NOW + timedelta(seconds=5)
    f = user.with_feed_value(TwoWay(1.1, 1.2), later, is_stale=True)
    assert f.version == 3
    assert f.source is MarketSource.FEED
    assert f.effective == TwoWay(1.1, 1.2)
    assert f.is_stale
    assert f.last_updated_utc == later


def test_feed_value_under_bid_override_keeps_user_source() -> None:
    """Under a Bid pin the field stays user-owned."""
    user = MarketField(TwoWay(1.0, 1.2), MarketSource.USER, ViewMode.TWO_WAY, OverrideMode.BID, NOW, version=1)
    f = user.with_feed_value(TwoWay(0.5, 1.5), NOW, is_stale=False)
    assert f.effective == TwoWay(1.0, 1.5)
    assert f.source is MarketSource.USER


def test_snapshot_leg_lookup_is_case_insensitive() -> None:
    """Leg ids match regardless of case."""
    rd = MarketField(TwoWay.flat(0.03), MarketSource.FEED, ViewMode.MID, OverrideMode.NONE, NOW)
    snap = MarketSnapshot.empty("eur/sek", NOW).with_rd("legA", rd)
    assert snap.pair6 == "EURSEK"
    assert snap.try_get_rd("LEGA") is rd
    assert snap.has_rd("lega")
    assert not snap.has_rf("lega")


def test_snapshot_copy_on_write() -> None:
    """Updates return new snapshots and leave the old ones untouched."""
    rd = MarketField(TwoWay.flat(0.03), MarketSource.FEED, ViewMode.MID, OverrideMode.NONE, NOW)
    rf = MarketField(TwoWay.flat(0.02), MarketSource.FEED, ViewMode.MID, OverrideMode.NONE, NOW)
    base = MarketSnapshot.empty("EURSEK", NOW)
    a = base.with_rd("B", rd)
    b = a.with_rf("A", rf)
    assert base.all_leg_ids() == []
    assert a.all_leg_ids() == ["B"]
    assert b.all_leg_ids() == ["A", "B"]
    assert b.without_rd("b").all_leg_ids() == ["A"]
    with pytest.raises(TypeError):
        b.rd_by_leg["C"] = rd
