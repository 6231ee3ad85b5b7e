"""
Market snapshot container.

`MarketSnapshot` is the unit of publication: the store never mutates a
snapshot it has handed out, it builds a new one (`with_spot`, `with_rd`, ...)
and swaps the reference. Field objects are immutable, so unchanged fields are
shared between consecutive snapshots by reference.

Leg ids are case-insensitive; they are stored upper-cased.
"""

from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from fxmarket.conventions import normalize_pair6
from fxmarket.fields import MarketField, ViewMode


def leg_key(leg_id: str) -> str:
    return (leg_id or "").strip().upper()


class MarketSnapshot:
    """
    Spot plus per-leg rd/rf for one currency pair.
    Immutable-style: every with_* / without_* returns a new snapshot.
    """

    __slots__ = ("pair6", "spot", "_rd", "_rf")

    def __init__(
        self,
        pair6: str,
        spot: MarketField,
        rd_by_leg: Mapping[str, MarketField] | None = None,
        rf_by_leg: Mapping[str, MarketField] | None = None,
    ) -> None:
        if spot is None:
            raise ValueError("spot field is required")
        self.pair6 = normalize_pair6(pair6)
        self.spot = spot
        self._rd: dict[str, MarketField] = (
            {leg_key(k): v for k, v in rd_by_leg.items()} if rd_by_leg else {}
        )
        self._rf: dict[str, MarketField] = (
            {leg_key(k): v for k, v in rf_by_leg.items()} if rf_by_leg else {}
        )

    @classmethod
    def empty(
        cls, pair6: str, now: datetime, view_mode: ViewMode = ViewMode.FOLLOW_FEED
    ) -> "MarketSnapshot":
        """Snapshot for a fresh pair: zeroed stale spot, no rates."""
        return cls(pair6, MarketField.empty(now, view_mode))

    @property
    def rd_by_leg(self) -> Mapping[str, MarketField]:
        return MappingProxyType(self._rd)

    @property
    def rf_by_leg(self) -> Mapping[str, MarketField]:
        return MappingProxyType(self._rf)

    def is_pair(self, pair6: str) -> bool:
        return self.pair6 == normalize_pair6(pair6)

    # --- reads ---

    def try_get_rd(self, leg_id: str) -> Optional[MarketField]:
        return self._rd.get(leg_key(leg_id))

    def try_get_rf(self, leg_id: str) -> Optional[MarketField]:
        return self._rf.get(leg_key(leg_id))

    def has_rd(self, leg_id: str) -> bool:
        return leg_key(leg_id) in self._rd

    def has_rf(self, leg_id: str) -> bool:
        return leg_key(leg_id) in self._rf

    def all_leg_ids(self) -> list[str]:
        """Sorted union of legs carrying rd or rf."""
        return sorted(set(self._rd) | set(self._rf))

    # --- copy-on-write updates ---

    def with_spot(self, spot: MarketField) -> "MarketSnapshot":
        return MarketSnapshot(self.pair6, spot, self._rd, self._rf)

    def with_rd(self, leg_id: str, field: MarketField) -> "MarketSnapshot":
        rd = dict(self._rd)
        rd[leg_key(leg_id)] = field
        return MarketSnapshot(self.pair6, self.spot, rd, self._rf)

    def with_rf(self, leg_id: str, field: MarketField) -> "MarketSnapshot":
        rf = dict(self._rf)
        rf[leg_key(leg_id)] = field
        return MarketSnapshot(self.pair6, self.spot, self._rd, rf)

    def without_rd(self, leg_id: str) -> "MarketSnapshot":
        rd = {k: v for k, v in self._rd.items() if k != leg_key(leg_id)}
        return MarketSnapshot(self.pair6, self.spot, rd, self._rf)

    def without_rf(self, leg_id: str) -> "MarketSnapshot":
        rf = {k: v for k, v in self._rf.items() if k != leg_key(leg_id)}
        return MarketSnapshot(self.pair6, self.spot, self._rd, rf)

    def __repr__(self) -> str:
        return (
            f"MarketSnapshot({self.pair6}, spot={self.spot.effective.bid}/"
            f"{self.spot.effective.ask}, legs={self.all_leg_ids()})"
        )
