"""Read spot/rd/rf for one leg from the store, triangulating missing rates once."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Optional

from fxmarket.conventions import normalize_pair6, require_leg_id
from fxmarket.snapshot import MarketSnapshot
from fxmarket.twoway import TwoWay

if TYPE_CHECKING:
    from fxmarket.store import MarketStore
    from fxmarket.triangulator import RateTriangulator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegInputs:
    spot: TwoWay
    rd: TwoWay
    rf: TwoWay
    is_stale: bool


class LegInputsResolver:
    def __init__(self, store: "MarketStore", triangulator: Optional["RateTriangulator"] = None) -> None:
        self._store = store
        self._triangulator = triangulator

    def resolve(
        self,
        pair6: str,
        leg_id: str,
        spot_date: date,
        settlement: date,
        use_mid: bool = False,
    ) -> LegInputs:
        """
        Inputs for pricing one leg.

        Raises LookupError if the store holds a different pair, or if rd/rf are
        still missing after one triangulation attempt.
        """
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        snap = self._snapshot(p6)

        if not (snap.has_rd(leg) and snap.has_rf(leg)) and self._triangulator is not None:
            logger.debug("Rates missing for %s/%s; triangulating", p6, leg)
            self._triangulator.ensure_rates(p6, leg, spot_date, settlement)
            snap = self._snapshot(p6)

        rd, rf = snap.try_get_rd(leg), snap.try_get_rf(leg)
        if rd is None or rf is None:
            raise LookupError(f"{p6}: rd/rf not available for leg {leg}")

        spot, rd_tw, rf_tw = snap.spot.effective, rd.effective, rf.effective
        if use_mid:
            spot, rd_tw, rf_tw = spot.collapsed(), rd_tw.collapsed(), rf_tw.collapsed()
        return LegInputs(
            spot=spot,
            rd=rd_tw,
            rf=rf_tw,
            is_stale=snap.spot.is_stale or rd.is_stale or rf.is_stale,
        )

    def _snapshot(self, p6: str) -> MarketSnapshot:
        snap = self._store.current
        if not snap.is_pair(p6):
            raise LookupError(f"store holds {snap.pair6}, not {p6}")
        return snap
