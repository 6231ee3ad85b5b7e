"""
USD-anchored rate triangulation.

For a pair without direct deposit quotes, the reference currency's discount
curve gives one money-market rate and covered interest parity on the FX
forward legs against the reference currency gives the other(s):

    base = REF   rf = r_ref,  rd from the REF/QUOTE leg
    quote = REF  rd = r_ref,  rf from the BASE/REF leg
    cross        rf from the BASE/REF leg, rd from the REF/QUOTE leg

Solved rates are written to the store as flat (bid = ask) feed values.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from fxmarket.cache import Cached, Clock, CurveCache, utc_now
from fxmarket.conventions import mm_year_fraction, normalize_pair6, require_leg_id, split_pair
from fxmarket.curves import ForwardCurve
from fxmarket.routing import TickerRouter
from fxmarket.store import MarketStore
from fxmarket.twoway import TwoWay

logger = logging.getLogger(__name__)

_MIN_T = 1e-12
_MIN_DF = 1e-12


@dataclass(frozen=True)
class RateResult:
    pair6: str
    leg_id: str
    rd: float
    rf: float
    is_stale: bool
    reference_stale: bool
    leg_tickers: tuple[str, ...] = field(default_factory=tuple)


def clamp_df(x: float) -> float:
    return min(1.0, max(_MIN_DF, x))


def clamp_rate(r: float, floor: float = -0.99, cap: float = 10.0) -> float:
    if not math.isfinite(r):
        return 0.0
    return min(cap, max(floor, r))


def par_rate(df_start: float, df_end: float, t: float) -> float:
    """Simple money-market rate implied by two discount factors over `t` years."""
    df_fwd = clamp_df(df_end / max(_MIN_DF, df_start))
    return (1.0 / df_fwd - 1.0) / max(_MIN_T, t)


def parity_rate(r_ref: float, t: float, spot: float, forward: float, ref_is_base: bool) -> float:
    """
    Solve covered interest parity for the non-reference currency of one leg.

    ref_is_base: the leg is quoted REF/XXX (XXX per unit of REF).
    """
    t = max(_MIN_T, t)
    grown = 1.0 + r_ref * t
    if ref_is_base:
        return (grown * forward / max(spot, _MIN_T) - 1.0) / t
    return (grown * max(spot, _MIN_T) / max(forward, _MIN_T) - 1.0) / t


class RateTriangulator:
    """Derives rd/rf for a pair through the reference currency and publishes them."""

    def __init__(
        self,
        store: MarketStore,
        cache: CurveCache,
        router: Optional[TickerRouter] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = cache.settings
        self._router = router or TickerRouter(suffix=self._settings.ticker_suffix)
        self._clock = clock or utc_now

    def ensure_rates(
        self,
        pair6: str,
        leg_id: str,
        spot_date: date,
        settlement: date,
        force_refresh: bool = False,
    ) -> Optional[RateResult]:
        """
        Compute and publish rd/rf for `leg_id` of `pair6`.

        Returns None (and writes nothing) when a forward leg has an unusable spot
        or forward. Raises ValueError for bad arguments and MarketDataUnavailable
        when a curve cannot be loaded.
        """
        p6 = normalize_pair6(pair6)
        leg = require_leg_id(leg_id)
        base, quote = split_pair(p6)
        ref = self._settings.reference_ccy.upper()
        if base == ref and quote == ref:
            raise ValueError(f"{p6}: both currencies are the reference currency")

        ref_curve = self._cache.reference_curve(force_refresh)
        df_spot = clamp_df(ref_curve.value.df(spot_date))
        df_set = clamp_df(ref_curve.value.df(settlement))
        r_ref = par_rate(df_spot, df_set, mm_year_fraction(spot_date, settlement, ref))

        if base == ref:
            (q_leg,) = self._cache.forward_legs([self._router.candidates(ref, quote)], force_refresh)
            legs = [q_leg]
            rf = r_ref
            rd = self._solve(q_leg, quote, r_ref, spot_date, settlement, p6)
        elif quote == ref:
            (b_leg,) = self._cache.forward_legs([self._router.candidates(base, ref)], force_refresh)
            legs = [b_leg]
            rd = r_ref
            rf = self._solve(b_leg, base, r_ref, spot_date, settlement, p6)
        else:
            b_leg, q_leg = self._cache.forward_legs(
                [self._router.candidates(base, ref), self._router.candidates(ref, quote)],
                force_refresh,
            )
            legs = [b_leg, q_leg]
            rf = self._solve(b_leg, base, r_ref, spot_date, settlement, p6)
            rd = self._solve(q_leg, quote, r_ref, spot_date, settlement, p6)

        if rd is None or rf is None:
            return None

        floor, cap = self._settings.rate_floor, self._settings.rate_cap
        rd = clamp_rate(rd, floor, cap)
        rf = clamp_rate(rf, floor, cap)
        is_stale = ref_curve.is_stale or any(c.is_stale for c in legs)

        now = self._clock()
        self._store.set_rd_from_feed(p6, leg, TwoWay.flat(rd), now, is_stale)
        self._store.set_rf_from_feed(p6, leg, TwoWay.flat(rf), now, is_stale)
        logger.debug("Triangulated %s/%s rd=%.6f rf=%.6f stale=%s", p6, leg, rd, rf, is_stale)
        return RateResult(
            pair6=p6,
            leg_id=leg,
            rd=rd,
            rf=rf,
            is_stale=is_stale,
            reference_stale=ref_curve.is_stale,
            leg_tickers=tuple(c.key for c in legs),
        )

    def _solve(
        self,
        cached: Cached[ForwardCurve],
        ccy: str,
        r_ref: float,
        spot_date: date,
        settlement: date,
        p6: str,
    ) -> Optional[float]:
        """Rate for `ccy` from its leg against the reference currency, or None if the leg is unusable."""
        curve = cached.value
        ref = self._settings.reference_ccy.upper()
        ref_is_base = curve.pair6.startswith(ref)
        required = ref + ccy if ref_is_base else ccy + ref
        s = curve.spot_mid
        if not (math.isfinite(s) and s > 0.0):
            logger.warning("%s: leg %s has unusable spot %r; no rates written", p6, cached.key, s)
            return None
        f = curve.forward_at(settlement, required, s)
        if not (math.isfinite(f) and f > 0.0):
            logger.warning("%s: leg %s has unusable forward %r; no rates written", p6, cached.key, f)
            return None
        t = mm_year_fraction(spot_date, settlement, ccy)
        return parity_rate(r_ref, t, s, f, ref_is_base)
