"""
Process-wide market runtime: store, curve cache and triangulator over sample
vendor data, plus serialization of change events for the Redis stream.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from fxmarket.cache import CurveCache, utc_now
from fxmarket.config import Settings
from fxmarket.curves import DiscountCurve
from fxmarket.fields import MarketField, MarketSource, OverrideMode, ViewMode
from fxmarket.inputs import LegInputs, LegInputsResolver
from fxmarket.notify import MarketChanged, Scheduler
from fxmarket.routing import TickerRouter
from fxmarket.snapshot import MarketSnapshot
from fxmarket.sources import InMemoryMarketDataSource
from fxmarket.store import MarketStore
from fxmarket.triangulator import RateResult, RateTriangulator
from fxmarket.twoway import TwoWay

from app.types import (
    LegInputsView,
    LegRates,
    MarketChangedEvent,
    MarketFieldView,
    RateResultView,
    Snapshot,
    TwoWayQuote,
)

logger = logging.getLogger(__name__)

SAMPLE_TICKERS = {
    "EURUSD": "EURUSD BGN Curncy",
    "USDSEK": "USDSEK BGN Curncy",
    "USDJPY": "USDJPY BGN Curncy",
}

# Spot mid, forward points per tenor (days after spot), spot half-spread.
_SAMPLE_LEGS: dict[str, tuple[float, list[tuple[int, float]], float]] = {
    "EURUSD": (1.0850, [(7, 2.1), (30, 9.0), (91, 27.5), (182, 55.0), (365, 108.0)], 0.00005),
    "USDSEK": (10.5000, [(7, -12.0), (30, -50.0), (91, -150.0), (182, -300.0), (365, -590.0)], 0.0010),
    "USDJPY": (150.00, [(7, -8.5), (30, -36.0), (91, -108.0), (182, -215.0), (365, -420.0)], 0.010),
}

# USD discount factors by days after valuation (roughly 5% simple).
_SAMPLE_USD_DFS = [(2, 0.99972), (32, 0.99555), (93, 0.98725), (184, 0.97506), (367, 0.95151), (732, 0.90900)]
_POINTS_HALF_SPREAD = 0.3

SAMPLE_SPOTS = {
    "EURUSD": 1.0850,
    "USDSEK": 10.5000,
    "USDJPY": 150.00,
    "EURSEK": 11.3925,
}

store: MarketStore
source: InMemoryMarketDataSource
cache: CurveCache
triangulator: RateTriangulator
resolver: LegInputsResolver


def default_spot_date(val_date: date) -> date:
    """Valuation date + 2 calendar days (no holiday calendars here)."""
    return val_date + timedelta(days=2)


def build_sample_source(val_date: date) -> InMemoryMarketDataSource:
    """Reference curve and forward tables for EURUSD, USDSEK and USDJPY."""
    usd = DiscountCurve.from_pairs(
        "USD_SOFR", val_date, [(val_date + timedelta(days=d), df) for d, df in _SAMPLE_USD_DFS]
    )
    src = InMemoryMarketDataSource(usd)
    spot_date = default_spot_date(val_date)
    for pair6, (mid, points, half) in _SAMPLE_LEGS.items():
        rows = [
            {
                "SETTLEMENT_DATE": (spot_date + timedelta(days=days)).isoformat(),
                "TENOR": f"{days}D",
                "MID_POINTS": pts,
                "BID_POINTS": pts - _POINTS_HALF_SPREAD,
                "ASK_POINTS": pts + _POINTS_HALF_SPREAD,
            }
            for days, pts in points
        ]
        src.add_forward_table(
            SAMPLE_TICKERS[pair6],
            rows,
            {"PX_BID": mid - half, "PX_ASK": mid + half, "PX_MID": mid},
            val_date,
            spot_date,
        )
    return src


def reset(
    settings: Optional[Settings] = None,
    val_date: Optional[date] = None,
    scheduler: Optional[Scheduler] = None,
) -> None:
    """(Re)build the runtime. Called at import and by tests."""
    global store, source, cache, triangulator, resolver
    settings = settings or Settings.from_env()
    if "store" in globals():
        store.close()
    store = MarketStore(settings=settings, scheduler=scheduler)
    source = build_sample_source(val_date or date.today())
    cache = CurveCache(source, settings=settings)
    router = TickerRouter({pair6: [ticker] for pair6, ticker in SAMPLE_TICKERS.items()}, settings.ticker_suffix)
    triangulator = RateTriangulator(store, cache, router)
    resolver = LegInputsResolver(store, triangulator)
    logger.info("Market runtime ready: pair=%s tickers=%s", store.current.pair6, source.tickers())


# --- store operations used by the GraphQL layer ---


def now() -> datetime:
    return utc_now()


def leg_inputs(pair6: str, leg_id: str, spot_date: date, settlement: date, use_mid: bool) -> LegInputsView:
    inputs: LegInputs = resolver.resolve(pair6, leg_id, spot_date, settlement, use_mid)
    return LegInputsView(
        spot=_quote(inputs.spot),
        rd=_quote(inputs.rd),
        rf=_quote(inputs.rf),
        is_stale=inputs.is_stale,
    )


def rate_result_view(result: RateResult) -> RateResultView:
    return RateResultView(
        pair6=result.pair6,
        leg_id=result.leg_id,
        rd=result.rd,
        rf=result.rf,
        is_stale=result.is_stale,
        reference_stale=result.reference_stale,
        leg_tickers=list(result.leg_tickers),
    )


# --- serialization ---


def field_to_dict(field: MarketField) -> dict[str, Any]:
    return {
        "bid": field.effective.bid,
        "ask": field.effective.ask,
        "source": field.source.value,
        "view_mode": field.view_mode.value,
        "override": field.override.value,
        "last_updated_utc": field.last_updated_utc.isoformat(),
        "version": field.version,
        "is_stale": field.is_stale,
    }


def snapshot_to_dict(snapshot: MarketSnapshot) -> dict[str, Any]:
    legs = []
    for leg in snapshot.all_leg_ids():
        rd, rf = snapshot.try_get_rd(leg), snapshot.try_get_rf(leg)
        legs.append(
            {
                "leg_id": leg,
                "rd": field_to_dict(rd) if rd is not None else None,
                "rf": field_to_dict(rf) if rf is not None else None,
            }
        )
    return {"pair6": snapshot.pair6, "spot": field_to_dict(snapshot.spot), "legs": legs}


def event_to_payload(event: MarketChanged) -> str:
    """Serialize a MarketChanged to JSON for the Redis stream payload."""
    return json.dumps(
        {"reason": event.reason, "counts": dict(event.counts), "snapshot": snapshot_to_dict(event.snapshot)}
    )


def event_from_payload(payload: str) -> Optional[MarketChangedEvent]:
    """Deserialize a Redis stream payload; None if malformed."""
    try:
        d: dict[str, Any] = json.loads(payload)
        counts = d.get("counts", {})
        return MarketChangedEvent(
            reason=d["reason"],
            rd=counts.get("rd", 0),
            rf=counts.get("rf", 0),
            spot=counts.get("spot", 0),
            forward=counts.get("forward", 0),
            other=counts.get("other", 0),
            snapshot=_snapshot_from_dict(d["snapshot"]),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.warning("Dropping malformed market_changes payload")
        return None


def snapshot_view(snapshot: MarketSnapshot) -> Snapshot:
    return _snapshot_from_dict(snapshot_to_dict(snapshot))


def _snapshot_from_dict(d: dict[str, Any]) -> Snapshot:
    return Snapshot(
        pair6=d["pair6"],
        spot=_field_from_dict(d["spot"]),
        legs=[
            LegRates(
                leg_id=leg["leg_id"],
                rd=_field_from_dict(leg["rd"]) if leg.get("rd") else None,
                rf=_field_from_dict(leg["rf"]) if leg.get("rf") else None,
            )
            for leg in d.get("legs", [])
        ],
    )


def _field_from_dict(d: dict[str, Any]) -> MarketFieldView:
    return MarketFieldView(
        bid=d["bid"],
        ask=d["ask"],
        mid=0.5 * (d["bid"] + d["ask"]),
        source=MarketSource(d["source"]),
        view_mode=ViewMode(d["view_mode"]),
        override=OverrideMode(d["override"]),
        last_updated_utc=datetime.fromisoformat(d["last_updated_utc"]),
        version=d["version"],
        is_stale=d["is_stale"],
    )


def _quote(tw: TwoWay) -> TwoWayQuote:
    return TwoWayQuote(bid=tw.bid, ask=tw.ask, mid=tw.mid)


reset()
