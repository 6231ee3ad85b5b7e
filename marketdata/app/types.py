"""GraphQL types for market snapshots, change events and derived rates."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import strawberry

from fxmarket import fields

# Python enums exposed as GraphQL enums (member names are the GraphQL values).
MarketSource = strawberry.enum(fields.MarketSource)
ViewMode = strawberry.enum(fields.ViewMode)
OverrideMode = strawberry.enum(fields.OverrideMode)
ForwardPricingMode = strawberry.enum(fields.ForwardPricingMode)


# --- Input types ---


@strawberry.input
class TwoWayInput:
    """Bid/ask quote; inverted sides are swapped, not rejected."""

    bid: float
    ask: float


# --- Output types ---


@strawberry.type
class TwoWayQuote:
    bid: float
    ask: float
    mid: float


@strawberry.type
class MarketFieldView:
    """One market input: effective two-way value plus ownership metadata."""

    bid: float
    ask: float
    mid: float
    source: MarketSource
    view_mode: ViewMode
    override: OverrideMode
    last_updated_utc: datetime
    version: int
    is_stale: bool


@strawberry.type
class LegRates:
    leg_id: str
    rd: Optional[MarketFieldView] = None
    rf: Optional[MarketFieldView] = None


@strawberry.type
class Snapshot:
    """Spot plus per-leg rd/rf for the pair currently held by the store."""

    pair6: str
    spot: MarketFieldView
    legs: list[LegRates]


@strawberry.type
class MarketChangedEvent:
    """One batched change notification; counts are per category since the previous event."""

    reason: str
    rd: int
    rf: int
    spot: int
    forward: int
    other: int
    snapshot: Snapshot


@strawberry.type
class LegInputsView:
    spot: TwoWayQuote
    rd: TwoWayQuote
    rf: TwoWayQuote
    is_stale: bool


@strawberry.type
class RateResultView:
    """Rates published by a triangulation run."""

    pair6: str
    leg_id: str
    rd: float
    rf: float
    is_stale: bool
    reference_stale: bool
    leg_tickers: list[str]


@strawberry.type
class ForwardQuote:
    """Outright forward for one ticker and settlement date, interpolated on the cached curve."""

    ticker: str
    pair6: str
    settlement: date
    bid: float
    mid: float
    ask: float
    is_stale: bool
