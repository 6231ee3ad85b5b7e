"""FX market library: snapshot store, forward/discount curves, cached rate triangulation."""

from fxmarket.cache import CacheEntry, Cached, CurveCache
from fxmarket.config import Settings
from fxmarket.curves import DiscountCurve, ForwardCurve, ForwardNode, Side
from fxmarket.errors import MarketDataUnavailable
from fxmarket.fields import (
    ForwardPricingMode,
    MarketField,
    MarketSource,
    OverrideMode,
    ViewMode,
    merge_feed,
)
from fxmarket.inputs import LegInputs, LegInputsResolver
from fxmarket.interfaces import Curve, MarketDataSource
from fxmarket.notify import ChangeBatcher, MarketChanged, ThreadingScheduler
from fxmarket.routing import TickerRouter
from fxmarket.snapshot import MarketSnapshot
from fxmarket.sources import InMemoryMarketDataSource
from fxmarket.store import MarketStore
from fxmarket.triangulator import RateResult, RateTriangulator
from fxmarket.twoway import TwoWay, quantize_rate

__all__ = [
    "Curve",
    "MarketDataSource",
    "TwoWay",
    "quantize_rate",
    "MarketSource",
    "ViewMode",
    "OverrideMode",
    "ForwardPricingMode",
    "MarketField",
    "merge_feed",
    "MarketSnapshot",
    "MarketChanged",
    "ChangeBatcher",
    "ThreadingScheduler",
    "MarketStore",
    "ForwardNode",
    "ForwardCurve",
    "DiscountCurve",
    "Side",
    "InMemoryMarketDataSource",
    "TickerRouter",
    "CacheEntry",
    "Cached",
    "CurveCache",
    "RateResult",
    "RateTriangulator",
    "LegInputs",
    "LegInputsResolver",
    "Settings",
    "MarketDataUnavailable",
]
