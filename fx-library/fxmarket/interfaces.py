"""
Protocol-based interfaces for the engine's collaborators.

Using typing.Protocol enables structural subtyping: a market-data adapter only
needs the three load methods to be plugged into the curve cache, and anything
with `df()` can serve as the reference curve.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from fxmarket.curves import ForwardCurve


@runtime_checkable
class Curve(Protocol):
    """Protocol for discount curves used as the reference curve."""

    name: str

    def df(self, d: date) -> float:
        """Return the discount factor to date d (1.0 on/before the valuation date)."""
        ...


@runtime_checkable
class MarketDataSource(Protocol):
    """Protocol for the external source of curves.

    Implementations raise MarketDataUnavailable (or ValueError from curve
    construction) when a curve cannot be produced.
    """

    def load_reference_curve(self) -> Curve:
        """Return the reference currency's discount curve."""
        ...

    def load_forward_leg(self, ticker: str) -> ForwardCurve:
        """Return the forward curve for one ticker."""
        ...

    def load_forward_legs(self, tickers: Sequence[str]) -> dict[str, ForwardCurve]:
        """Batched load. Only usable curves are returned; missing tickers are omitted."""
        ...
