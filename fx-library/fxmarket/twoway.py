"""
Two-sided (bid/ask) value primitive.

`TwoWay` is the only numeric carrier the store deals in. It is immutable and
always monotone: constructing it with `bid > ask` silently swaps the sides, so
downstream code never has to check the ordering again.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

RATE_DECIMALS = 5
_RATE_QUANTUM = Decimal(1).scaleb(-RATE_DECIMALS)


@dataclass(frozen=True)
class TwoWay:
    """Immutable bid/ask pair with bid <= ask."""

    bid: float
    ask: float

    def __post_init__(self) -> None:
        if self.ask < self.bid:
            bid, ask = self.ask, self.bid
            object.__setattr__(self, "bid", bid)
            object.__setattr__(self, "ask", ask)

    @classmethod
    def flat(cls, value: float) -> "TwoWay":
        """bid == ask == value."""
        return cls(value, value)

    @property
    def mid(self) -> float:
        return 0.5 * (self.bid + self.ask)

    @property
    def is_set(self) -> bool:
        return self.bid != 0.0 or self.ask != 0.0

    def with_bid(self, bid: float) -> "TwoWay":
        return TwoWay(bid, self.ask)

    def with_ask(self, ask: float) -> "TwoWay":
        return TwoWay(self.bid, ask)

    def collapsed(self) -> "TwoWay":
        """Both sides set to the mid."""
        return TwoWay.flat(self.mid)


def quantize_rate(x: float) -> float:
    """
    Round a rate to 5 decimals, half away from zero.

    Non-finite inputs map to 0.0 (rates are never published as NaN/inf).
    """
    if not math.isfinite(x):
        return 0.0
    # Decimal's ROUND_HALF_UP rounds ties away from zero for negatives too.
    return float(Decimal(repr(x)).quantize(_RATE_QUANTUM, rounding=ROUND_HALF_UP))


def quantize_two_way(tw: TwoWay) -> TwoWay:
    return TwoWay(quantize_rate(tw.bid), quantize_rate(tw.ask))
