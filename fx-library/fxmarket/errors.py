"""Exceptions raised by the engine (beyond plain ValueError for bad arguments)."""

from __future__ import annotations

from typing import Sequence


class MarketDataUnavailable(LookupError):
    """
    Raised when a curve cannot be obtained from the data source.

    Attributes
    ----------
    tickers : tuple
        The tickers that were tried, in order.
    """

    def __init__(self, message: str, tickers: Sequence[str] = ()) -> None:
        self.tickers = tuple(tickers)
        if self.tickers:
            message = f"{message} (tried: {', '.join(self.tickers)})"
        super().__init__(message)
