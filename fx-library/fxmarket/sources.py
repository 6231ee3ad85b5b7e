"""In-memory market-data source serving registered tabular quotes."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from fxmarket.curves import DiscountCurve, ForwardCurve
from fxmarket.errors import MarketDataUnavailable

logger = logging.getLogger(__name__)

REFERENCE_KEY = "__reference__"


@dataclass(frozen=True)
class ForwardTable:
    """Raw quotes for one forward ticker, as a data vendor would return them."""

    rows: tuple[Mapping[str, Any], ...]
    spot_fields: Mapping[str, Any]
    val_date: date
    spot_date: Optional[date] = None


def normalize_ticker(ticker: str) -> str:
    return " ".join((ticker or "").upper().split())


class InMemoryMarketDataSource:
    """
    MarketDataSource backed by dictionaries.

    Curves are built on every load, the way a vendor adapter would parse each
    response. `load_counts` records how often each ticker (and the reference
    curve, under REFERENCE_KEY) was requested; `batch_calls` counts batched loads.
    """

    def __init__(self, reference: Optional[DiscountCurve] = None) -> None:
        self._reference = reference
        self._tables: dict[str, ForwardTable] = {}
        self.load_counts: Counter[str] = Counter()
        self.batch_calls = 0

    def set_reference_curve(self, curve: DiscountCurve) -> None:
        self._reference = curve

    def add_forward_table(
        self,
        ticker: str,
        rows: Sequence[Mapping[str, Any]],
        spot_fields: Mapping[str, Any],
        val_date: date,
        spot_date: Optional[date] = None,
    ) -> None:
        self._tables[normalize_ticker(ticker)] = ForwardTable(
            rows=tuple(rows), spot_fields=dict(spot_fields), val_date=val_date, spot_date=spot_date
        )

    def tickers(self) -> list[str]:
        return sorted(self._tables)

    def load_reference_curve(self) -> DiscountCurve:
        self.load_counts[REFERENCE_KEY] += 1
        if self._reference is None:
            raise MarketDataUnavailable("reference curve not available")
        return self._reference

    def load_forward_leg(self, ticker: str) -> ForwardCurve:
        key = normalize_ticker(ticker)
        self.load_counts[key] += 1
        table = self._tables.get(key)
        if table is None:
            raise MarketDataUnavailable("forward table not available", [key])
        return ForwardCurve.from_rows(
            key, table.rows, table.spot_fields, table.val_date, spot_date=table.spot_date
        )

    def load_forward_legs(self, tickers: Sequence[str]) -> dict[str, ForwardCurve]:
        self.batch_calls += 1
        out: dict[str, ForwardCurve] = {}
        for ticker in tickers:
            key = normalize_ticker(ticker)
            try:
                curve = self.load_forward_leg(key)
            except (MarketDataUnavailable, ValueError) as exc:
                logger.debug("Batched load skipped %s: %s", key, exc)
                continue
            if curve.is_usable():
                out[key] = curve
        return out
