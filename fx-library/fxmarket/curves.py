"""
Curve primitives: FX forward curves and the reference discount curve.

Conventions kept deliberately narrow:
- Dates are plain `datetime.date`; calendars are the caller's problem.
- Forward curves interpolate **linearly in ACT/360 time measured from the
  spot date** (not from each bracket's own start). Forward points are additive
  in that frame, so there are no kinks at node boundaries.
- Discount curves interpolate **linearly in log-DF** on ACT/360 time from the
  valuation date, with an implicit DF=1 anchor at the valuation date.
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

from fxmarket.conventions import pip_size, year_fraction
from fxmarket.twoway import TwoWay

_MIN_T = 1e-12
_MIN_DF = 1e-12


class Side(Enum):
    BID = "bid"
    MID = "mid"
    ASK = "ask"


@dataclass(frozen=True)
class ForwardNode:
    """One dated forward quote. Zero means "not quoted" for any column."""

    date: date
    tenor: str = ""
    points_bid: float = 0.0
    points_mid: float = 0.0
    points_ask: float = 0.0
    outright_bid: float = 0.0
    outright_mid: float = 0.0
    outright_ask: float = 0.0

    def outright(self, side: Side) -> float:
        return getattr(self, f"outright_{side.value}")

    def points(self, side: Side) -> float:
        return getattr(self, f"points_{side.value}")

    def value(self, side: Side, spot: float, pip: float) -> float:
        """Non-zero outright if quoted, else spot + points * pip."""
        o = self.outright(side)
        if o != 0.0 and math.isfinite(o):
            return o
        return spot + self.points(side) * pip


@dataclass(frozen=True)
class ForwardCurve:
    """
    Forward curve for one ticker: spot quotes plus date-ordered forward nodes.

    - `pair6` is the quoting direction of the ticker (e.g. "USDSEK").
    - `spot_date` is time zero for interpolation; if unknown, valuation date + 2
      calendar days is used.
    """

    ticker: str
    pair6: str
    spot_bid: float
    spot_mid: float
    spot_ask: float
    val_date: date
    nodes: tuple[ForwardNode, ...]
    spot_date: Optional[date] = None
    _dates: tuple[date, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.nodes:
            raise ValueError(f"{self.ticker}: forward curve has no nodes")
        ordered = tuple(sorted(self.nodes, key=lambda n: n.date))
        object.__setattr__(self, "nodes", ordered)
        object.__setattr__(self, "_dates", tuple(n.date for n in ordered))

    @property
    def spot0(self) -> date:
        return self.spot_date if self.spot_date is not None else self.val_date + timedelta(days=2)

    def is_usable(self) -> bool:
        """Spot mid positive and finite, and at least one node."""
        return math.isfinite(self.spot_mid) and self.spot_mid > 0.0 and len(self.nodes) > 0

    def spot(self, side: Side = Side.MID) -> float:
        s = {Side.BID: self.spot_bid, Side.MID: self.spot_mid, Side.ASK: self.spot_ask}[side]
        if side is not Side.MID and not (math.isfinite(s) and s > 0.0):
            s = self.spot_mid
        return s

    def forward_at(
        self,
        settlement: date,
        required_pair6: Optional[str] = None,
        spot_override: Optional[float] = None,
    ) -> float:
        """Mid outright forward for `settlement`."""
        return self.forward_at_side(settlement, Side.MID, required_pair6, spot_override)

    def forward_two_way(
        self,
        settlement: date,
        required_pair6: Optional[str] = None,
        spot_override: Optional[float] = None,
    ) -> TwoWay:
        return TwoWay(
            self.forward_at_side(settlement, Side.BID, required_pair6, spot_override),
            self.forward_at_side(settlement, Side.ASK, required_pair6, spot_override),
        )

    def forward_at_side(
        self,
        settlement: date,
        side: Side,
        required_pair6: Optional[str] = None,
        spot_override: Optional[float] = None,
    ) -> float:
        """
        Outright forward for one side.

        Before the first node: linear from (spot0, spot) to the first node.
        On a node date: that node exactly.
        After the last node: flat at the last node. Between nodes: linear in
        ACT/360 time from spot0, weight clamped to [0, 1].
        """
        pip = pip_size(required_pair6 or self.pair6)
        s = self._spot_used(side, spot_override)
        spot0 = self.spot0

        def t(d: date) -> float:
            return year_fraction(spot0, d, 360)

        first, last = self.nodes[0], self.nodes[-1]
        if settlement < first.date:
            t1 = max(_MIN_T, t(first.date))
            w = min(1.0, t(settlement) / t1)
            return s + w * (first.value(side, s, pip) - s)

        if settlement >= last.date:
            return last.value(side, s, pip)

        hi = bisect.bisect_left(self._dates, settlement)
        if self._dates[hi] == settlement:
            return self.nodes[hi].value(side, s, pip)
        lo = hi - 1
        t_lo, t_hi, t_x = t(self._dates[lo]), t(self._dates[hi]), t(settlement)
        w = (t_x - t_lo) / (t_hi - t_lo) if t_hi > t_lo else 0.0
        w = max(0.0, min(1.0, w))
        v_lo = self.nodes[lo].value(side, s, pip)
        v_hi = self.nodes[hi].value(side, s, pip)
        return v_lo + w * (v_hi - v_lo)

    def _spot_used(self, side: Side, spot_override: Optional[float]) -> float:
        s = spot_override if spot_override is not None else self.spot(side)
        if not (math.isfinite(s) and s > 0.0):
            raise ValueError(f"{self.ticker}: spot not available (got {s!r})")
        return s

    # --- construction from tabular quotes ---

    @classmethod
    def from_rows(
        cls,
        ticker: str,
        rows: Iterable[Mapping[str, Any]],
        spot_fields: Mapping[str, Any],
        val_date: date,
        spot_date: Optional[date] = None,
        tenor_to_date: Optional[Callable[[str], date]] = None,
    ) -> "ForwardCurve":
        """
        Build a curve from rows of a forward table plus the spot fields of the
        same request (PX_BID / PX_ASK / PX_MID / PX_LAST).

        Raises ValueError if there are no rows, or a row has no date and no
        `tenor_to_date` resolver was given.
        """
        if not ticker or not ticker.strip():
            raise ValueError("ticker must not be empty")
        ticker = ticker.strip()
        pair6 = pair6_from_ticker(ticker)

        nodes = []
        for raw in rows:
            row = _normalize_columns(raw)
            tenor = str(row.get("TENOR") or "").strip()
            d = _as_date(row.get("DATE"))
            if d is None:
                if tenor_to_date is None:
                    raise ValueError(f"{ticker}: row without DATE and no tenor resolver provided")
                d = tenor_to_date(tenor)
            nodes.append(
                ForwardNode(
                    date=d,
                    tenor=tenor,
                    points_mid=_first_numeric(row, "MID POINTS", "POINTS MID", "POINTS", "FWD POINTS", "FWD PTS"),
                    points_bid=_first_numeric(row, "BID POINTS", "POINTS BID"),
                    points_ask=_first_numeric(row, "ASK POINTS", "POINTS ASK"),
                    outright_mid=_first_numeric(row, "OUTRIGHT MID", "MID OUTRIGHT", "FWD OUTRIGHT", "OUTRIGHT", "PX MID", "MID"),
                    outright_bid=_first_numeric(row, "BID OUTRIGHT", "OUTRIGHT BID", "BID PX", "BID"),
                    outright_ask=_first_numeric(row, "ASK OUTRIGHT", "OUTRIGHT ASK", "ASK PX", "ASK"),
                )
            )
        if not nodes:
            raise ValueError(f"{ticker}: forward table not available")

        spot = _normalize_columns(spot_fields)
        bid = _to_float(spot.get("PX BID"))
        ask = _to_float(spot.get("PX ASK"))
        mid = _to_float(spot.get("PX MID"))
        if math.isnan(mid):
            mid = _to_float(spot.get("PX LAST"))
        if math.isnan(mid) and math.isfinite(bid) and math.isfinite(ask):
            mid = 0.5 * (bid + ask)
        return cls(
            ticker=ticker,
            pair6=pair6,
            spot_bid=0.0 if math.isnan(bid) else bid,
            spot_mid=0.0 if math.isnan(mid) else mid,
            spot_ask=0.0 if math.isnan(ask) else ask,
            val_date=val_date,
            nodes=tuple(nodes),
            spot_date=spot_date,
        )


@dataclass(frozen=True)
class DiscountCurve:
    """
    Discount curve from dated discount factors.

    - `pillars[i]` are strictly increasing dates after `val_date`.
    - DF is 1 on/before `val_date`, log-linear between the anchor and the pillars,
      flat beyond the last pillar.
    """

    name: str
    val_date: date
    pillars: tuple[date, ...]
    dfs: tuple[float, ...]
    _times: tuple[float, ...] = field(init=False, repr=False, compare=False)
    _log_dfs: tuple[float, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._validate()
        times = [0.0] + [year_fraction(self.val_date, d, 360) for d in self.pillars]
        logs = [0.0] + [math.log(max(_MIN_DF, df)) for df in self.dfs]
        object.__setattr__(self, "_times", tuple(times))
        object.__setattr__(self, "_log_dfs", tuple(logs))

    def _validate(self) -> None:
        if len(self.pillars) != len(self.dfs):
            raise ValueError("pillars and dfs must have the same length")
        if not self.pillars:
            raise ValueError(f"{self.name}: discount curve has no pillars")
        for i in range(1, len(self.pillars)):
            if self.pillars[i] <= self.pillars[i - 1]:
                raise ValueError("pillars must be strictly increasing")
        if self.pillars[0] <= self.val_date:
            raise ValueError("pillars must be after val_date")
        if any(not (math.isfinite(df) and df > 0.0) for df in self.dfs):
            raise ValueError("discount factors must be positive and finite")

    @classmethod
    def from_pairs(
        cls, name: str, val_date: date, pairs: Iterable[tuple[date, float]]
    ) -> "DiscountCurve":
        """Sort, de-duplicate by date (last wins) and drop unusable points."""
        by_date: dict[date, float] = {}
        for d, df in pairs:
            d = _as_date(d)
            if d is None or d <= val_date or not (math.isfinite(df) and df > 0.0):
                continue
            by_date[d] = df
        ordered = sorted(by_date.items())
        return cls(
            name=name,
            val_date=val_date,
            pillars=tuple(d for d, _ in ordered),
            dfs=tuple(df for _, df in ordered),
        )

    def df(self, d: date) -> float:
        t = year_fraction(self.val_date, d, 360)
        if t <= 0.0:
            return 1.0
        times, logs = self._times, self._log_dfs
        if t >= times[-1]:
            return math.exp(logs[-1])
        i = bisect.bisect_right(times, t) - 1
        t0, t1 = times[i], times[i + 1]
        w = (t - t0) / (t1 - t0)
        return math.exp(logs[i] + w * (logs[i + 1] - logs[i]))


# --- helpers ---


def pair6_from_ticker(ticker: str) -> str:
    """First six letters of the ticker's first word ("USDSEK BGN Curncy" -> "USDSEK")."""
    first = (ticker or "").strip().upper().split(" ")[0]
    letters = "".join(ch for ch in first if ch.isalpha())
    if len(letters) < 6:
        raise ValueError(f"cannot derive a pair from ticker {ticker!r}")
    return letters[:6]


_COLUMN_ALIASES = {"SETTLEMENT DATE": "DATE", "SETTLE DATE": "DATE", "VALUE DATE": "DATE"}


def _normalize_columns(row: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in row.items():
        key = " ".join(str(k).replace("_", " ").upper().split())
        out[_COLUMN_ALIASES.get(key, key)] = v
    return out


def _to_float(v: Any) -> float:
    if v is None or isinstance(v, bool):
        return math.nan
    try:
        return float(v)
    except (TypeError, ValueError):
        return math.nan


def _first_numeric(row: Mapping[str, Any], *names: str) -> float:
    for name in names:
        if name in row:
            x = _to_float(row[name])
            if math.isfinite(x):
                return x
    return 0.0


def _as_date(v: Any) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    return date.fromisoformat(str(v).strip()[:10])
