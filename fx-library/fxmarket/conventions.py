"""
Market conventions: pair codes, money-market day count and pip size.

Calendars are deliberately absent; every date handled here is supplied by the
caller (spot date, settlement date) and only *counted*, never rolled.
"""

from __future__ import annotations

from datetime import date

# Currencies whose money-market convention is ACT/365; everything else ACT/360.
ACT365_CURRENCIES = frozenset({"GBP", "AUD", "NZD", "CAD", "HKD", "SGD", "ZAR", "ILS"})

_PAIR_SEPARATORS = "/-_. "


def normalize_pair6(pair: str) -> str:
    """
    Normalize a pair code to 6 uppercase letters ("eur/sek" -> "EURSEK").

    Raises ValueError for empty or malformed input.
    """
    if pair is None or not str(pair).strip():
        raise ValueError("pair must not be empty")
    p6 = str(pair).strip().upper()
    for sep in _PAIR_SEPARATORS:
        p6 = p6.replace(sep, "")
    if len(p6) != 6 or not p6.isalpha():
        raise ValueError(f"pair must be 6 letters (e.g. 'EURSEK'), got {pair!r}")
    return p6


def split_pair(pair6: str) -> tuple[str, str]:
    """Return (base, quote) for a normalized pair."""
    p6 = normalize_pair6(pair6)
    return p6[:3], p6[3:]


def require_leg_id(leg_id: str) -> str:
    if leg_id is None or not str(leg_id).strip():
        raise ValueError("leg_id must not be empty")
    return str(leg_id).strip()


def money_market_basis(ccy: str) -> int:
    """Day-count denominator (360 or 365) for a currency's money-market rates."""
    return 365 if (ccy or "").upper() in ACT365_CURRENCIES else 360


def year_fraction(start: date, end: date, basis: int = 360) -> float:
    """ACT/basis year fraction, floored at zero."""
    days = (end - start).days
    return max(0.0, days / float(basis))


def mm_year_fraction(start: date, end: date, ccy: str) -> float:
    """Money-market year fraction in the currency's own convention."""
    return year_fraction(start, end, money_market_basis(ccy))


def pip_size(pair6: str) -> float:
    """0.01 for JPY-quoted pairs, 0.0001 otherwise."""
    return 0.01 if pair6.upper().endswith("JPY") else 0.0001
