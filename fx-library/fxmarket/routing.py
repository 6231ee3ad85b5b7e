"""Map a currency direction to the forward tickers that may quote it."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from fxmarket.conventions import normalize_pair6


class TickerRouter:
    """
    Explicit routes keyed by direction ("EURUSD"); lookups also try the reverse
    direction. Unrouted directions fall back to both orderings of the pair.
    """

    def __init__(
        self,
        routes: Optional[Mapping[str, Iterable[str]]] = None,
        suffix: str = "",
    ) -> None:
        self._suffix = suffix
        self._routes: dict[str, list[str]] = {}
        for key, tickers in (routes or {}).items():
            self.add_route(key, tickers)

    def add_route(self, direction: str, tickers: Iterable[str]) -> None:
        cleaned = [t.strip() for t in tickers if t and t.strip()]
        if not cleaned:
            raise ValueError(f"route {direction!r} has no tickers")
        self._routes[normalize_pair6(direction)] = cleaned

    def candidates(self, base: str, quote: str) -> list[str]:
        a, b = base.strip().upper(), quote.strip().upper()
        routed = self._routes.get(a + b) or self._routes.get(b + a)
        if routed:
            return list(routed)
        return [a + b + self._suffix, b + a + self._suffix]
