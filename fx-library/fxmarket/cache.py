"""
Two-tier TTL cache for the reference discount curve and forward legs.

TTLs classify entries as stale; they never evict. By default a stale entry is
still served (and reported stale) until a caller forces a refresh, so a slow or
flaky vendor does not stall pricing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generic, Optional, Sequence, TypeVar

from fxmarket.config import Settings
from fxmarket.curves import ForwardCurve
from fxmarket.errors import MarketDataUnavailable
from fxmarket.interfaces import Curve, MarketDataSource
from fxmarket.sources import normalize_ticker

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    loaded_at: datetime
    key: str

    def age_seconds(self, now: datetime) -> float:
        return (now - self.loaded_at).total_seconds()


@dataclass(frozen=True)
class Cached(Generic[T]):
    """A curve handed out by the cache, with its staleness at the time of the lookup."""

    value: T
    key: str
    is_stale: bool


class CurveCache:
    """
    Process-wide curve cache shared by triangulators.

    A single RLock covers check-and-use as well as fill-on-miss, so two
    concurrent callers never load the same curve twice.
    """

    def __init__(
        self,
        source: MarketDataSource,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._source = source
        self._clock = clock or utc_now
        self._settings = settings or Settings()
        self._lock = threading.RLock()
        self._reference: Optional[CacheEntry[Curve]] = None
        self._legs: dict[str, CacheEntry[ForwardCurve]] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    def clear(self) -> None:
        with self._lock:
            self._reference = None
            self._legs.clear()

    # --- reference tier ---

    def reference_curve(self, force_refresh: bool = False) -> Cached[Curve]:
        with self._lock:
            now = self._clock()
            entry = self._reference
            ttl = self._settings.reference_ttl_sec
            if entry is not None and not force_refresh and not self._must_reload(entry, ttl, now):
                return Cached(entry.value, entry.key, entry.age_seconds(now) > ttl)
            curve = self._source.load_reference_curve()
            entry = CacheEntry(curve, self._clock(), curve.name)
            self._reference = entry
            logger.info("Loaded reference curve %s", curve.name)
            return Cached(curve, entry.key, False)

    # --- forward-leg tier ---

    def forward_leg(self, candidates: Sequence[str], force_refresh: bool = False) -> Cached[ForwardCurve]:
        """
        First usable hit among `candidates` (in order), loading on a miss.

        Raises MarketDataUnavailable when no candidate can be loaded.
        """
        keys = _keys(candidates)
        with self._lock:
            if not force_refresh:
                hit = self._lookup(keys, self._clock())
                if hit is not None:
                    return hit
            return self._load_one(keys)

    def forward_legs(
        self, groups: Sequence[Sequence[str]], force_refresh: bool = False
    ) -> list[Cached[ForwardCurve]]:
        """
        Resolve several candidate groups; all groups that need loading are
        fetched with one batched source call.
        """
        key_groups = [_keys(g) for g in groups]
        with self._lock:
            now = self._clock()
            results: list[Optional[Cached[ForwardCurve]]] = []
            missing: list[int] = []
            for i, keys in enumerate(key_groups):
                hit = None if force_refresh else self._lookup(keys, now)
                results.append(hit)
                if hit is None:
                    missing.append(i)

            if len(missing) > 1:
                wanted: list[str] = []
                for i in missing:
                    wanted.extend(k for k in key_groups[i] if k not in wanted)
                loaded = {normalize_ticker(k): v for k, v in self._source.load_forward_legs(wanted).items()}
                loaded_at = self._clock()
                logger.info("Batched forward load: requested=%s loaded=%s", wanted, sorted(loaded))
                for i in missing:
                    for key in key_groups[i]:
                        curve = loaded.get(key)
                        if curve is not None:
                            self._legs[key] = CacheEntry(curve, loaded_at, key)
                            results[i] = Cached(curve, key, False)
                            break

            for i in missing:
                if results[i] is None:
                    results[i] = self._load_one(key_groups[i])
            return [r for r in results if r is not None]

    def _lookup(self, keys: list[str], now: datetime) -> Optional[Cached[ForwardCurve]]:
        ttl = self._settings.leg_ttl_sec
        for key in keys:
            entry = self._legs.get(key)
            if entry is None:
                continue
            if self._must_reload(entry, ttl, now):
                return None
            return Cached(entry.value, key, entry.age_seconds(now) > ttl)
        return None

    def _load_one(self, keys: list[str]) -> Cached[ForwardCurve]:
        for key in keys:
            try:
                curve = self._source.load_forward_leg(key)
            except (MarketDataUnavailable, ValueError) as exc:
                logger.warning("Forward leg %s failed to load: %s", key, exc)
                continue
            self._legs[key] = CacheEntry(curve, self._clock(), key)
            logger.info("Loaded forward leg %s", key)
            return Cached(curve, key, False)
        raise MarketDataUnavailable("no forward curve could be loaded", keys)

    def _must_reload(self, entry: CacheEntry, ttl: float, now: datetime) -> bool:
        return self._settings.reload_on_stale and entry.age_seconds(now) > ttl


def _keys(candidates: Sequence[str]) -> list[str]:
    keys = [normalize_ticker(c) for c in candidates if c and c.strip()]
    if not keys:
        raise ValueError("at least one candidate ticker is required")
    return keys
