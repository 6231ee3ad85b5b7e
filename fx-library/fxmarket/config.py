"""Engine settings with environment overrides (FXMARKET_* variables)."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    """
    Tunables for the store, cache and triangulator.

    TTLs only classify cached curves as stale; they never evict. With
    `reload_on_stale=False` (default) a stale curve keeps being served and the
    derived rates are flagged stale until a forced refresh.
    """

    reference_ccy: str = "USD"
    reference_ttl_sec: float = 15 * 60.0
    leg_ttl_sec: float = 3 * 60.0
    reload_on_stale: bool = False
    debounce_sec: float = 0.03
    default_pair: str = "EURSEK"
    rate_floor: float = -0.99
    rate_cap: float = 10.0
    ticker_suffix: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings, overriding defaults from FXMARKET_<FIELD> variables."""
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"FXMARKET_{f.name.upper()}")
            if raw is None:
                continue
            default = f.default
            if isinstance(default, bool):
                overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(default, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        return cls(**overrides)
