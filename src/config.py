"""Engine tunables loaded from .env (every threshold has a default)."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

ENV_PREFIX = "NUTRI_ENGINE_"


@dataclass(frozen=True)
class EngineConfig:
    # Roundup
    trust_coverage_min: float = 0.60
    coverage_cap: float = 3.0
    low_pct: float = 0.80
    high_pct: float = 1.20
    macro_min_energy_kcal: float = 500.0
    sugar_energy_ratio_high: float = 0.35
    protein_energy_ratio_low: float = 0.12
    fat_energy_ratio_high: float = 0.55

    # Correlation engine
    min_pairs: int = 10
    min_outcome_values: int = 10
    low_event_percentile: float = 0.2
    high_event_percentile: float = 0.8
    min_event_days: int = 3
    min_non_event_days: int = 5
    min_continuous_pairs: int = 10
    candidate_min_abs_rho: float = 0.15

    # Promotion
    strong_min_abs_rho: float = 0.35
    strong_min_abs_effect: float = 0.8
    strong_min_n: int = 8
    promote_min_seen: int = 5
    promote_min_streak: int = 2

    # Targets / logical day
    dri_profile_key: str = "dri_v1"
    logical_day_cutoff_hour: int = 3

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """Build a config, overriding defaults with NUTRI_ENGINE_<FIELD> variables.

        Unparseable values are ignored and the default is kept.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or not str(raw).strip():
                continue
            try:
                if f.type in ("int", int):
                    overrides[f.name] = int(raw)
                elif f.type in ("float", float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = str(raw).strip()
            except ValueError:
                continue
        return cls(**overrides)


DEFAULT_CONFIG = EngineConfig.from_env()
