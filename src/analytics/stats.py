"""Rank statistics and effect sizes for the lag-1 correlation engine."""

from __future__ import annotations

import math
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats as sp_stats


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        return False
    return math.isfinite(float(value))


def percentile(sorted_values: Sequence[float], p: float) -> Optional[float]:
    """Linear-interpolation percentile, *p* in [0, 1].

    index = (n - 1) * p, interpolated between the neighbouring order
    statistics.  Returns None for an empty input.
    """
    vals = np.asarray(sorted_values, dtype=np.float64)
    if vals.size == 0:
        return None
    pp = min(1.0, max(0.0, float(p)))
    return float(np.percentile(vals, pp * 100.0, method="linear"))


def extreme_thresholds(values: Sequence[float], low_p: float = 0.2, high_p: float = 0.8,
                       min_values: int = 10) -> Dict[str, Optional[float]]:
    """Low/high event cut-offs over the finite values, or None when too few."""
    clean = np.sort(np.asarray([v for v in values if is_finite_number(v)], dtype=np.float64))
    if clean.size < min_values:
        return {"low": None, "high": None}
    return {"low": percentile(clean, low_p), "high": percentile(clean, high_p)}


def sample_stdev(values: Sequence[float]) -> Optional[float]:
    vals = np.asarray(values, dtype=np.float64)
    if vals.size < 2:
        return None
    return float(np.std(vals, ddof=1))


def average_ranks(values: Sequence[float]) -> np.ndarray:
    """1-based ranks; ties share the mean of the ranks they span."""
    return sp_stats.rankdata(np.asarray(values, dtype=np.float64), method="average")


def pearson(x: Sequence[float], y: Sequence[float]) -> Optional[float]:
    xs = np.asarray(x, dtype=np.float64)
    ys = np.asarray(y, dtype=np.float64)
    if xs.size != ys.size or xs.size < 3:
        return None
    dx = xs - xs.mean()
    dy = ys - ys.mean()
    den_x = float(np.sum(dx * dx))
    den_y = float(np.sum(dy * dy))
    if den_x <= 0 or den_y <= 0:
        return None
    r = float(np.sum(dx * dy)) / math.sqrt(den_x * den_y)
    return max(-1.0, min(1.0, r))


def spearman(x: Sequence[float], y: Sequence[float]) -> Optional[float]:
    """Spearman's rho: Pearson over average ranks.  None if undefined."""
    if len(x) != len(y) or len(x) < 3:
        return None
    return pearson(average_ranks(x), average_ranks(y))


def event_effect(feature: pd.Series, flags: pd.Series, min_event: int = 3,
                 min_non_event: int = 5) -> Optional[Dict[str, float]]:
    """Compare an input on event days vs. other days.

    *flags* is a nullable boolean series aligned with *feature*; days where
    either side is missing are ignored.  The effect size is the mean
    difference over the sample stdev of both groups together, or the raw
    difference when that stdev is zero.
    """
    values = pd.to_numeric(feature, errors="coerce").astype("float64")
    flag = flags.astype("boolean")
    known = np.isfinite(values.to_numpy()) & flag.notna().to_numpy()
    on = values.to_numpy()[known & flag.fillna(False).to_numpy(dtype=bool)]
    off = values.to_numpy()[known & (~flag).fillna(False).to_numpy(dtype=bool)]
    if on.size < min_event or off.size < min_non_event:
        return None

    mean_on = float(on.mean())
    mean_off = float(off.mean())
    delta = mean_on - mean_off
    sd = sample_stdev(np.concatenate([on, off])) or 0.0
    d = delta / sd if sd > 0 else delta
    return {
        "nEvent": int(on.size),
        "nNonEvent": int(off.size),
        "meanEvent": mean_on,
        "meanNonEvent": mean_off,
        "delta": delta,
        "strength": d,
    }
