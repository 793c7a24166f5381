"""
Lag-1 Correlation Engine
========================
Scores every (input feature, next-day outcome) combination over a window
of aligned lag pairs and emits ranked correlation candidates.

Architecture (4 steps):
  Step 0 — Frames:  lag pairs → input frame X and outcome frame Y, one row
           per pair, NaN where a day did not log the key.
  Step 1 — Support filter:  an input is eligible only with a finite value
           on at least ``min_support_days`` pairs.
  Step 2 — Extreme events:  per outcome with >= 10 finite values, the
           20th/80th percentiles flag low-event (y <= p20) and high-event
           (y >= p80) days.
  Step 3 — Scoring:
           event_low / event_high  effect size d of the input on event vs.
                                   other days (>= 3 event, >= 5 other)
           continuous_spearman     rank correlation over jointly finite
                                   pairs (>= 10), kept when |rho| >= 0.15
  Ranker — candidates grouped by (outputKey, mode), sorted by |strength|,
           each group truncated to max(10, top_k).

No strength threshold is applied to event candidates here; what counts as
"strong" is decided at promotion.  Fewer than 10 pairs is not an error:
the result carries status ``insufficient_data`` and no candidates.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from analytics.lag_pairs import LagPair, pairs_to_frames
from analytics.stats import event_effect, extreme_thresholds, spearman
from config import DEFAULT_CONFIG, EngineConfig
from constants import MODE_CONTINUOUS, MODE_EVENT_HIGH, MODE_EVENT_LOW

log = logging.getLogger("correlation_engine")


# ═══════════════════════════════════════════════════════════════
#  CONSTANTS
# ═══════════════════════════════════════════════════════════════

DEFAULT_MIN_SUPPORT_DAYS = 4
DEFAULT_TOP_K = 150
MIN_TOP_K = 10

STATUS_OK = "ok"
STATUS_INSUFFICIENT = "insufficient_data"
NOT_ENOUGH_DAYS_MSG = "Not enough days yet"


@dataclass
class EngineResult:
    status: str
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    date_key: Optional[str] = None
    n_pairs: int = 0
    message: Optional[str] = None


# ─── Ranker ───────────────────────────────────────────────────

def cap_by_group(candidates: Sequence[Dict[str, Any]], top_k: Any = DEFAULT_TOP_K) -> List[Dict[str, Any]]:
    """Keep the top-k by |strength| within each (outputKey, mode) group."""
    try:
        k = max(MIN_TOP_K, int(top_k or DEFAULT_TOP_K))
    except (TypeError, ValueError):
        k = DEFAULT_TOP_K

    groups: Dict[tuple, List[Dict[str, Any]]] = defaultdict(list)
    for c in candidates:
        groups[(c.get("outputKey"), c.get("mode"))].append(c)

    out: List[Dict[str, Any]] = []
    for group in groups.values():
        group.sort(key=lambda c: abs(c.get("strength") or 0.0), reverse=True)
        out.extend(group[:k])
    return out


class CorrelationEngine:
    """
    Pure scoring over lag pairs.  Loading records and storing packs live
    in the analysis pipeline; this class never touches the database.
    """

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG):
        self.config = config

    # ─── MAIN ENTRY ───────────────────────────────────────────

    def compute_candidates(
        self,
        pairs: Sequence[LagPair],
        lag_days: int = 1,
        min_support_days: int = DEFAULT_MIN_SUPPORT_DAYS,
        top_k: int = DEFAULT_TOP_K,
    ) -> EngineResult:
        n_pairs = len(pairs)
        if n_pairs < self.config.min_pairs:
            log.info("   Only %d lag pairs (need >= %d); skipping correlations",
                     n_pairs, self.config.min_pairs)
            return EngineResult(
                status=STATUS_INSUFFICIENT,
                n_pairs=n_pairs,
                message=NOT_ENOUGH_DAYS_MSG,
            )

        X, Y = pairs_to_frames(pairs)
        eligible = self._step1_support(X, min_support_days)
        log.info("   %d pairs, %d/%d inputs pass support >= %d",
                 n_pairs, len(eligible), X.shape[1], min_support_days)

        raw: List[Dict[str, Any]] = []
        for out_key in Y.columns:
            y = Y[out_key]
            events = self._step2_events(y)
            if events is None:
                continue
            for in_key in eligible:
                raw.extend(self._step3_score(X[in_key], y, in_key, out_key, lag_days, events))

        ranked = cap_by_group(raw, top_k)
        log.info("   %d raw candidates → %d after per-group cap", len(raw), len(ranked))
        return EngineResult(
            status=STATUS_OK,
            candidates=ranked,
            date_key=pairs[-1].date_key_y,
            n_pairs=n_pairs,
        )

    # ─── STEP 1: Support filter ───────────────────────────────

    @staticmethod
    def _step1_support(X: pd.DataFrame, min_support_days: int) -> List[str]:
        counts = X.notna().sum(axis=0)
        return [str(k) for k in counts.index if counts[k] >= min_support_days]

    # ─── STEP 2: Extreme-event flags ──────────────────────────

    def _step2_events(self, y: pd.Series) -> Optional[Dict[str, Any]]:
        cfg = self.config
        finite = y.dropna()
        if len(finite) < cfg.min_outcome_values:
            return None
        th = extreme_thresholds(
            finite.tolist(),
            low_p=cfg.low_event_percentile,
            high_p=cfg.high_event_percentile,
            min_values=cfg.min_outcome_values,
        )
        known = y.notna()
        events: Dict[str, Any] = {}
        if th["low"] is not None:
            events[MODE_EVENT_LOW] = (th["low"], (y <= th["low"]).astype("boolean").where(known))
        if th["high"] is not None:
            events[MODE_EVENT_HIGH] = (th["high"], (y >= th["high"]).astype("boolean").where(known))
        return events

    # ─── STEP 3: Event effect + Spearman ──────────────────────

    def _step3_score(self, x: pd.Series, y: pd.Series, in_key: str, out_key: str,
                     lag_days: int, events: Dict[str, Any]) -> List[Dict[str, Any]]:
        cfg = self.config
        found: List[Dict[str, Any]] = []

        for mode in (MODE_EVENT_LOW, MODE_EVENT_HIGH):
            if mode not in events:
                continue
            threshold, flags = events[mode]
            eff = event_effect(x, flags, cfg.min_event_days, cfg.min_non_event_days)
            if eff is None:
                continue
            found.append({
                "inputKey": in_key,
                "outputKey": out_key,
                "lagDays": lag_days,
                "mode": mode,
                "direction": "positive" if eff["delta"] >= 0 else "negative",
                "strength": eff["strength"],
                "n": eff["nEvent"] + eff["nNonEvent"],
                "nEvent": eff["nEvent"],
                "nNonEvent": eff["nNonEvent"],
                "meanEvent": eff["meanEvent"],
                "meanNonEvent": eff["meanNonEvent"],
                "threshold": threshold,
                "delta": eff["delta"],
            })

        both = pd.concat([x, y], axis=1).dropna()
        if len(both) >= cfg.min_continuous_pairs:
            rho = spearman(both.iloc[:, 0].to_numpy(), both.iloc[:, 1].to_numpy())
            if rho is not None and np.isfinite(rho) and abs(rho) >= cfg.candidate_min_abs_rho:
                found.append({
                    "inputKey": in_key,
                    "outputKey": out_key,
                    "lagDays": lag_days,
                    "mode": MODE_CONTINUOUS,
                    "direction": "positive" if rho >= 0 else "negative",
                    "strength": rho,
                    "n": int(len(both)),
                })
        return found
