"""
FastAPI adapter for the nutrition analysis engine.

Triggers analysis runs (best-effort in the background by default) and
serves surfaced correlations, resolved targets and debugging views.
Shared utilities live in routes/helpers.py.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from analytics.lag_pairs import describe_lag_window
from config import DEFAULT_CONFIG
from daily_records import fetch_daily_records, fetch_user_profile, logical_date_key
from errors import AnalysisInputError, PersistenceError
from nutrient_targets import resolve_targets
from pack_store import CorrelationPackStore
from pipeline.migrations import schema_audit
from pipeline.user_analysis import UserAnalysisPipeline, run_analysis_best_effort
from promotion import PromotionEngine
from routes.helpers import (
    _clamp_int, _conn_str, _fetch_one, _targets_payload, _text, _to_jsonable,
)

log = logging.getLogger("api")


# ─── App setup ─────────────────────────────────────────────

app = FastAPI(title="Nutrition Analysis API", version="1.0.0")

_origin_env = os.getenv("FRONTEND_ORIGINS", "")
_origins = [o.strip() for o in _origin_env.split(",") if o.strip()] or [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


class AnalysisRunRequest(BaseModel):
    windowDays: Optional[int] = None
    lagDays: Optional[int] = None
    minSupportDays: Optional[int] = None
    topK: Optional[int] = None
    backfillRoundups: bool = False


class CorrelationPackRequest(BaseModel):
    userId: Optional[str] = None
    dateKey: Optional[str] = None
    algorithmVersion: Optional[str] = None
    candidates: Any = None
    windowDays: Optional[int] = None
    lagDays: Optional[int] = None


def _pipeline() -> UserAnalysisPipeline:
    return UserAnalysisPipeline(_conn_str())


def _run_kwargs(body: Optional[AnalysisRunRequest]) -> Dict[str, Any]:
    body = body or AnalysisRunRequest()
    kwargs: Dict[str, Any] = {"backfill_roundups": bool(body.backfillRoundups)}
    for attr, name in (("windowDays", "window_days"), ("lagDays", "lag_days"),
                       ("minSupportDays", "min_support_days"), ("topK", "top_k")):
        value = getattr(body, attr)
        if value is not None:
            kwargs[name] = value
    return kwargs


# ─── Routes ────────────────────────────────────────────────

@app.get("/")
def root() -> Dict[str, Any]:
    return {"service": "nutrition-analysis-api", "status": "ok"}


@app.get("/health-check")
def health_check() -> JSONResponse:
    try:
        _fetch_one("SELECT 1 AS ok")
        return JSONResponse({"status": "Online", "message": "Online"})
    except Exception as e:
        return JSONResponse(
            status_code=200,
            content={
                "status": "Waking up",
                "message": f"Service starting or DB unavailable: {e}",
            },
        )


@app.post("/api/v1/users/{user_id}/analysis/run")
def run_user_analysis(
    user_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[AnalysisRunRequest] = None,
    wait: bool = Query(default=False),
) -> Dict[str, Any]:
    uid = _text(user_id)
    if not uid:
        raise HTTPException(status_code=400, detail="userId is required")
    kwargs = _run_kwargs(body)

    if not wait:
        background_tasks.add_task(run_analysis_best_effort, uid, **kwargs)
        return {"userId": uid, "status": "scheduled"}

    try:
        result = _pipeline().run_analysis(uid, **kwargs)
    except AnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return _to_jsonable(result)


@app.get("/api/v1/users/{user_id}/correlations")
def list_user_correlations(
    user_id: str,
    surfacedOnly: bool = Query(default=True),
    limit: int = Query(default=50),
    includeAll: bool = Query(default=False),
) -> Dict[str, Any]:
    uid = _text(user_id)
    if not uid:
        raise HTTPException(status_code=400, detail="userId is required")
    try:
        rows = PromotionEngine(_conn_str()).list_correlations(
            uid, surfaced_only=surfacedOnly, limit=limit, include_all=includeAll,
        )
    except AnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"userId": uid, "count": len(rows), "correlations": _to_jsonable(rows)}


@app.post("/api/v1/analysis/correlation-pack")
def store_correlation_pack(body: CorrelationPackRequest) -> Dict[str, Any]:
    try:
        stored = CorrelationPackStore(_conn_str()).store(
            body.userId,
            body.dateKey,
            body.algorithmVersion,
            body.candidates,
            {"windowDays": body.windowDays, "lagDays": body.lagDays},
        )
    except AnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "userId": body.userId, "dateKey": body.dateKey, "storedCount": stored}


@app.get("/api/v1/analysis/debug-window")
def analysis_debug_window(
    userId: str = Query(default=""),
    windowDays: int = Query(default=30),
    lagDays: int = Query(default=1),
    tz: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    uid = _text(userId)
    if not uid:
        raise HTTPException(status_code=400, detail="userId is required")
    window = _clamp_int(windowDays, 2, 365, 30)
    lag = _clamp_int(lagDays, 0, 14, 1)
    end_key = logical_date_key(tz_name=tz, cutoff_hour=DEFAULT_CONFIG.logical_day_cutoff_hour)
    try:
        records = fetch_daily_records(_conn_str(), uid, window + lag)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    records = [r for r in records if r.date_key <= end_key][-window - lag:]
    out = describe_lag_window(records, lag)
    out.update({"userId": uid, "windowDays": window, "endDateKey": end_key})
    return _to_jsonable(out)


@app.get("/api/v1/users/{user_id}/targets")
def user_targets(user_id: str) -> Dict[str, Any]:
    uid = _text(user_id)
    if not uid:
        raise HTTPException(status_code=400, detail="userId is required")
    try:
        profile = fetch_user_profile(_conn_str(), uid)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    targets = resolve_targets(
        profile.get("age"), profile.get("sex"),
        profile_key=profile.get("profile_key"),
        overrides=profile.get("overrides"),
    )
    return _targets_payload(uid, targets)


@app.get("/api/v1/admin/migration-audit")
def migration_audit() -> Dict[str, Any]:
    try:
        return schema_audit(_conn_str())
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
