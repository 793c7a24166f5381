"""Startup migration and audit helpers for the analysis tables."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import psycopg2

from constants import (
    DAILY_TOTALS_TABLE,
    PACKS_TABLE,
    USER_CORRELATIONS_TABLE,
    USER_PROFILES_TABLE,
)
from db_utils import resolve_conn_str

log = logging.getLogger("pipeline.migrations")

# Tables this service owns.  Daily totals and profiles belong to the
# aggregation layer and are only audited, never created here.
SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {PACKS_TABLE} (
    id                  SERIAL PRIMARY KEY,
    user_id             TEXT NOT NULL,
    date_key            TEXT NOT NULL,
    algorithm_version   TEXT NOT NULL,
    candidates          JSONB NOT NULL DEFAULT '[]'::jsonb,
    stored_count        INTEGER NOT NULL DEFAULT 0,
    window_days         INTEGER,
    lag_days            INTEGER,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, date_key, algorithm_version)
);

CREATE TABLE IF NOT EXISTS {USER_CORRELATIONS_TABLE} (
    id                  SERIAL PRIMARY KEY,
    user_id             TEXT NOT NULL,
    input_key           TEXT NOT NULL,
    output_key          TEXT NOT NULL,
    mode                TEXT NOT NULL,
    lag_days            INTEGER NOT NULL,
    direction           TEXT,
    strength            DOUBLE PRECISION,
    n                   INTEGER,
    n_event             INTEGER,
    n_non_event         INTEGER,
    mean_event          DOUBLE PRECISION,
    mean_non_event      DOUBLE PRECISION,
    threshold           DOUBLE PRECISION,
    delta               DOUBLE PRECISION,
    seen_count          INTEGER NOT NULL DEFAULT 0,
    confirm_streak      INTEGER NOT NULL DEFAULT 0,
    is_surfaced         BOOLEAN NOT NULL DEFAULT FALSE,
    surfaced_at         TIMESTAMPTZ,
    surfaced_date_key   TEXT,
    first_seen_date_key TEXT,
    last_seen_date_key  TEXT,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, input_key, output_key, mode, lag_days)
);

CREATE INDEX IF NOT EXISTS idx_user_corr_surfaced
    ON {USER_CORRELATIONS_TABLE}(user_id, is_surfaced, surfaced_at DESC);

CREATE INDEX IF NOT EXISTS idx_corr_packs_user_date
    ON {PACKS_TABLE}(user_id, date_key DESC)
"""

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    DAILY_TOTALS_TABLE: ["user_id", "date_key", "totals", "totals_estimated", "ingredients_exposure"],
    USER_PROFILES_TABLE: ["user_id", "age", "sex", "nutrient_goal_overrides", "dri_profile_key"],
    PACKS_TABLE: ["user_id", "date_key", "algorithm_version", "candidates", "stored_count", "created_at"],
    USER_CORRELATIONS_TABLE: [
        "user_id", "input_key", "output_key", "mode", "lag_days",
        "seen_count", "confirm_streak", "is_surfaced", "surfaced_at", "surfaced_date_key",
    ],
}


def ensure_startup_schema(conn_str: str | None = None) -> None:
    """Run idempotent startup migrations before any analysis run."""
    cs = resolve_conn_str(conn_str)

    conn = psycopg2.connect(cs)
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            for stmt in SCHEMA_SQL.split(";"):
                stmt = stmt.strip()
                if stmt:
                    cur.execute(stmt)
    finally:
        conn.close()

    log.info("Startup migrations completed.")


def schema_audit(conn_str: str | None = None) -> Dict[str, Any]:
    """Return table/column audit data for runtime inspection."""
    try:
        cs = resolve_conn_str(conn_str)
    except RuntimeError as e:
        return {
            "ok": False,
            "error": str(e),
            "tables": {},
            "missing_tables": [],
        }

    out: Dict[str, Any] = {"ok": True, "tables": {}, "missing_tables": []}
    conn = psycopg2.connect(cs)
    try:
        with conn.cursor() as cur:
            for table, expected in REQUIRED_COLUMNS.items():
                cur.execute(
                    """
                    SELECT EXISTS (
                        SELECT 1
                        FROM information_schema.tables
                        WHERE table_schema = 'public' AND table_name = %s
                    )
                    """,
                    (table,),
                )
                exists = bool(cur.fetchone()[0])
                table_info: Dict[str, Any] = {"exists": exists, "columns": [], "missing_columns": []}
                if not exists:
                    out["missing_tables"].append(table)
                    out["tables"][table] = table_info
                    continue

                cur.execute(
                    """
                    SELECT column_name
                    FROM information_schema.columns
                    WHERE table_schema = 'public' AND table_name = %s
                    ORDER BY ordinal_position
                    """,
                    (table,),
                )
                cols = [r[0] for r in cur.fetchall()]
                table_info["columns"] = cols
                table_info["missing_columns"] = [c for c in expected if c not in cols]
                out["tables"][table] = table_info

        out["ok"] = not out["missing_tables"] and not any(
            info.get("missing_columns") for info in out["tables"].values()
        )
        return out
    finally:
        conn.close()
