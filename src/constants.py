"""
Shared constants used across multiple modules.
Single source of truth for feature keys, modes and algorithm versions.
"""

# Next-day outcomes read from daily totals (check-in fields)
OUTCOME_KEYS = (
    "checkin_mood",
    "checkin_clarity_score",
    "checkin_pain_peak",
    "checkin_pain_region_count",
    "checkin_energy",
)

# Ingredient exposures are namespaced so they never collide with nutrient keys
INGREDIENT_PREFIX = "ing:"

# Correlation modes
MODE_EVENT_LOW = "event_low"
MODE_EVENT_HIGH = "event_high"
MODE_CONTINUOUS = "continuous_spearman"

# Roundup buckets (ok is pass-through and never emitted)
BUCKET_OK = "ok"
BUCKET_LOW = "low"
BUCKET_HIGH = "high"
BUCKET_MET = "met"
BUCKET_OVER_SAFE = "over_safe"
BUCKET_OVER_LIMIT = "over_limit"

ROUNDUP_OUTPUT_KEY = "daily_roundup"

# Energy is logged in kcal; kJ is the same quantity in another unit
KCAL_TO_KJ = 4.184

# Algorithm versions (part of the pack identity)
CORRELATION_ENGINE_VERSION = "correlation_engine_v1"
ROUNDUP_VERSION = "daily_roundup_v1"

# Storage tables
DAILY_TOTALS_TABLE = "user_daily_totals"
USER_PROFILES_TABLE = "user_profiles"
PACKS_TABLE = "user_analysis_correlation_packs"
USER_CORRELATIONS_TABLE = "user_correlations"

DATE_KEY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
