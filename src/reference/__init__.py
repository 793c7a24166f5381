"""Versioned reference-intake datasets, looked up by profile key."""

from __future__ import annotations

from typing import Any, Dict, Optional

from reference.dri_v1 import DRI_V1_BANDS, DRI_V1_PROFILE_KEY, DRI_V1_VERSION


def get_dri_dataset(profile_key: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return ``{profile_key, version, bands}`` or None for an unknown key."""
    if profile_key == DRI_V1_PROFILE_KEY:
        return {"profile_key": profile_key, "version": DRI_V1_VERSION, "bands": DRI_V1_BANDS}
    return None
