from __future__ import annotations

import os
from pathlib import Path


DEFAULT_CLOSEST_MAX_FEATURES = 10_000


def closest_feature_limit() -> int:
    """
    Candidate count above which closest-feature lookups return a coverage
    indicator instead of ranking features.
    """
    raw = (os.getenv("GPKG_CLOSEST_MAX_FEATURES") or "").strip()
    if raw:
        try:
            return max(0, int(raw))
        except ValueError:
            pass
    return DEFAULT_CLOSEST_MAX_FEATURES


def geopackage_path() -> Path | None:
    """
    GeoPackage served over HTTP; None when GPKG_PATH is unset.
    """
    raw = (os.getenv("GPKG_PATH") or "").strip()
    return Path(raw) if raw else None


def log_level() -> str:
    raw = (os.getenv("GPKG_LOG_LEVEL") or "INFO").strip().upper()
    return raw if raw in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"


def cors_origins() -> list[str]:
    raw = os.getenv("GPKG_CORS_ORIGINS") or "*"
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]
