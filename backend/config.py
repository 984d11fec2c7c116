"""Runtime settings for the Exploragon backend, read from the environment (.env supported)."""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

# San Francisco (approx), [lng_min, lat_min, lng_max, lat_max]
DEFAULT_BBOX = [-122.5149, 37.7081, -122.3569, 37.8324]
DEFAULT_CENTER = {"lat": 37.7749, "lng": -122.4194}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bbox(name: str, default: List[float]) -> List[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise ValueError(f"{name} must be 'lngMin,latMin,lngMax,latMax', got {raw!r}")
    try:
        return [float(p) for p in parts]
    except ValueError:
        raise ValueError(f"{name} must contain four numbers, got {raw!r}")


# Persistence: unset means the in-process store
REDIS_URL: Optional[str] = os.getenv("REDIS_URL") or None

# Grid
GAME_BBOX = _env_bbox("GAME_BBOX", DEFAULT_BBOX)
HEX_RADIUS_M = _env_float("HEX_RADIUS_M", 100.0)

# Retention
ACTIVE_TTL_SECONDS = _env_int("ACTIVE_TTL_SECONDS", 120)
HISTORY_TTL_SECONDS = _env_int("HISTORY_TTL_SECONDS", 24 * 60 * 60)
HISTORY_MAX_ENTRIES = _env_int("HISTORY_MAX_ENTRIES", 1000)

# Scoring
POINTS_PER_HEX = _env_int("POINTS_PER_HEX", 10)

# Optional JSON challenge list overriding the built-in seed
CATALOG_FILE: Optional[Path] = Path(os.environ["CATALOG_FILE"]) if os.getenv("CATALOG_FILE") else None
