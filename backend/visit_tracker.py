"""
Exploragon Visit Tracker Module - Player fixes, history and visited cells

Every accepted GPS fix becomes the player's current position (short TTL) and
is appended to their timeline (longer TTL, capped). Visited cells are derived
by replaying the timeline through the grid, so any process sharing the store
computes the same set.
"""

import math
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Union

import config
from hex_grid import Coordinates, HexCell, HexGrid
from location_store import LocationStore
from logger import setup_logger

logger = setup_logger("visit_tracker")

OPTIONAL_COORD_FIELDS = {
    "accuracy": "accuracy",
    "altitude": "altitude",
    "altitudeAccuracy": "altitude_accuracy",
    "heading": "heading",
    "speed": "speed",
}

# Last millisecond of 9999-12-31 UTC, the latest instant datetime can represent
MAX_TIMESTAMP_MS = 253_402_300_799_999


class InvalidLocationError(ValueError):
    """A location report was malformed or outside the playable area."""


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_finite(payload: dict, field: str, low: float, high: float) -> float:
    value = payload.get(field)
    if value is None:
        raise InvalidLocationError(f"coords.{field} is required")
    if not _is_number(value) or not math.isfinite(value):
        raise InvalidLocationError(f"coords.{field} must be a finite number")
    if not low <= value <= high:
        raise InvalidLocationError(f"coords.{field} must be between {low} and {high}")
    return float(value)


@dataclass(frozen=True)
class LocationEvent:
    """One reported device fix."""
    username: str
    timestamp: int  # ms epoch
    coords: Coordinates
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    altitude_accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None

    def to_record(self) -> dict:
        """Wire/store shape: {username, timestamp, coords: {latitude, longitude, ...}}."""
        coords = {"latitude": self.coords.lat, "longitude": self.coords.lng}
        for wire_name, attr in OPTIONAL_COORD_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                coords[wire_name] = value
        return {"username": self.username, "timestamp": self.timestamp, "coords": coords}

    @classmethod
    def from_payload(cls, payload) -> "LocationEvent":
        """Validate a decoded JSON payload. Raises InvalidLocationError."""
        if not isinstance(payload, dict):
            raise InvalidLocationError("payload must be an object")

        username = payload.get("username")
        if not isinstance(username, str) or not username.strip():
            raise InvalidLocationError("username is required")

        timestamp = payload.get("timestamp")
        if not _is_number(timestamp) or not math.isfinite(timestamp) or timestamp != int(timestamp):
            raise InvalidLocationError("timestamp must be an integer (ms since epoch)")
        if not 0 <= timestamp <= MAX_TIMESTAMP_MS:
            raise InvalidLocationError(f"timestamp must be between 0 and {MAX_TIMESTAMP_MS} (ms since epoch)")

        coords = payload.get("coords")
        if not isinstance(coords, dict):
            raise InvalidLocationError("coords is required")
        latitude = _require_finite(coords, "latitude", -90.0, 90.0)
        longitude = _require_finite(coords, "longitude", -180.0, 180.0)

        extras = {}
        for wire_name, attr in OPTIONAL_COORD_FIELDS.items():
            value = coords.get(wire_name)
            if value is None:
                continue
            if not _is_number(value) or not math.isfinite(value):
                raise InvalidLocationError(f"coords.{wire_name} must be a finite number or null")
            extras[attr] = float(value)

        return cls(
            username=username.strip(),
            timestamp=int(timestamp),
            coords=Coordinates(lat=latitude, lng=longitude),
            **extras,
        )


def replay_visited_cells(events: Iterable[LocationEvent], grid: HexGrid) -> Set[HexCell]:
    """Set of cells a sequence of fixes resolves into. Order does not matter."""
    visited: Set[HexCell] = set()
    for event in events:
        cell = grid.locate(event.coords)
        if cell is not None:
            visited.add(cell)
    return visited


class VisitTracker:
    """Records player fixes and answers presence/history/visit queries."""

    def __init__(self,
                 store: LocationStore,
                 grid: HexGrid,
                 active_ttl_seconds: int = config.ACTIVE_TTL_SECONDS,
                 history_ttl_seconds: int = config.HISTORY_TTL_SECONDS,
                 history_max_entries: int = config.HISTORY_MAX_ENTRIES):
        self.store = store
        self.grid = grid
        self.active_ttl_seconds = active_ttl_seconds
        self.history_ttl_seconds = history_ttl_seconds
        self.history_max_entries = history_max_entries

    # ===== WRITES =====

    def record_location(self, event: Union[LocationEvent, dict]) -> Optional[HexCell]:
        """Store a fix as current position and history entry.

        Returns:
            The cell the fix falls in, or None for a point between cells.

        Raises:
            InvalidLocationError: malformed payload or point outside the grid's bbox.
            StoreUnavailableError: the store could not be written.
        """
        if not isinstance(event, LocationEvent):
            event = LocationEvent.from_payload(event)
        if not self.grid.bbox.contains(event.coords):
            raise InvalidLocationError(
                f"({event.coords.lat}, {event.coords.lng}) is outside the playable area"
            )

        if not 0 <= event.timestamp <= MAX_TIMESTAMP_MS:
            raise InvalidLocationError(f"timestamp {event.timestamp} is out of range")
        ts = datetime.fromtimestamp(event.timestamp / 1000.0, tz=timezone.utc).isoformat()

        record = event.to_record()
        self.store.set_current(event.username, record, self.active_ttl_seconds)
        self.store.append_history(event.username, record, self.history_max_entries, self.history_ttl_seconds)

        cell = self.grid.locate(event.coords)
        logger.info(f"[GPS_UPDATE] user={event.username} time={ts} "
                    f"lat={event.coords.lat:.6f} lng={event.coords.lng:.6f} "
                    f"cell={cell.key if cell else '-'}")
        return cell

    # ===== READS =====

    def _parse_records(self, records: Iterable[dict]) -> List[LocationEvent]:
        events = []
        for record in records:
            try:
                events.append(LocationEvent.from_payload(record))
            except InvalidLocationError as e:
                logger.warning(f"Skipping malformed stored record: {e}")
        return events

    def get_current(self, username: str) -> Optional[LocationEvent]:
        record = self.store.get_current(username)
        if record is None:
            return None
        parsed = self._parse_records([record])
        return parsed[0] if parsed else None

    def get_active_users(self) -> Dict[str, LocationEvent]:
        """Users whose current fix has not expired."""
        return {e.username: e for e in self._parse_records(self.store.scan_current().values())}

    def get_history(self, username: str, limit: Optional[int] = None) -> List[LocationEvent]:
        """Fixes for a user, most recent first."""
        return self._parse_records(self.store.get_history(username, limit))

    def get_visited_cells(self, username: str) -> Set[HexCell]:
        return replay_visited_cells(self.get_history(username), self.grid)

    def known_users(self) -> List[str]:
        """Active or merely historical users, sorted by name."""
        return sorted(set(self.store.scan_current()) | set(self.store.scan_history_users()))

    def get_all_users_with_history(self) -> Dict[str, dict]:
        result = {}
        for username in self.known_users():
            current = self.get_current(username)
            result[username] = {
                "current": current.to_record() if current else None,
                "history": [e.to_record() for e in self.get_history(username)],
            }
        return result
