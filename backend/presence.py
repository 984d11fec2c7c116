"""
Exploragon Presence Module - Live player positions for the admin map

Builds on the visit tracker: who is active right now, where, in which cell,
and the trail of a single player's recent fixes.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from hex_grid import Coordinates, HexCell
from visit_tracker import VisitTracker


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def player_color(username: str) -> str:
    """Stable per-player colour, matching the map client's string hash."""
    data = username.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = int.from_bytes(data[i:i + 2], "little")
        h = unit + (_to_int32(_to_int32(h) << 5) - h)
    hue = abs(h) % 360
    return f"hsl({hue}, 70%, 50%)"


@dataclass
class PlayerPresence:
    username: str
    timestamp: int
    coords: Coordinates
    cell: Optional[HexCell]
    color: str
    seconds_since_update: float

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "timestamp": self.timestamp,
            "coords": self.coords.to_dict(),
            "cell": self.cell.to_dict() if self.cell else None,
            "color": self.color,
            "secondsSinceUpdate": round(self.seconds_since_update, 1),
        }


class PresenceView:
    """Read-only view over active players."""

    def __init__(self, tracker: VisitTracker, clock: Callable[[], float] = time.time):
        self.tracker = tracker
        self._clock = clock

    def snapshot(self) -> List[PlayerPresence]:
        """Active players, most recently updated first."""
        now_ms = self._clock() * 1000.0
        players = [
            PlayerPresence(
                username=username,
                timestamp=event.timestamp,
                coords=event.coords,
                cell=self.tracker.grid.locate(event.coords),
                color=player_color(username),
                seconds_since_update=max(0.0, (now_ms - event.timestamp) / 1000.0),
            )
            for username, event in self.tracker.get_active_users().items()
        ]
        return sorted(players, key=lambda p: (-p.timestamp, p.username))

    def get_trail(self, username: str, limit: Optional[int] = None) -> dict:
        """Chronological path of a player's retained fixes."""
        events = list(reversed(self.tracker.get_history(username, limit)))
        points = []
        visited = set()
        for event in events:
            cell = self.tracker.grid.locate(event.coords)
            if cell is not None:
                visited.add(cell)
            points.append({
                "lat": event.coords.lat,
                "lng": event.coords.lng,
                "timestamp": event.timestamp,
                "cell": cell.key if cell else None,
            })
        return {
            "username": username,
            "color": player_color(username),
            "points": points,
            "start": points[0] if points else None,
            "end": points[-1] if points else None,
            "visitedCells": [c.key for c in sorted(visited)],
        }
