"""
Exploragon Catalog Module - Challenge locations pinned to grid cells

Each challenge carries a real-world coordinate. At startup the catalog
resolves every challenge to its hex cell once; cells holding a challenge are
the "task hexagons" shown on the map.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from hex_grid import Coordinates, HexCell, HexGrid
from logger import setup_logger

logger = setup_logger("catalog")


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class ChallengeEntry:
    """A named challenge location and its reward."""
    id: str
    title: str
    description: str
    location: str
    reward_points: int
    difficulty: Difficulty
    coordinates: Coordinates

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "rewardPoints": self.reward_points,
            "difficulty": self.difficulty.value,
            "coordinates": self.coordinates.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChallengeEntry":
        reward = data.get("rewardPoints", data.get("reward_points", data.get("points")))
        if isinstance(reward, bool) or not isinstance(reward, (int, float)):
            raise ValueError(f"Challenge {data.get('id')!r} has invalid reward points: {reward!r}")
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            location=data.get("location", ""),
            reward_points=int(reward),
            difficulty=Difficulty(data.get("difficulty", "easy")),
            coordinates=Coordinates.from_dict(data["coordinates"]),
        )


# =============================================================================
# SEED DATA
# =============================================================================

CHALLENGES_SEED: List[dict] = [
    {
        "id": "ggp-bison-1",
        "title": "Photo with the Bisons",
        "description": "Take a selfie with the American bison paddock in the background",
        "location": "Bison Paddock",
        "rewardPoints": 25,
        "difficulty": "easy",
        "coordinates": {"lat": 37.7705, "lng": -122.4923},
    },
    {
        "id": "ggp-windmill-1",
        "title": "Dutch Windmill Challenge",
        "description": "Do a traditional Dutch dance pose in front of the Dutch Windmill",
        "location": "Dutch Windmill",
        "rewardPoints": 30,
        "difficulty": "medium",
        "coordinates": {"lat": 37.7713, "lng": -122.5103},
    },
    {
        "id": "ggp-japanese-1",
        "title": "Tea Garden Meditation",
        "description": "Record a 30-second meditation video at the Japanese Tea Garden entrance",
        "location": "Japanese Tea Garden",
        "rewardPoints": 35,
        "difficulty": "medium",
        "coordinates": {"lat": 37.7701, "lng": -122.4700},
    },
    {
        "id": "ggp-carousel-1",
        "title": "Carousel Excitement",
        "description": "Capture your best excited face while riding the historic carousel",
        "location": "Koret Children's Quarter",
        "rewardPoints": 20,
        "difficulty": "easy",
        "coordinates": {"lat": 37.7687, "lng": -122.4569},
    },
    {
        "id": "ggp-conservatory-1",
        "title": "Botanical Beauty",
        "description": "Take a creative photo showcasing the Conservatory of Flowers architecture",
        "location": "Conservatory of Flowers",
        "rewardPoints": 40,
        "difficulty": "hard",
        "coordinates": {"lat": 37.7735, "lng": -122.4606},
    },
    {
        "id": "ggp-haight-1",
        "title": "Hippie Spirit",
        "description": "Strike a peace sign pose near the Haight-Ashbury entrance to the park",
        "location": "Haight Street Entrance",
        "rewardPoints": 15,
        "difficulty": "easy",
        "coordinates": {"lat": 37.7697, "lng": -122.4545},
    },
    {
        "id": "pier39-sealions",
        "title": "Sea Lion Impression",
        "description": "Do your best sea lion bark and pose at Pier 39",
        "location": "Pier 39",
        "rewardPoints": 45,
        "difficulty": "medium",
        "coordinates": {"lat": 37.8087, "lng": -122.4098},
    },
    {
        "id": "lombard-street",
        "title": "Crookedest Street Photo",
        "description": "Take a creative photo on the famous winding Lombard Street",
        "location": "Lombard Street",
        "rewardPoints": 35,
        "difficulty": "hard",
        "coordinates": {"lat": 37.8021, "lng": -122.4187},
    },
]


def load_challenges(path: Optional[Path] = None) -> List[ChallengeEntry]:
    """Load challenges from a JSON list file, falling back to the seed."""
    if path is not None and path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = [ChallengeEntry.from_dict(item) for item in data]
            logger.info(f"Loaded {len(entries)} challenges from {path}")
            return entries
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading challenges from {path}: {e}")
    elif path is not None:
        logger.warning(f"Catalog file {path} not found, using built-in challenges")
    return [ChallengeEntry.from_dict(item) for item in CHALLENGES_SEED]


# =============================================================================
# HEXAGON CATALOG
# =============================================================================

@dataclass(frozen=True)
class CatalogConflict:
    """Two challenges resolved to the same cell; the later one was kept."""
    cell: HexCell
    replaced_id: str
    kept_id: str


class HexagonCatalog:
    """Read-only mapping from grid cell to the challenge placed in it."""

    def __init__(self, grid: HexGrid, entries: List[ChallengeEntry]):
        self.grid = grid
        self._by_cell: Dict[HexCell, ChallengeEntry] = {}
        self._cell_by_id: Dict[str, HexCell] = {}
        self.conflicts: List[CatalogConflict] = []
        self.dropped: List[ChallengeEntry] = []

        for entry in entries:
            self._register(entry)

        logger.info(f"Catalog ready: {len(self._by_cell)} challenge hexagons, "
                    f"{len(self.conflicts)} conflicts, {len(self.dropped)} dropped")

    def _register(self, entry: ChallengeEntry):
        cell = self.grid.locate(entry.coordinates)
        if cell is None:
            logger.warning(f"Challenge {entry.id} at ({entry.coordinates.lat}, {entry.coordinates.lng}) "
                           f"is not inside any grid cell, dropping it")
            self.dropped.append(entry)
            return

        previous = self._by_cell.get(cell)
        if previous is not None:
            logger.warning(f"Challenges {previous.id} and {entry.id} share cell {cell.key}, keeping {entry.id}")
            self.conflicts.append(CatalogConflict(cell=cell, replaced_id=previous.id, kept_id=entry.id))
            del self._cell_by_id[previous.id]

        # A re-registered id moves to its new cell
        old_cell = self._cell_by_id.get(entry.id)
        if old_cell is not None and old_cell != cell:
            del self._by_cell[old_cell]

        self._by_cell[cell] = entry
        self._cell_by_id[entry.id] = cell

    def __len__(self) -> int:
        return len(self._by_cell)

    def __contains__(self, cell: HexCell) -> bool:
        return cell in self._by_cell

    def get(self, cell: HexCell) -> Optional[ChallengeEntry]:
        return self._by_cell.get(cell)

    def cell_for(self, entry_id: str) -> Optional[HexCell]:
        return self._cell_by_id.get(entry_id)

    def cells(self) -> List[HexCell]:
        return sorted(self._by_cell)

    def entries(self) -> List[Tuple[HexCell, ChallengeEntry]]:
        return sorted(self._by_cell.items())

    def to_hexagon_data(self) -> List[dict]:
        """Task hexagons with geometry, in cell order."""
        result = []
        for cell, entry in self.entries():
            grid_cell = self.grid.grid_cell(cell)
            data = grid_cell.to_dict()
            data["task"] = entry.to_dict()
            result.append(data)
        return result
