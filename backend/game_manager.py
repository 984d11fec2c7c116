"""
Game Manager Module - Process-wide wiring for the Exploragon game.

Provides:
- The shared location store (created on first use, never torn down)
- The hex grid for the configured playable area
- The challenge catalog, visit tracker and presence view built on them
"""

import threading
from typing import List, Optional

import config
from catalog import ChallengeEntry, HexagonCatalog, load_challenges
from hex_grid import BoundingBox, HexGrid, get_grid
from leaderboard import Leaderboard, compute_leaderboard
from location_store import LocationStore, create_store
from logger import setup_logger
from presence import PresenceView
from visit_tracker import VisitTracker

logger = setup_logger("game_manager")


class GameManager:
    """Owns the game's collaborators for the lifetime of the process."""

    _instance = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "GameManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton for testing."""
        with cls._lock:
            cls._instance = None

    def __init__(self,
                 store: Optional[LocationStore] = None,
                 grid: Optional[HexGrid] = None,
                 challenges: Optional[List[ChallengeEntry]] = None):
        if GameManager._instance is not None:
            raise RuntimeError("Use get_instance() instead")

        self.grid = grid or get_grid(BoundingBox.from_list(config.GAME_BBOX), config.HEX_RADIUS_M)
        self.store = store or create_store(config.REDIS_URL)
        if challenges is None:
            challenges = load_challenges(config.CATALOG_FILE)
        self.catalog = HexagonCatalog(self.grid, challenges)
        self.tracker = VisitTracker(
            self.store,
            self.grid,
            active_ttl_seconds=config.ACTIVE_TTL_SECONDS,
            history_ttl_seconds=config.HISTORY_TTL_SECONDS,
            history_max_entries=config.HISTORY_MAX_ENTRIES,
        )
        self.presence = PresenceView(self.tracker)
        logger.info(f"Game initialized: {self.grid!r}, {len(self.catalog)} challenge hexagons")

    def leaderboard(self) -> Leaderboard:
        return compute_leaderboard(self.tracker, self.catalog, config.POINTS_PER_HEX)


def get_game_manager() -> GameManager:
    """Get the singleton GameManager instance."""
    return GameManager.get_instance()
