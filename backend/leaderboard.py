"""Leaderboard: distinct hexagons explored per player, recomputed on demand."""
from dataclasses import dataclass, field
from typing import List, Optional, Set

import config
from catalog import HexagonCatalog
from hex_grid import HexCell
from visit_tracker import VisitTracker, replay_visited_cells


@dataclass
class LeaderboardEntry:
    username: str
    hexagons_explored: int
    last_active: Optional[int]  # ms epoch of the newest history entry
    total_points: int
    challenges_found: int = 0
    challenge_points: int = 0

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "hexagonsExplored": self.hexagons_explored,
            "lastActive": self.last_active,
            "totalPoints": self.total_points,
            "challengesFound": self.challenges_found,
            "challengePoints": self.challenge_points,
        }


@dataclass
class Leaderboard:
    entries: List[LeaderboardEntry] = field(default_factory=list)
    total_users: int = 0
    total_unique_hexagons: int = 0

    def to_dict(self) -> dict:
        return {
            "leaderboard": [e.to_dict() for e in self.entries],
            "totalUsers": self.total_users,
            "totalUniqueHexagons": self.total_unique_hexagons,
        }


def _rank_key(entry: LeaderboardEntry):
    # Most hexagons first; then most recent activity, players never seen last
    if entry.last_active is None:
        return (-entry.hexagons_explored, 1, 0)
    return (-entry.hexagons_explored, 0, -entry.last_active)


def sort_entries(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """Stable ranking; ties keep their input order."""
    return sorted(entries, key=_rank_key)


def compute_leaderboard(tracker: VisitTracker,
                        catalog: Optional[HexagonCatalog] = None,
                        points_per_hex: int = config.POINTS_PER_HEX) -> Leaderboard:
    entries = []
    all_cells: Set[HexCell] = set()

    for username in tracker.known_users():
        history = tracker.get_history(username)
        visited = replay_visited_cells(history, tracker.grid)
        all_cells |= visited

        challenges = [catalog.get(c) for c in visited if c in catalog] if catalog is not None else []
        entries.append(LeaderboardEntry(
            username=username,
            hexagons_explored=len(visited),
            last_active=max((e.timestamp for e in history), default=None),
            total_points=len(visited) * points_per_hex,
            challenges_found=len(challenges),
            challenge_points=sum(c.reward_points for c in challenges),
        ))

    ranked = sort_entries(entries)
    return Leaderboard(entries=ranked, total_users=len(ranked), total_unique_hexagons=len(all_cells))
