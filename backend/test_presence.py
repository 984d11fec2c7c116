"""Tests for the live presence view."""
import re
import pytest

from hex_grid import BoundingBox, HexCell, HexGrid
from location_store import InMemoryLocationStore
from presence import PresenceView, player_color
from visit_tracker import VisitTracker

SF_BBOX = BoundingBox(-122.5149, 37.7081, -122.3569, 37.8324)
T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: float = T0 / 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return VisitTracker(InMemoryLocationStore(clock=clock), HexGrid(SF_BBOX, 100))


@pytest.fixture
def view(tracker, clock):
    return PresenceView(tracker, clock=clock)


def visit(tracker, username, cell, timestamp):
    center = tracker.grid.cell_center(cell)
    tracker.record_location({
        "username": username,
        "timestamp": timestamp,
        "coords": {"latitude": center.lat, "longitude": center.lng},
    })


class TestPlayerColor:

    def test_known_values(self):
        assert player_color("a") == "hsl(97, 70%, 50%)"
        assert player_color("ab") == "hsl(225, 70%, 50%)"
        assert player_color("") == "hsl(0, 70%, 50%)"

    def test_deterministic_and_well_formed(self):
        for name in ("alice", "bob", "Zoë", "a much longer username than usual 1234567890"):
            color = player_color(name)
            assert color == player_color(name)
            match = re.fullmatch(r"hsl\((\d+), 70%, 50%\)", color)
            assert match and 0 <= int(match.group(1)) < 360


class TestPresenceView:

    def test_snapshot_most_recent_first(self, view, tracker, clock):
        visit(tracker, "alice", HexCell(10, 10), T0 - 30_000)
        visit(tracker, "bob", HexCell(12, 12), T0 - 5_000)

        players = view.snapshot()

        assert [p.username for p in players] == ["bob", "alice"]
        assert players[0].cell == HexCell(12, 12)
        assert players[0].seconds_since_update == pytest.approx(5.0)
        assert players[1].color == player_color("alice")

    def test_snapshot_excludes_expired(self, view, tracker, clock):
        visit(tracker, "alice", HexCell(10, 10), T0)
        clock.now += 121
        assert view.snapshot() == []

    def test_trail_is_chronological(self, view, tracker):
        visit(tracker, "alice", HexCell(10, 10), T0)
        visit(tracker, "alice", HexCell(10, 11), T0 + 1000)
        visit(tracker, "alice", HexCell(10, 10), T0 + 2000)

        trail = view.get_trail("alice")

        assert [p["timestamp"] for p in trail["points"]] == [T0, T0 + 1000, T0 + 2000]
        assert trail["start"]["cell"] == "10-10"
        assert trail["end"]["timestamp"] == T0 + 2000
        assert trail["visitedCells"] == ["10-10", "10-11"]

    def test_trail_unknown_user(self, view):
        trail = view.get_trail("nobody")
        assert trail["points"] == []
        assert trail["start"] is None and trail["end"] is None

    def test_to_dict(self, view, tracker):
        visit(tracker, "alice", HexCell(10, 10), T0)
        data = view.snapshot()[0].to_dict()
        assert data["cell"] == {"row": 10, "col": 10}
        assert data["secondsSinceUpdate"] == 0.0
