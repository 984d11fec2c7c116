"""Tests for the FastAPI API endpoints."""
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from api import api, validate_limit, ValidationError
from game_manager import GameManager
from hex_grid import HexCell
from location_store import InMemoryLocationStore, StoreUnavailableError

T0 = 1_700_000_000_000


@pytest.fixture
def manager():
    """Fresh game with an in-memory store."""
    GameManager.reset_instance()
    with patch("game_manager.create_store", return_value=InMemoryLocationStore()):
        instance = GameManager.get_instance()
    yield instance
    GameManager.reset_instance()


@pytest.fixture
def client(manager):
    """Create a test client for the FastAPI app."""
    return TestClient(api)


def gps_body(manager, username, cell, timestamp=T0):
    center = manager.grid.cell_center(cell)
    return {
        "username": username,
        "timestamp": timestamp,
        "coords": {"latitude": center.lat, "longitude": center.lng, "accuracy": 4.0},
    }


class TestValidateLimit:

    def test_valid(self):
        assert validate_limit(None) is None
        assert validate_limit(5) == 5

    def test_invalid(self):
        with pytest.raises(ValidationError):
            validate_limit(0)


class TestHealthEndpoint:

    def test_health_check(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_store_down(self, client, manager):
        with patch.object(manager.store, "ping", side_effect=StoreUnavailableError("down")):
            response = client.get("/api/health")
        assert response.status_code == 503
        assert response.json()["status"] == "error"


class TestGpsStream:
    """Tests for reporting positions."""

    def test_accepts_fix(self, client, manager):
        response = client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10)))
        assert response.status_code == 200
        assert response.json() == {"status": "success", "cell": {"row": 10, "col": 10}}

    def test_missing_timestamp_uses_receive_time(self, client, manager):
        body = gps_body(manager, "alice", HexCell(10, 10))
        del body["timestamp"]
        response = client.post("/api/gps-stream", json=body)
        assert response.status_code == 200
        assert manager.tracker.get_current("alice").timestamp > 0

    def test_outside_area_rejected(self, client, manager):
        response = client.post("/api/gps-stream", json={
            "username": "alice",
            "timestamp": T0,
            "coords": {"latitude": 37.70, "longitude": -122.52},
        })
        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert manager.tracker.get_history("alice") == []

    def test_missing_coords_rejected(self, client):
        response = client.post("/api/gps-stream", json={"username": "alice", "timestamp": T0})
        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert "coords" in response.json()["message"]

    def test_string_coordinates_not_coerced(self, client, manager):
        body = gps_body(manager, "alice", HexCell(5, 5))
        body["coords"]["latitude"] = str(body["coords"]["latitude"])
        body["coords"]["longitude"] = str(body["coords"]["longitude"])
        response = client.post("/api/gps-stream", json=body)
        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert manager.tracker.get_current("alice") is None

    def test_string_timestamp_not_coerced(self, client, manager):
        body = gps_body(manager, "alice", HexCell(5, 5))
        body["timestamp"] = str(T0)
        response = client.post("/api/gps-stream", json=body)
        assert response.status_code == 422
        assert manager.tracker.get_history("alice") == []

    def test_integer_numbers_accepted(self, client):
        body = {"username": "alice", "timestamp": T0, "coords": {"latitude": 37.8, "longitude": -122.4, "accuracy": 5}}
        assert client.post("/api/gps-stream", json=body).status_code == 200

    def test_far_future_timestamp_rejected(self, client, manager):
        body = gps_body(manager, "eve", HexCell(5, 5), timestamp=9_000_000_000_000_000)
        response = client.post("/api/gps-stream", json=body)
        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert manager.tracker.get_current("eve") is None
        assert manager.tracker.get_history("eve") == []

    def test_blank_username_rejected(self, client, manager):
        body = gps_body(manager, "   ", HexCell(10, 10))
        response = client.post("/api/gps-stream", json=body)
        assert response.status_code == 422

    def test_store_down(self, client, manager):
        with patch.object(manager.store, "set_current", side_effect=StoreUnavailableError("down")):
            response = client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10)))
        assert response.status_code == 503


class TestUserEndpoints:
    """Tests for presence and history reads."""

    def test_active_users(self, client, manager):
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10)))
        response = client.get("/api/active-users")
        data = response.json()["data"]
        assert list(data) == ["alice"]
        assert data["alice"]["coords"]["accuracy"] == 4.0

    def test_users_with_history(self, client, manager):
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10), T0))
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 11), T0 + 1000))
        data = client.get("/api/users-with-history").json()["data"]
        assert data["alice"]["current"]["timestamp"] == T0 + 1000
        assert [r["timestamp"] for r in data["alice"]["history"]] == [T0 + 1000, T0]

    def test_history_limit(self, client, manager):
        for i in range(3):
            client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10), T0 + i))
        response = client.get("/api/users/alice/history", params={"limit": 2})
        assert [r["timestamp"] for r in response.json()["history"]] == [T0 + 2, T0 + 1]

    def test_history_invalid_limit(self, client):
        response = client.get("/api/users/alice/history", params={"limit": 0})
        assert response.status_code == 422

    def test_unknown_user_history_is_empty(self, client):
        response = client.get("/api/users/nobody/history")
        assert response.status_code == 200
        assert response.json()["history"] == []

    def test_visited_cells(self, client, manager):
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10), T0))
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10), T0 + 1))
        response = client.get("/api/users/alice/visited-cells")
        assert response.json()["count"] == 1
        assert response.json()["cells"] == [{"row": 10, "col": 10}]

    def test_presence_and_trail(self, client, manager):
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10)))
        players = client.get("/api/presence").json()["players"]
        assert players[0]["username"] == "alice"
        assert players[0]["color"].startswith("hsl(")

        trail = client.get("/api/presence/alice/trail").json()
        assert trail["visitedCells"] == ["10-10"]


class TestLeaderboardEndpoint:

    def test_leaderboard(self, client, manager):
        client.post("/api/gps-stream", json=gps_body(manager, "alice", HexCell(10, 10), T0))
        client.post("/api/gps-stream", json=gps_body(manager, "bob", HexCell(20, 20), T0 + 1000))

        body = client.get("/api/leaderboard").json()

        assert body["status"] == "success"
        assert body["totalUsers"] == 2
        assert body["totalUniqueHexagons"] == 2
        assert [e["username"] for e in body["leaderboard"]] == ["bob", "alice"]
        assert body["leaderboard"][0]["totalPoints"] == 10


class TestGridEndpoints:

    def test_challenge_hexagons(self, client, manager):
        hexagons = client.get("/api/hexagons").json()["hexagons"]
        assert len(hexagons) == len(manager.catalog)
        assert all("task" in h for h in hexagons)

    def test_grid_paging(self, client):
        first = client.get("/api/grid", params={"offset": 0, "limit": 5}).json()
        second = client.get("/api/grid", params={"offset": 5, "limit": 5}).json()

        assert [c["id"] for c in first["cells"]] == ["hex-0-0", "hex-0-1", "hex-0-2", "hex-0-3", "hex-0-4"]
        assert first["nextOffset"] == 5
        assert second["cells"][0]["id"] == "hex-0-5"

    def test_grid_limit_bounds(self, client):
        response = client.get("/api/grid", params={"limit": 0})
        assert response.status_code == 422
        assert response.json()["status"] == "error"
        assert client.get("/api/grid", params={"limit": 100_000}).status_code == 422

    def test_grid_last_page(self, client, manager):
        total = manager.grid.describe()["cell_count"]
        body = client.get("/api/grid", params={"offset": total - 2, "limit": 5}).json()
        assert len(body["cells"]) == 2
        assert body["nextOffset"] is None

    def test_grid_summary(self, client):
        grid = client.get("/api/grid/summary").json()["grid"]
        assert grid["radius_m"] == 100.0
        assert grid["cell_count"] > 0

    def test_locate(self, client, manager):
        center = manager.grid.cell_center(HexCell(10, 10))
        body = client.get("/api/locate", params={"lat": center.lat, "lng": center.lng}).json()
        assert body["cell"] == {"row": 10, "col": 10}

    def test_locate_outside(self, client):
        body = client.get("/api/locate", params={"lat": 37.70, "lng": -122.52}).json()
        assert body["cell"] is None
        assert body["challenge"] is None

    def test_cell_by_key(self, client, manager):
        body = client.get("/api/cells/10-10").json()
        assert body["cell"] == {"row": 10, "col": 10}
        assert body["center"] == manager.grid.cell_center(HexCell(10, 10)).to_dict()
        assert len(body["vertices"]) == 6

    def test_cell_by_key_includes_challenge(self, client, manager):
        cell, challenge = manager.catalog.entries()[0]
        body = client.get(f"/api/cells/{cell.key}").json()
        assert body["challenge"]["id"] == challenge.id

    def test_cell_outside_grid(self, client):
        response = client.get("/api/cells/-1-2")
        assert response.status_code == 404
        assert response.json()["status"] == "error"

    def test_cell_malformed_key(self, client):
        response = client.get("/api/cells/north-east")
        assert response.status_code == 422
        assert response.json()["status"] == "error"
