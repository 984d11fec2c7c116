"""FastAPI server for the Exploragon game."""
import time
from itertools import islice
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictFloat, StrictInt, field_validator

from game_manager import get_game_manager
from hex_grid import Coordinates, HexCell
from location_store import StoreUnavailableError
from logger import setup_logger
from visit_tracker import InvalidLocationError

logger = setup_logger("api")


# === Centralized Error Handling ===

class APIError(Exception):
    """Base API error with status code and message."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ValidationError(APIError):
    """Input validation error."""
    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=422)


class ServiceUnavailableError(APIError):
    """Backing store unreachable."""
    def __init__(self, message: str = "Location store unavailable"):
        super().__init__(message, status_code=503)


MAX_GRID_PAGE = 2000

# Create FastAPI app
api = FastAPI(title="Exploragon API", version="1.0.0")

# Permissive CORS for mobile clients
api.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Global Exception Handlers ===

@api.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Handle all APIError subclasses with consistent JSON response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message}
    )


@api.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies and query parameters in the common error envelope."""
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return await api_error_handler(request, ValidationError(problems or "Invalid input"))


@api.exception_handler(StoreUnavailableError)
async def store_error_handler(request: Request, exc: StoreUnavailableError):
    return await api_error_handler(request, ServiceUnavailableError(str(exc)))


@api.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    """Handle unexpected errors with consistent JSON response."""
    logger.exception(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )


# Pydantic models for request/response
class GpsCoords(BaseModel):
    latitude: StrictFloat
    longitude: StrictFloat
    accuracy: Optional[StrictFloat] = None
    altitude: Optional[StrictFloat] = None
    altitudeAccuracy: Optional[StrictFloat] = None
    heading: Optional[StrictFloat] = None
    speed: Optional[StrictFloat] = None


class GpsPayload(BaseModel):
    username: str
    timestamp: Optional[StrictInt] = None
    coords: GpsCoords

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('username must not be blank')
        return v.strip()


def validate_limit(limit: Optional[int]) -> Optional[int]:
    if limit is not None and limit < 1:
        raise ValidationError("limit must be at least 1")
    return limit


# Routes

@api.get("/api/health")
def health():
    """API health check, including a store round trip."""
    get_game_manager().store.ping()
    return {"status": "ok", "message": "Exploragon API"}


@api.post("/api/gps-stream")
def gps_stream(payload: GpsPayload):
    """Accept one GPS fix from a player's device."""
    manager = get_game_manager()
    data = payload.model_dump()
    if data["timestamp"] is None:
        data["timestamp"] = int(time.time() * 1000)
    try:
        cell = manager.tracker.record_location(data)
    except InvalidLocationError as e:
        raise ValidationError(str(e))
    return {"status": "success", "cell": cell.to_dict() if cell else None}


@api.get("/api/active-users")
def get_active_users():
    """Players with an unexpired current fix."""
    users = get_game_manager().tracker.get_active_users()
    return {"status": "success", "data": {u: e.to_record() for u, e in users.items()}}


@api.get("/api/users-with-history")
def get_users_with_history():
    """Every known player's current fix and retained history."""
    return {"status": "success", "data": get_game_manager().tracker.get_all_users_with_history()}


@api.get("/api/users/{username}/history")
def get_user_history(username: str, limit: Optional[int] = None):
    """A player's fixes, most recent first. Unknown players have an empty history."""
    validate_limit(limit)
    history = get_game_manager().tracker.get_history(username, limit)
    return {"status": "success", "username": username, "history": [e.to_record() for e in history]}


@api.get("/api/users/{username}/visited-cells")
def get_user_visited_cells(username: str):
    """Distinct cells a player's retained history resolves into."""
    cells = sorted(get_game_manager().tracker.get_visited_cells(username))
    return {
        "status": "success",
        "username": username,
        "count": len(cells),
        "cells": [c.to_dict() for c in cells],
    }


@api.get("/api/leaderboard")
def get_leaderboard():
    """Players ranked by distinct hexagons explored."""
    board = get_game_manager().leaderboard()
    return {"status": "success", **board.to_dict()}


@api.get("/api/presence")
def get_presence():
    """Active players with cell and marker colour for the admin map."""
    players = get_game_manager().presence.snapshot()
    return {"status": "success", "players": [p.to_dict() for p in players]}


@api.get("/api/presence/{username}/trail")
def get_player_trail(username: str, limit: Optional[int] = None):
    """Chronological path of one player's retained fixes."""
    validate_limit(limit)
    return {"status": "success", **get_game_manager().presence.get_trail(username, limit)}


@api.get("/api/hexagons")
def get_challenge_hexagons():
    """Cells holding a challenge, with geometry and task details."""
    catalog = get_game_manager().catalog
    return {"status": "success", "hexagons": catalog.to_hexagon_data()}


@api.get("/api/grid/summary")
def get_grid_summary():
    return {"status": "success", "grid": get_game_manager().grid.describe()}


@api.get("/api/grid")
def get_grid_cells(offset: int = Query(0, ge=0), limit: int = Query(200, ge=1, le=MAX_GRID_PAGE)):
    """A window over the full grid enumeration, for progressive overlay drawing."""
    cells = list(islice(get_game_manager().grid.enumerate_cells(), offset, offset + limit + 1))
    has_more = len(cells) > limit
    cells = cells[:limit]
    return {
        "status": "success",
        "offset": offset,
        "limit": limit,
        "nextOffset": offset + limit if has_more else None,
        "cells": [c.to_dict() for c in cells],
    }


@api.get("/api/locate")
def locate(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180)):
    """Resolve a coordinate to its cell (null outside the grid or between cells)."""
    manager = get_game_manager()
    cell = manager.grid.locate(Coordinates(lat=lat, lng=lng))
    challenge = manager.catalog.get(cell) if cell else None
    return {
        "status": "success",
        "cell": cell.to_dict() if cell else None,
        "challenge": challenge.to_dict() if challenge else None,
    }


@api.get("/api/cells/{key}")
def get_cell(key: str):
    """Geometry and challenge for one cell, addressed by its "row-col" key."""
    try:
        cell = HexCell.from_key(key)
    except ValueError as e:
        raise ValidationError(str(e))
    manager = get_game_manager()
    if not manager.grid.contains_cell(cell):
        raise NotFoundError(f"Cell {key} is not part of the grid")
    challenge = manager.catalog.get(cell)
    return {
        "status": "success",
        "cell": cell.to_dict(),
        "center": manager.grid.cell_center(cell).to_dict(),
        "vertices": [v.to_dict() for v in manager.grid.cell_vertices(cell)],
        "challenge": challenge.to_dict() if challenge else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api:api", host="0.0.0.0", port=8000, reload=True)
