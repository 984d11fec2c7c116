"""
Exploragon Hex Grid Module - Geospatial indexing on a staggered hexagon grid

This module provides:
- Spherical (great-circle) distance and destination-point arithmetic
- Bounding box and hex cell types
- Coordinate -> cell resolution (locate_cell)
- Lazy, restartable enumeration of every cell covering a bounding box

Geometry: flat-topped hexagons of circumradius R. Adjacent centers in a row
are DX = 1.73 * R apart, rows are DY = sqrt(3) * R apart and odd rows are
shifted east by DX / 2. Membership is circular: a point belongs to the first
cell (row-major scan order) whose center lies within R of it. Points that
fall between circles belong to no cell.

All offsets are computed on a sphere of radius 6,378,137 m, the same model the
map client uses, so server-side and client-side lookups agree.
"""

import math
import re
import threading
from dataclasses import dataclass
from functools import lru_cache
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

EARTH_RADIUS_M = 6378137.0

COLUMN_SPACING_FACTOR = 1.73
ROW_SPACING_FACTOR = math.sqrt(3)

HEX_BEARINGS = (0.0, 60.0, 120.0, 180.0, 240.0, 300.0)

_CELL_KEY = re.compile(r"(-?\d+)-(-?\d+)")


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass(frozen=True)
class Coordinates:
    """A WGS-84 position in decimal degrees."""
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict) -> "Coordinates":
        # Accept both the map ({lat, lng}) and the GPS ({latitude, longitude}) shapes
        if "lat" in data:
            return cls(lat=float(data["lat"]), lng=float(data["lng"]))
        return cls(lat=float(data["latitude"]), lng=float(data["longitude"]))


@dataclass(frozen=True)
class BoundingBox:
    """Rectangular playable region: (lng_min, lat_min, lng_max, lat_max)."""
    lng_min: float
    lat_min: float
    lng_max: float
    lat_max: float

    def __post_init__(self):
        if not self.lng_min < self.lng_max:
            raise ValueError(f"lng_min ({self.lng_min}) must be less than lng_max ({self.lng_max})")
        if not self.lat_min < self.lat_max:
            raise ValueError(f"lat_min ({self.lat_min}) must be less than lat_max ({self.lat_max})")

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "BoundingBox":
        lng_min, lat_min, lng_max, lat_max = (float(v) for v in values)
        return cls(lng_min, lat_min, lng_max, lat_max)

    @property
    def southwest(self) -> Coordinates:
        return Coordinates(lat=self.lat_min, lng=self.lng_min)

    def contains(self, point: Coordinates) -> bool:
        """Inclusive on every edge."""
        return (self.lat_min <= point.lat <= self.lat_max
                and self.lng_min <= point.lng <= self.lng_max)

    def to_list(self) -> List[float]:
        return [self.lng_min, self.lat_min, self.lng_max, self.lat_max]


@dataclass(frozen=True, order=True)
class HexCell:
    """Integer (row, col) address of one hexagon in the staggered grid."""
    row: int
    col: int

    @property
    def key(self) -> str:
        return f"{self.row}-{self.col}"

    @classmethod
    def from_key(cls, key: str) -> "HexCell":
        """Parse "row-col"; either part may be negative."""
        match = _CELL_KEY.fullmatch(key.strip())
        if match is None:
            raise ValueError(f"Invalid cell key {key!r}, expected 'row-col'")
        return cls(row=int(match.group(1)), col=int(match.group(2)))

    def to_dict(self) -> dict:
        return {"row": self.row, "col": self.col}


@dataclass(frozen=True)
class GridCell:
    """One enumerated hexagon with its geometry."""
    cell: HexCell
    center: Coordinates
    vertices: Tuple[Coordinates, ...]

    def to_dict(self) -> dict:
        return {
            "id": f"hex-{self.cell.key}",
            "row": self.cell.row,
            "col": self.cell.col,
            "center": self.center.to_dict(),
            "vertices": [v.to_dict() for v in self.vertices],
        }


# =============================================================================
# SPHERICAL GEOMETRY
# =============================================================================

def great_circle_distance_m(a: Coordinates, b: Coordinates) -> float:
    """Haversine distance in meters between two points."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def destination_point(origin: Coordinates, distance_m: float, bearing_deg: float) -> Coordinates:
    """Point reached by travelling distance_m along a great circle from origin.

    Args:
        origin: Start position.
        distance_m: Distance in meters.
        bearing_deg: Initial bearing, degrees clockwise from north.

    Returns:
        Destination coordinates. Longitude is not wrapped.
    """
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lng)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    sin_phi2 = min(1.0, max(-1.0, sin_phi2))
    phi2 = math.asin(sin_phi2)
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * sin_phi2,
    )
    return Coordinates(lat=math.degrees(phi2), lng=math.degrees(lambda2))


# =============================================================================
# HEX GRID
# =============================================================================

@dataclass
class _Row:
    row: int
    centers: List[Coordinates]
    lat_min: float
    lat_max: float


class HexGrid:
    """Staggered hexagon grid over a bounding box.

    Lookups use a lattice index built on first use. Enumeration never touches
    the index: every call walks the lattice from scratch.
    """

    def __init__(self, bbox: BoundingBox, radius_m: float):
        if radius_m <= 0:
            raise ValueError(f"radius_m must be positive, got {radius_m}")
        self.bbox = bbox
        self.radius_m = float(radius_m)
        self.dx = COLUMN_SPACING_FACTOR * self.radius_m
        self.dy = ROW_SPACING_FACTOR * self.radius_m
        self._rows: Optional[List[_Row]] = None
        self._index_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"HexGrid(bbox={self.bbox.to_list()}, radius_m={self.radius_m})"

    # ===== LATTICE =====

    def _row_origin(self, row: int) -> Coordinates:
        return destination_point(self.bbox.southwest, row * self.dy, 0.0)

    def _row_offset(self, row: int) -> float:
        return 0.0 if row % 2 == 0 else self.dx / 2.0

    def _iter_lattice(self) -> Iterator[Tuple[int, int, Coordinates]]:
        """Yield (row, col, center) in row-major scan order."""
        row = 0
        while True:
            origin = self._row_origin(row)
            if origin.lat > self.bbox.lat_max:
                return
            offset = self._row_offset(row)
            col = 0
            while True:
                center = destination_point(origin, offset + col * self.dx, 90.0)
                if center.lng > self.bbox.lng_max:
                    break
                yield row, col, center
                col += 1
            row += 1

    def _index(self) -> List[_Row]:
        if self._rows is None:
            with self._index_lock:
                if self._rows is None:
                    rows: Dict[int, List[Coordinates]] = {}
                    for row, _col, center in self._iter_lattice():
                        rows.setdefault(row, []).append(center)
                    self._rows = [
                        _Row(row=row,
                             centers=centers,
                             lat_min=min(c.lat for c in centers),
                             lat_max=max(c.lat for c in centers))
                        for row, centers in sorted(rows.items())
                    ]
        return self._rows

    # ===== LOOKUP =====

    def locate(self, point: Coordinates) -> Optional[HexCell]:
        """Resolve a coordinate to the cell containing it.

        Returns None when the point is outside the bounding box or lies in a
        gap between cell footprints.
        """
        if not self.bbox.contains(point):
            return None

        # Great-circle distance is never shorter than the latitude difference,
        # so rows whose centers all sit further than R north/south are skipped.
        margin = math.degrees(self.radius_m / EARTH_RADIUS_M) * (1.0 + 1e-9) + 1e-12
        for row in self._index():
            if point.lat < row.lat_min - margin or point.lat > row.lat_max + margin:
                continue
            for col, center in enumerate(row.centers):
                if great_circle_distance_m(center, point) <= self.radius_m:
                    return HexCell(row=row.row, col=col)
        return None

    def contains_cell(self, cell: HexCell) -> bool:
        if cell.row < 0 or cell.col < 0:
            return False
        origin = self._row_origin(cell.row)
        if origin.lat > self.bbox.lat_max:
            return False
        return self.cell_center(cell).lng <= self.bbox.lng_max

    def cell_center(self, cell: HexCell) -> Coordinates:
        origin = self._row_origin(cell.row)
        return destination_point(origin, self._row_offset(cell.row) + cell.col * self.dx, 90.0)

    def cell_vertices(self, cell: HexCell) -> Tuple[Coordinates, ...]:
        return self._vertices_around(self.cell_center(cell))

    def _vertices_around(self, center: Coordinates) -> Tuple[Coordinates, ...]:
        return tuple(destination_point(center, self.radius_m, b) for b in HEX_BEARINGS)

    def grid_cell(self, cell: HexCell) -> GridCell:
        center = self.cell_center(cell)
        return GridCell(cell=cell, center=center, vertices=self._vertices_around(center))

    # ===== ENUMERATION =====

    def enumerate_cells(self) -> Iterator[GridCell]:
        """Lazily yield every cell of the grid with its center and vertices."""
        for row, col, center in self._iter_lattice():
            yield GridCell(cell=HexCell(row=row, col=col),
                           center=center,
                           vertices=self._vertices_around(center))

    def describe(self) -> dict:
        rows = self._index()
        return {
            "bbox": self.bbox.to_list(),
            "radius_m": self.radius_m,
            "dx_m": self.dx,
            "dy_m": self.dy,
            "rows": len(rows),
            "max_cols": max((len(r.centers) for r in rows), default=0),
            "cell_count": sum(len(r.centers) for r in rows),
        }


# =============================================================================
# MODULE-LEVEL API
# =============================================================================

@lru_cache(maxsize=16)
def get_grid(bbox: BoundingBox, radius_m: float) -> HexGrid:
    """Shared grid instance per (bbox, radius)."""
    return HexGrid(bbox, radius_m)


def locate_cell(point: Coordinates, bbox: BoundingBox, radius_m: float) -> Optional[HexCell]:
    return get_grid(bbox, float(radius_m)).locate(point)


def enumerate_cells(bbox: BoundingBox, radius_m: float) -> Iterator[GridCell]:
    return get_grid(bbox, float(radius_m)).enumerate_cells()


def iter_cell_batches(cells: Iterable[GridCell], batch_size: int = 20) -> Iterator[List[GridCell]]:
    """Group an enumeration into lists of at most batch_size cells."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    iterator = iter(cells)
    while True:
        batch = list(islice(iterator, batch_size))
        if not batch:
            return
        yield batch
