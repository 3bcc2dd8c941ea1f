"""
Split a rectangular search area into equally sized sectors, one per agent.

The grid is laid out in flat lat/lng degree space. For N sectors every divisor
pair (cols, rows) with cols * rows == N is scored by how far its cells are from
square, and the first pair with the lowest score wins.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from shapely.geometry import MultiPoint, box


LOGGER = logging.getLogger("area_partitioner")

SECTOR_COLORS: Tuple[str, ...] = (
    "yellow",
    "green",
    "magenta",
    "cyan",
    "red",
    "blue",
    "white",
    "gray",
)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in degrees."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def lat_range(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_range(self) -> float:
        return self.max_lng - self.min_lng

    def to_polygon(self):
        return box(self.min_lng, self.min_lat, self.max_lng, self.max_lat)


@dataclass(frozen=True)
class Sector(BoundingBox):
    """One cell of the partition, owned by the agent with the same id."""

    id: int = 0
    color: str = SECTOR_COLORS[0]

    @property
    def center(self) -> Tuple[float, float]:
        """Centroid as (lng, lat)."""

        return (self.min_lng + self.max_lng) / 2.0, (self.min_lat + self.max_lat) / 2.0

    @property
    def spawn_point(self) -> Tuple[float, float]:
        """Launch position on the sector's bottom edge, as (lng, lat)."""

        return (self.min_lng + self.max_lng) / 2.0, self.min_lat


def bounding_box_from_corners(corners: Iterable[Sequence[float]]) -> BoundingBox:
    """Return the bounding box of geofence corners given as (lng, lat[, alt])."""

    points = [(float(c[0]), float(c[1])) for c in corners]
    if not points:
        raise ValueError("Geofence needs at least one corner.")
    min_lng, min_lat, max_lng, max_lat = MultiPoint(points).bounds
    LOGGER.info(
        "Geofence bounds: lat %.6f to %.6f, lng %.6f to %.6f",
        min_lat,
        max_lat,
        min_lng,
        max_lng,
    )
    return BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)


def best_grid(n: int, lng_range: float, lat_range: float) -> Tuple[int, int, float]:
    """
    Pick the (cols, rows) grid for n cells whose cells are closest to square.

    Ties keep the first pair found while scanning cols upward. A zero cell
    height scores as infinite, so a flat box falls back to 1 x n.

    Returns:
        (cols, rows, score)
    """

    cols, rows = 1, n
    best_score = math.inf
    for c in range(1, n + 1):
        if n % c != 0:
            continue
        r = n // c
        cell_lng = lng_range / c
        cell_lat = lat_range / r
        if cell_lat == 0:
            continue
        score = abs(1.0 - cell_lng / cell_lat)
        if score < best_score:
            best_score = score
            cols, rows = c, r
    return cols, rows, best_score


class AreaPartitioner:
    """Balanced grid partitioning of a bounding box into N sectors."""

    def __init__(self, colors: Sequence[str] = SECTOR_COLORS):
        if not colors:
            raise ValueError("At least one sector colour is required.")
        self.colors = tuple(colors)

    def partition(self, bbox: BoundingBox, n: int) -> List[Sector]:
        """Return n sectors, ids 0..n-1 in row-major order from the south-west corner."""

        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            raise ValueError(f"Sector count must be a positive integer (got {n!r}).")

        cols, rows, score = best_grid(n, bbox.lng_range, bbox.lat_range)
        sector_lat = bbox.lat_range / rows
        sector_lng = bbox.lng_range / cols

        sectors: List[Sector] = []
        for r in range(rows):
            for c in range(cols):
                sector_id = len(sectors)
                # Outer edges come straight from the bbox so the tiling is exact.
                sectors.append(
                    Sector(
                        min_lat=bbox.min_lat + r * sector_lat,
                        max_lat=bbox.max_lat if r == rows - 1 else bbox.min_lat + (r + 1) * sector_lat,
                        min_lng=bbox.min_lng + c * sector_lng,
                        max_lng=bbox.max_lng if c == cols - 1 else bbox.min_lng + (c + 1) * sector_lng,
                        id=sector_id,
                        color=self.colors[sector_id % len(self.colors)],
                    )
                )

        LOGGER.info("Created %d sectors in a %dx%d grid (aspect score %.3f).", len(sectors), cols, rows, score)
        return sectors

    def split_geofence(self, corners: Iterable[Sequence[float]], n: int) -> List[Sector]:
        """Partition the bounding box of a drawn geofence polygon."""

        return self.partition(bounding_box_from_corners(corners), n)
