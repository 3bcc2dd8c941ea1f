"""
Coverage path generators for a single rectangular sector.

All generators work in lng/lat degrees inside the sector inset by spacing / 2
on every side, and return waypoints as (lng, lat) tuples in visiting order.
"""

from __future__ import annotations

import enum
import logging
from typing import List, Optional, Set, Tuple

import numpy as np


LOGGER = logging.getLogger("path_planner")

Waypoint = Tuple[float, float]

DEFAULT_SPACING = 0.0001
DEFAULT_WALK_STEPS = 500


class Algorithm(enum.Enum):
    """Supported coverage patterns."""

    LAWNMOWER = "lawnmower"
    SPIRAL = "spiral"
    EXPANDING_SQUARE = "expanding_square"
    RANDOM_WALK = "random_walk"

    @classmethod
    def from_name(cls, name: str) -> "Algorithm":
        key = name.strip().lower().replace("-", "_").replace(" ", "_")
        for algorithm in cls:
            if key in (algorithm.value, algorithm.name.lower(), algorithm.value.replace("_", "")):
                return algorithm
        choices = ", ".join(a.value for a in cls)
        raise ValueError(f"Unknown coverage algorithm '{name}'. Expected one of: {choices}.")


def _inset(sector, spacing: float) -> Tuple[float, float, float, float]:
    buffer = spacing * 0.5
    return (
        sector.min_lng + buffer,
        sector.max_lng - buffer,
        sector.min_lat + buffer,
        sector.max_lat - buffer,
    )


def generate_lawnmower_path(sector, spacing: float) -> List[Waypoint]:
    """Boustrophedon sweep of north-south columns, first column south to north."""

    min_lng, max_lng, min_lat, max_lat = _inset(sector, spacing)
    path: List[Waypoint] = []
    going_up = True
    lng = min_lng

    while lng <= max_lng:
        if going_up:
            path.append((lng, min_lat))
            path.append((lng, max_lat))
        else:
            path.append((lng, max_lat))
            path.append((lng, min_lat))
        going_up = not going_up
        lng += spacing

    return path


def generate_spiral_path(sector, spacing: float) -> List[Waypoint]:
    """Rectangular rings from the inset boundary inward, five points per ring."""

    min_lng, max_lng, min_lat, max_lat = _inset(sector, spacing)
    path: List[Waypoint] = []

    while min_lat < max_lat and min_lng < max_lng:
        path.append((min_lng, min_lat))
        path.append((max_lng, min_lat))
        path.append((max_lng, max_lat))
        path.append((min_lng, max_lat))
        # lead-in to the next ring's start corner
        path.append((min_lng, min_lat + spacing))

        min_lat += spacing
        max_lat -= spacing
        min_lng += spacing
        max_lng -= spacing

    return path


def generate_expanding_square_path(sector, spacing: float) -> List[Waypoint]:
    """Closed square rings around the sector centroid, growing by spacing."""

    center_lng = (sector.min_lng + sector.max_lng) / 2.0
    center_lat = (sector.min_lat + sector.max_lat) / 2.0
    max_radius = min(
        (sector.max_lng - sector.min_lng) / 2.0,
        (sector.max_lat - sector.min_lat) / 2.0,
    ) - spacing * 0.5

    path: List[Waypoint] = []
    radius = spacing
    while radius <= max_radius:
        path.append((center_lng - radius, center_lat - radius))
        path.append((center_lng + radius, center_lat - radius))
        path.append((center_lng + radius, center_lat + radius))
        path.append((center_lng - radius, center_lat + radius))
        path.append((center_lng - radius, center_lat - radius))
        radius += spacing

    return path


def generate_random_walk_path(
    sector,
    spacing: float,
    rng: Optional[np.random.Generator] = None,
    max_steps: int = DEFAULT_WALK_STEPS,
    key_precision: int = 6,
) -> List[Waypoint]:
    """
    Grid walk from the centroid that prefers unvisited neighbours.

    With no unvisited neighbour the walk steps to the first in-bounds one so it
    can escape dead ends. Each cell appears once in the output, in first-visit
    order. Stops after max_steps moves or when no neighbour is in bounds.
    """

    min_lng, max_lng, min_lat, max_lat = _inset(sector, spacing)
    if min_lng > max_lng or min_lat > max_lat:
        return []

    rng = rng if rng is not None else np.random.default_rng()
    directions = ((0.0, spacing), (0.0, -spacing), (spacing, 0.0), (-spacing, 0.0))

    def key(lng: float, lat: float) -> Tuple[float, float]:
        return round(lng, key_precision), round(lat, key_precision)

    def in_bounds(lng: float, lat: float) -> bool:
        return min_lng <= lng <= max_lng and min_lat <= lat <= max_lat

    lng = (sector.min_lng + sector.max_lng) / 2.0
    lat = (sector.min_lat + sector.max_lat) / 2.0
    visited: Set[Tuple[float, float]] = set()
    path: List[Waypoint] = []

    for _ in range(max_steps):
        cell = key(lng, lat)
        if cell not in visited:
            visited.add(cell)
            path.append((lng, lat))

        candidates = [(lng + d_lng, lat + d_lat) for d_lng, d_lat in directions]
        reachable = [c for c in candidates if in_bounds(*c)]
        if not reachable:
            break
        unvisited = [c for c in reachable if key(*c) not in visited]
        if unvisited:
            lng, lat = unvisited[int(rng.integers(len(unvisited)))]
        else:
            lng, lat = reachable[0]

    return path


class PathPlanner:
    """Dispatches a sector to one of the coverage generators."""

    def __init__(
        self,
        spacing: float = DEFAULT_SPACING,
        rng: Optional[np.random.Generator] = None,
        random_walk_steps: int = DEFAULT_WALK_STEPS,
        walk_key_precision: int = 6,
    ):
        if spacing <= 0:
            raise ValueError(f"Path spacing must be positive (got {spacing!r}).")
        self.spacing = spacing
        self.rng = rng if rng is not None else np.random.default_rng()
        self.random_walk_steps = random_walk_steps
        self.walk_key_precision = walk_key_precision

    def generate(self, sector, algorithm: Algorithm, spacing: Optional[float] = None) -> List[Waypoint]:
        """Return the ordered coverage path for one sector."""

        spacing = self.spacing if spacing is None else spacing
        if spacing <= 0:
            raise ValueError(f"Path spacing must be positive (got {spacing!r}).")

        if algorithm is Algorithm.LAWNMOWER:
            path = generate_lawnmower_path(sector, spacing)
        elif algorithm is Algorithm.SPIRAL:
            path = generate_spiral_path(sector, spacing)
        elif algorithm is Algorithm.EXPANDING_SQUARE:
            path = generate_expanding_square_path(sector, spacing)
        elif algorithm is Algorithm.RANDOM_WALK:
            path = generate_random_walk_path(
                sector,
                spacing,
                rng=self.rng,
                max_steps=self.random_walk_steps,
                key_precision=self.walk_key_precision,
            )
        else:
            raise ValueError(f"Unsupported coverage algorithm {algorithm!r}.")

        if not path:
            LOGGER.warning(
                "Sector %s is too small for %s at spacing %.7f; path is empty.",
                getattr(sector, "id", "?"),
                algorithm.value,
                spacing,
            )
        else:
            LOGGER.info(
                "Generated %d %s waypoints for sector %s.",
                len(path),
                algorithm.value,
                getattr(sector, "id", "?"),
            )
        return path
