"""
External collaborators consumed by the mission controllers.

The geodesy frame converts degree-space positions into a local renderable
frame, and range sensors report detections when an agent reaches a waypoint.
Neither feeds back into planning or scheduling.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Protocol, Sequence, Set, Tuple

from shapely.geometry import Point


LOGGER = logging.getLogger("collaborators")

METERS_PER_DEG_LAT = 111_320.0

Position = Tuple[float, float, float]


@dataclass(frozen=True)
class Detection:
    """A single sensor return, located in degree space."""

    label: str
    lng: float
    lat: float


@dataclass(frozen=True)
class DetectionEvent:
    """A detection stamped with the reporting agent, its position and the time."""

    drone_id: int
    detection: Detection
    lng: float
    lat: float
    alt: float
    time: float


class Geodesy(Protocol):
    def to_render_frame(self, lng: float, lat: float, alt: float) -> Position:
        ...

    def from_render_frame(self, x: float, y: float, z: float) -> Position:
        ...


class RangeSensor(Protocol):
    def scan(self, position: Position) -> List[Detection]:
        ...


class LocalTangentFrame:
    """Flat east/north/up frame in metres around a reference lng/lat."""

    def __init__(self, origin_lng: float, origin_lat: float, origin_alt: float = 0.0):
        self.origin_lng = origin_lng
        self.origin_lat = origin_lat
        self.origin_alt = origin_alt
        meters_per_deg_lon = METERS_PER_DEG_LAT * math.cos(math.radians(origin_lat))
        if abs(meters_per_deg_lon) < 1e-6:
            meters_per_deg_lon = 1e-6
        self._meters_per_deg_lon = meters_per_deg_lon

    def to_render_frame(self, lng: float, lat: float, alt: float) -> Position:
        x = (lng - self.origin_lng) * self._meters_per_deg_lon
        y = (lat - self.origin_lat) * METERS_PER_DEG_LAT
        return x, y, alt - self.origin_alt

    def from_render_frame(self, x: float, y: float, z: float) -> Position:
        lng = x / self._meters_per_deg_lon + self.origin_lng
        lat = y / METERS_PER_DEG_LAT + self.origin_lat
        return lng, lat, z + self.origin_alt


class NullRangeSensor:
    """Sensor that never detects anything."""

    def scan(self, position: Position) -> List[Detection]:
        return []


class TargetListSensor:
    """
    Reports known point targets within a radius (degrees) of the scan position.

    Each target is reported once, the first time a scan comes within range of
    it. Share one instance across the fleet to deduplicate fleet-wide.
    """

    def __init__(self, targets: Iterable[Sequence[float]], radius: float, label: str = "target"):
        if radius <= 0:
            raise ValueError(f"Detection radius must be positive (got {radius!r}).")
        self.targets = [Point(float(t[0]), float(t[1])) for t in targets]
        self.radius = radius
        self.label = label
        self._reported: Set[int] = set()

    def scan(self, position: Position) -> List[Detection]:
        here = Point(position[0], position[1])
        found: List[Detection] = []
        for index, target in enumerate(self.targets):
            if index in self._reported or here.distance(target) > self.radius:
                continue
            self._reported.add(index)
            found.append(Detection(label=f"{self.label}-{index}", lng=target.x, lat=target.y))
        if found:
            LOGGER.debug("Scan at (%.6f, %.6f) found %d target(s).", position[0], position[1], len(found))
        return found

    @property
    def remaining(self) -> int:
        return len(self.targets) - len(self._reported)
