"""
Per-agent mission execution as a resumable, tick-driven simulation.

Each MissionController owns one agent's waypoint queue. An external driver
calls tick(dt) once per simulation step; the controller climbs to cruise
altitude, flies the queue in order, records coverage at every arrival and
hands the position to its range sensor. The fleet coordinator may replace or
split the queue between ticks through assign_new_waypoints and
split_remaining_waypoints.

State machine:
    IDLE -> TAKING_OFF -> EN_ROUTE -> SCANNING -> (EN_ROUTE | COMPLETE)
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from collaborators import DetectionEvent, Geodesy, Position, RangeSensor
from path_planner import Waypoint
from swarm_config import ConfigError, SwarmConfig


BASE_LOGGER = logging.getLogger("mission_controller")

CoverageCell = Tuple[float, float]


class DroneLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with the drone ID."""

    def process(self, msg, kwargs):
        prefix = f"[Drone {self.extra['drone_id']}] "
        return f"{prefix}{msg}", kwargs


class MissionPhase(enum.Enum):
    IDLE = "idle"
    TAKING_OFF = "taking_off"
    EN_ROUTE = "en_route"
    SCANNING = "scanning"
    COMPLETE = "complete"


class Role(enum.Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


@dataclass(frozen=True)
class AgentState:
    """Read-only snapshot of one agent, for reporting and visualisation."""

    drone_id: int
    role: Role
    phase: MissionPhase
    lng: float
    lat: float
    alt: float
    remaining: int
    covered_cells: int
    total_cells: int
    coverage_percent: float
    mission_complete: bool
    stuck: bool


def coverage_cell_key(waypoint: Sequence[float], precision: int = 5) -> CoverageCell:
    """Round a waypoint to the coverage-cell grid used for deduplication."""

    return round(waypoint[0], precision), round(waypoint[1], precision)


class MissionController:
    """Executes one agent's coverage path."""

    def __init__(
        self,
        drone_id: int,
        config: SwarmConfig,
        geodesy: Geodesy,
        sensor: RangeSensor,
        start_position: Position = (0.0, 0.0, 0.0),
        speed: Optional[float] = None,
    ):
        if config is None:
            raise ConfigError("MissionController requires a SwarmConfig.")
        if geodesy is None:
            raise ConfigError(f"Drone {drone_id}: geodesy collaborator is required.")
        if sensor is None:
            raise ConfigError(f"Drone {drone_id}: range sensor collaborator is required.")
        self.config = config.validate()
        self.geodesy = geodesy
        self.sensor = sensor

        self.id = drone_id
        self.role = Role.FOLLOWER
        self.speed = config.speed if speed is None else speed
        if self.speed < 0:
            raise ConfigError(f"Drone {drone_id}: speed must not be negative (got {self.speed!r}).")
        self.logger = DroneLoggerAdapter(BASE_LOGGER, {"drone_id": drone_id})
        self.lock = threading.RLock()

        lng, lat, alt = start_position
        self.lng = lng
        self.lat = lat
        self.target_altitude = alt
        self.altitude = alt - config.takeoff_height

        self.sector = None
        self.phase = MissionPhase.IDLE
        self._initialized = False
        self._waypoints: List[Waypoint] = []
        self._current_index = 0
        self._covered_cells: Set[CoverageCell] = set()
        self.total_cells = 0
        self.coverage_percent = 0.0

        self._stuck_timer = 0.0
        self._last_lng = lng
        self._last_lat = lat
        self.elapsed = 0.0
        self.detections: List[DetectionEvent] = []

    # -- setup -----------------------------------------------------------

    def initialize(self, sector, path: Sequence[Waypoint], drone_id: Optional[int] = None) -> None:
        """Store the planned path. Calling again once initialised does nothing."""

        with self.lock:
            if self._initialized:
                self.logger.debug("Already initialised; ignoring second initialize().")
                return
            if drone_id is not None and drone_id != self.id:
                self.id = drone_id
                self.logger = DroneLoggerAdapter(BASE_LOGGER, {"drone_id": drone_id})
            self.sector = sector
            self._replace_queue(path)
            self._initialized = True
            self.logger.info(
                "Initialised with %d waypoints for sector %s.",
                len(self._waypoints),
                getattr(sector, "id", "?"),
            )

    def start_mission(self) -> None:
        """Leave IDLE and begin takeoff. Does nothing once the mission is running."""

        with self.lock:
            if self.phase is not MissionPhase.IDLE:
                return
            if not self._initialized:
                self.logger.warning("Started without a planned path.")
                self._initialized = True
            if self.get_remaining_waypoints() == 0:
                self._complete()
                return
            self.phase = MissionPhase.TAKING_OFF
            self.logger.info(
                "Taking off from %.1f to %.1f.",
                self.altitude,
                self.target_altitude,
            )

    # -- simulation ------------------------------------------------------

    def tick(self, dt: float) -> None:
        """Advance this agent by dt time-units."""

        if dt < 0:
            raise ValueError(f"Tick duration must not be negative (got {dt!r}).")
        with self.lock:
            self.elapsed += dt
            if self.phase is MissionPhase.TAKING_OFF:
                self._climb(dt)
            elif self.phase is MissionPhase.EN_ROUTE:
                self._fly(dt)
                self._update_stuck_timer(dt)

    def _climb(self, dt: float) -> None:
        delta = self.target_altitude - self.altitude
        if abs(delta) > self.config.altitude_tolerance:
            step = min(self.config.takeoff_rate * dt, abs(delta))
            self.altitude += math.copysign(step, delta)
        if abs(self.target_altitude - self.altitude) <= self.config.altitude_tolerance:
            self.altitude = self.target_altitude
            self._begin_traverse()

    def _begin_traverse(self) -> None:
        self._stuck_timer = 0.0
        self._last_lng, self._last_lat = self.lng, self.lat
        if self._current_index >= len(self._waypoints):
            self._complete()
            return
        self.phase = MissionPhase.EN_ROUTE
        target = self._waypoints[self._current_index]
        self.logger.info("At altitude %.1f; heading to (%.6f, %.6f).", self.altitude, target[0], target[1])

    def _fly(self, dt: float) -> None:
        if self._current_index >= len(self._waypoints):
            self._complete()
            return

        target_lng, target_lat = self._waypoints[self._current_index]
        d_lng = target_lng - self.lng
        d_lat = target_lat - self.lat
        dist = math.hypot(d_lng, d_lat)

        if dist >= self.config.arrival_epsilon:
            step = self.speed * dt * self.config.speed_scale
            ratio = min(step / dist, 1.0)
            self.lng += d_lng * ratio
            self.lat += d_lat * ratio
            dist = math.hypot(target_lng - self.lng, target_lat - self.lat)

        if dist < self.config.arrival_epsilon:
            self._arrive(target_lng, target_lat)

    def _arrive(self, target_lng: float, target_lat: float) -> None:
        self.lng = target_lng
        self.lat = target_lat
        self._covered_cells.add(coverage_cell_key((target_lng, target_lat), self.config.coverage_precision))
        self._recompute_coverage()
        self.logger.debug(
            "Reached waypoint %d at (%.6f, %.6f); coverage %.1f%%.",
            self._current_index,
            target_lng,
            target_lat,
            self.coverage_percent,
        )

        self.phase = MissionPhase.SCANNING
        self._scan()

        self._current_index += 1
        if self._current_index >= len(self._waypoints):
            self._complete()
        else:
            self.phase = MissionPhase.EN_ROUTE

    def _scan(self) -> None:
        position = (self.lng, self.lat, self.altitude)
        for detection in self.sensor.scan(position):
            event = DetectionEvent(
                drone_id=self.id,
                detection=detection,
                lng=self.lng,
                lat=self.lat,
                alt=self.altitude,
                time=self.elapsed,
            )
            self.detections.append(event)
            self.logger.info(
                "Detection %s at lat=%.6f lng=%.6f (drone at lat=%.5f lng=%.5f).",
                detection.label,
                detection.lat,
                detection.lng,
                self.lat,
                self.lng,
            )

    def _complete(self) -> None:
        self.phase = MissionPhase.COMPLETE
        self._stuck_timer = 0.0
        self.logger.info("Mission complete. Coverage: %.1f%%", self.coverage_percent)

    def _update_stuck_timer(self, dt: float) -> None:
        if self.phase is not MissionPhase.EN_ROUTE:
            return
        moved = math.hypot(self.lng - self._last_lng, self.lat - self._last_lat)
        if moved < self.config.stuck_epsilon:
            was_stuck = self.is_stuck()
            self._stuck_timer += dt
            if not was_stuck and self.is_stuck():
                self.logger.warning("No movement for %.1f time-units.", self._stuck_timer)
        else:
            self._stuck_timer = 0.0
            self._last_lng, self._last_lat = self.lng, self.lat

    def _recompute_coverage(self) -> None:
        if self.total_cells == 0:
            self.coverage_percent = 100.0
        else:
            self.coverage_percent = len(self._covered_cells) / self.total_cells * 100.0

    def _replace_queue(self, path: Sequence[Waypoint]) -> None:
        self._waypoints = [(float(p[0]), float(p[1])) for p in path]
        self._current_index = 0
        self._covered_cells = set()
        self.total_cells = len(self._waypoints)
        self._recompute_coverage()

    # -- queue mutation used by the fleet coordinator --------------------

    def get_remaining_waypoints(self) -> int:
        with self.lock:
            return len(self._waypoints) - self._current_index

    def split_remaining_waypoints(self) -> List[Waypoint]:
        """Remove and return the second half of the unvisited queue."""

        with self.lock:
            remaining = len(self._waypoints) - self._current_index
            split_point = self._current_index + remaining // 2
            second_half = self._waypoints[split_point:]
            del self._waypoints[split_point:]
            self.logger.debug(
                "Released %d of %d remaining waypoints.",
                len(second_half),
                remaining,
            )
            return second_half

    def assign_new_waypoints(self, new_path: Sequence[Waypoint]) -> None:
        """Replace the whole queue, restarting coverage bookkeeping from zero."""

        with self.lock:
            self._replace_queue(new_path)
            self._initialized = True
            self._stuck_timer = 0.0
            self._last_lng, self._last_lat = self.lng, self.lat
            if self.phase is MissionPhase.COMPLETE:
                self.phase = MissionPhase.IDLE
            self.logger.info("Assigned %d new waypoints.", self.total_cells)

    # -- accessors -------------------------------------------------------

    @property
    def mission_complete(self) -> bool:
        with self.lock:
            return self.phase is MissionPhase.COMPLETE

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def covered_cells(self) -> int:
        return len(self._covered_cells)

    def is_stuck(self) -> bool:
        with self.lock:
            return self._stuck_timer > self.config.stuck_threshold and not self.mission_complete

    def get_position(self) -> Tuple[float, float]:
        with self.lock:
            return self.lng, self.lat

    def get_coverage(self) -> float:
        with self.lock:
            return self.coverage_percent

    def get_render_position(self) -> Position:
        return self.geodesy.to_render_frame(self.lng, self.lat, self.altitude)

    def remaining_path(self) -> List[Waypoint]:
        with self.lock:
            return list(self._waypoints[self._current_index:])

    def snapshot(self) -> AgentState:
        with self.lock:
            return AgentState(
                drone_id=self.id,
                role=self.role,
                phase=self.phase,
                lng=self.lng,
                lat=self.lat,
                alt=self.altitude,
                remaining=self.get_remaining_waypoints(),
                covered_cells=len(self._covered_cells),
                total_cells=self.total_cells,
                coverage_percent=self.coverage_percent,
                mission_complete=self.mission_complete,
                stuck=self.is_stuck(),
            )

    def __repr__(self) -> str:
        return (
            f"MissionController(id={self.id}, role={self.role.value}, phase={self.phase.value}, "
            f"remaining={self.get_remaining_waypoints()})"
        )
