"""
Multi-agent area-coverage mission: assembly, simulation driver and CLI.

The search area is split into one sector per agent, each sector gets a
coverage path, and every agent flies its path under a MissionController while
the leader's FleetCoordinator re-tasks stuck or idle followers. Everything runs
in-process on an explicit simulation clock:

    for each step: tick every MissionController, then the FleetCoordinator

Example:
    swarm-coverage --bbox 47.3970 47.3990 8.5440 8.5470 --sectors 4 \
        --algorithm lawnmower --stall-agent 2 --log-level INFO
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from area_partitioner import AreaPartitioner, BoundingBox, Sector, bounding_box_from_corners
from collaborators import DetectionEvent, Geodesy, LocalTangentFrame, NullRangeSensor, RangeSensor, TargetListSensor
from fleet_coordinator import LEADER_POLICIES, FleetCoordinator, LeaderPolicy, Reassignment, lowest_id_leader
from mission_controller import AgentState, MissionController
from path_planner import Algorithm, PathPlanner, Waypoint
from swarm_config import ConfigError, SwarmConfig


LOGGER = logging.getLogger("coverage_mission")

SensorFactory = Callable[[Sector], RangeSensor]
Area = Union[BoundingBox, Sequence[Sequence[float]]]


@dataclass
class Fleet:
    """Everything assembled for one mission session."""

    config: SwarmConfig
    sectors: List[Sector]
    paths: Dict[int, List[Waypoint]]
    controllers: List[MissionController]
    coordinator: FleetCoordinator

    def controller(self, drone_id: int) -> MissionController:
        for controller in self.controllers:
            if controller.id == drone_id:
                return controller
        raise KeyError(f"No drone with id {drone_id}.")


@dataclass
class MissionSummary:
    elapsed: float
    steps: int
    all_complete: bool
    agents: List[AgentState]
    reassignments: List[Reassignment]
    detections: List[DetectionEvent] = field(default_factory=list)

    @property
    def mean_coverage(self) -> float:
        if not self.agents:
            return 0.0
        return float(np.mean([agent.coverage_percent for agent in self.agents]))


def _null_sensor(sector: Sector) -> RangeSensor:
    return NullRangeSensor()


def assemble_fleet(
    config: SwarmConfig,
    area: Area,
    geodesy: Optional[Geodesy] = None,
    sensor_factory: Optional[SensorFactory] = None,
    leader_policy: LeaderPolicy = lowest_id_leader,
    rng: Optional[np.random.Generator] = None,
    speeds: Optional[Dict[int, float]] = None,
) -> Fleet:
    """
    Partition the area, plan one path per sector and wire the fleet together.

    Args:
        area: a BoundingBox, or geofence corners as (lng, lat) pairs.
        geodesy: render-frame converter; defaults to a LocalTangentFrame at the
            area's south-west corner.
        sensor_factory: called once per sector to build that agent's sensor.
        speeds: per-drone speed overrides, keyed by drone id.
    """

    config.validate()
    bbox = area if isinstance(area, BoundingBox) else bounding_box_from_corners(area)
    if geodesy is None:
        geodesy = LocalTangentFrame(bbox.min_lng, bbox.min_lat)
    if sensor_factory is None:
        sensor_factory = _null_sensor
    if rng is None:
        rng = np.random.default_rng(config.seed)
    speeds = speeds or {}

    sectors = AreaPartitioner().partition(bbox, int(config.sector_count))
    planner = PathPlanner(
        spacing=config.spacing,
        rng=rng,
        random_walk_steps=config.random_walk_steps,
        walk_key_precision=config.walk_key_precision,
    )

    paths: Dict[int, List[Waypoint]] = {}
    controllers: List[MissionController] = []
    for index, sector in enumerate(sectors):
        path = planner.generate(sector, config.algorithm)
        paths[sector.id] = path
        spawn_lng, spawn_lat = sector.spawn_point
        altitude = config.base_altitude + index * config.altitude_step
        controller = MissionController(
            drone_id=sector.id,
            config=config,
            geodesy=geodesy,
            sensor=sensor_factory(sector),
            start_position=(spawn_lng, spawn_lat, altitude),
            speed=speeds.get(sector.id),
        )
        controller.initialize(sector, path)
        controllers.append(controller)

    coordinator = FleetCoordinator(controllers, config, leader_policy=leader_policy)
    return Fleet(config=config, sectors=sectors, paths=paths, controllers=controllers, coordinator=coordinator)


class SwarmSimulation:
    """External driver: owns the simulation clock and the tick ordering."""

    def __init__(self, fleet: Fleet):
        if fleet is None:
            raise ConfigError("SwarmSimulation requires an assembled fleet.")
        self.fleet = fleet
        self.time = 0.0
        self.steps = 0

    @property
    def all_complete(self) -> bool:
        return all(c.mission_complete for c in self.fleet.controllers)

    @property
    def finished(self) -> bool:
        """Every agent has been launched and has completed its queue."""

        return self.fleet.coordinator.schedule.finished and self.all_complete

    def step(self, dt: float) -> None:
        """Tick every agent, then let the coordinator see post-movement state."""

        if dt <= 0:
            raise ValueError(f"Simulation step must be positive (got {dt!r}).")
        for controller in self.fleet.controllers:
            controller.tick(dt)
        self.fleet.coordinator.tick(dt)
        self.time += dt
        self.steps += 1

    def run(self, max_time: float, dt: float = 0.1) -> MissionSummary:
        """Step until every agent is complete or max_time has elapsed."""

        while self.time < max_time:
            self.step(dt)
            if self.finished:
                break
        return self.summary()

    def summary(self) -> MissionSummary:
        detections: List[DetectionEvent] = []
        for controller in self.fleet.controllers:
            detections.extend(controller.detections)
        detections.sort(key=lambda event: event.time)
        return MissionSummary(
            elapsed=self.time,
            steps=self.steps,
            all_complete=self.all_complete,
            agents=[c.snapshot() for c in self.fleet.controllers],
            reassignments=list(self.fleet.coordinator.reassignments),
            detections=detections,
        )


def log_summary(summary: MissionSummary) -> None:
    LOGGER.info(
        "Mission %s after %.1f time-units (%d steps); mean coverage %.1f%%, %d reassignment(s), %d detection(s).",
        "complete" if summary.all_complete else "stopped",
        summary.elapsed,
        summary.steps,
        summary.mean_coverage,
        len(summary.reassignments),
        len(summary.detections),
    )
    for agent in summary.agents:
        LOGGER.info(
            "  Drone %d (%s): %s, coverage %.1f%% (%d/%d cells), %d waypoints left.",
            agent.drone_id,
            agent.role.value,
            agent.phase.value,
            agent.coverage_percent,
            agent.covered_cells,
            agent.total_cells,
            agent.remaining,
        )


@dataclass
class RunOptions:
    """Command-line options that are not part of SwarmConfig."""

    bbox: BoundingBox
    dt: float
    max_time: float
    realtime_factor: float
    leader_policy: str
    stall_agents: List[int]
    targets: List[Tuple[float, float]]
    detection_radius: float


async def run_mission(config: SwarmConfig, options: RunOptions) -> MissionSummary:
    """Assemble and run a mission, optionally paced against wall-clock time."""

    sensor_factory: Optional[SensorFactory] = None
    if options.targets:
        shared = TargetListSensor(options.targets, radius=options.detection_radius)

        def sensor_factory(sector: Sector) -> RangeSensor:
            return shared

    fleet = assemble_fleet(
        config,
        options.bbox,
        sensor_factory=sensor_factory,
        leader_policy=LEADER_POLICIES[options.leader_policy],
        speeds={drone_id: 0.0 for drone_id in options.stall_agents},
    )
    simulation = SwarmSimulation(fleet)
    LOGGER.info(
        "Running %d agents with %s paths (spacing %.6f) for up to %.1f time-units.",
        len(fleet.controllers),
        config.algorithm.value,
        config.spacing,
        options.max_time,
    )

    while simulation.time < options.max_time:
        simulation.step(options.dt)
        if simulation.finished:
            break
        if options.realtime_factor > 0:
            await asyncio.sleep(options.dt / options.realtime_factor)

    summary = simulation.summary()
    log_summary(summary)
    return summary


def config_from_args(args: argparse.Namespace) -> SwarmConfig:
    return SwarmConfig(
        sector_count=args.sectors,
        spacing=args.spacing,
        algorithm=Algorithm.from_name(args.algorithm),
        speed=args.speed,
        takeoff_rate=args.takeoff_rate,
        stuck_threshold=args.stuck_threshold,
        stuck_epsilon=args.stuck_epsilon,
        monitor_interval=args.monitor_interval,
        launch_interval=args.launch_interval,
        stuck_rescue_threshold=args.stuck_rescue_threshold,
        idle_assist_threshold=args.idle_assist_threshold,
        random_walk_steps=args.random_walk_steps,
        seed=args.seed,
    ).validate()


def parse_args(argv: Optional[list[str]] = None) -> Tuple[SwarmConfig, RunOptions]:
    """Parse command-line arguments into a SwarmConfig and run options."""

    defaults = SwarmConfig()
    parser = argparse.ArgumentParser(description="Multi-agent area coverage mission simulator.")
    parser.add_argument(
        "--bbox",
        type=float,
        nargs=4,
        required=True,
        metavar=("MIN_LAT", "MAX_LAT", "MIN_LNG", "MAX_LNG"),
        help="Search area bounding box in degrees.",
    )
    parser.add_argument("--sectors", type=int, default=defaults.sector_count, help="Number of sectors / agents.")
    parser.add_argument("--spacing", type=float, default=defaults.spacing, help="Path spacing in degrees.")
    parser.add_argument(
        "--algorithm",
        default=defaults.algorithm.value,
        choices=[a.value for a in Algorithm],
        help="Coverage pattern for every sector.",
    )
    parser.add_argument("--speed", type=float, default=defaults.speed, help="Agent cruise speed.")
    parser.add_argument("--takeoff-rate", type=float, default=defaults.takeoff_rate, help="Climb rate during takeoff.")
    parser.add_argument(
        "--stuck-threshold",
        type=float,
        default=defaults.stuck_threshold,
        help="Time without movement before an agent counts as stuck.",
    )
    parser.add_argument(
        "--stuck-epsilon",
        type=float,
        default=defaults.stuck_epsilon,
        help="Movement (degrees) below which an agent counts as stationary.",
    )
    parser.add_argument(
        "--monitor-interval",
        type=float,
        default=defaults.monitor_interval,
        help="Time between leader monitoring passes.",
    )
    parser.add_argument(
        "--launch-interval",
        type=float,
        default=defaults.launch_interval,
        help="Time between staggered agent launches.",
    )
    parser.add_argument(
        "--stuck-rescue-threshold",
        type=int,
        default=defaults.stuck_rescue_threshold,
        help="Donor must have more than this many waypoints left to rescue a stuck agent.",
    )
    parser.add_argument(
        "--idle-assist-threshold",
        type=int,
        default=defaults.idle_assist_threshold,
        help="Busy agent must have more than this many waypoints left to receive help.",
    )
    parser.add_argument(
        "--random-walk-steps",
        type=int,
        default=defaults.random_walk_steps,
        help="Step budget for the random-walk pattern.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the random-walk pattern.")
    parser.add_argument(
        "--leader-policy",
        default="lowest-id",
        choices=sorted(LEADER_POLICIES),
        help="How the leader is chosen at fleet assembly.",
    )
    parser.add_argument("--dt", type=float, default=0.1, help="Simulation step length.")
    parser.add_argument("--max-time", type=float, default=600.0, help="Simulation time limit.")
    parser.add_argument(
        "--realtime-factor",
        type=float,
        default=0.0,
        help="Pace the simulation at this multiple of wall-clock time (0 runs unpaced).",
    )
    parser.add_argument(
        "--stall-agent",
        type=int,
        action="append",
        default=[],
        help="Drone id to fly with zero speed, to exercise stuck rescue (repeatable).",
    )
    parser.add_argument(
        "--target",
        type=float,
        nargs=2,
        action="append",
        default=[],
        metavar=("LNG", "LAT"),
        help="Point target for the simulated sensor (repeatable).",
    )
    parser.add_argument(
        "--detection-radius",
        type=float,
        default=0.00005,
        help="Sensor detection radius in degrees.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )

    args = parser.parse_args(argv)

    min_lat, max_lat, min_lng, max_lng = args.bbox
    if min_lat > max_lat or min_lng > max_lng:
        parser.error("--bbox expects MIN_LAT MAX_LAT MIN_LNG MAX_LNG with min <= max.")
    if args.dt <= 0:
        parser.error("--dt must be positive.")
    if args.detection_radius <= 0:
        parser.error("--detection-radius must be positive.")
    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    options = RunOptions(
        bbox=BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng),
        dt=args.dt,
        max_time=args.max_time,
        realtime_factor=args.realtime_factor,
        leader_policy=args.leader_policy,
        stall_agents=list(args.stall_agent),
        targets=[(lng, lat) for lng, lat in args.target],
        detection_radius=args.detection_radius,
    )
    return config, options


async def async_main(argv: Optional[list[str]] = None) -> None:
    """Async entrypoint with error handling."""

    config, options = parse_args(argv)
    try:
        await run_mission(config, options)
    except Exception:
        LOGGER.exception("Mission failed due to an unexpected error.")
        raise


def main() -> None:
    """Synchronous entrypoint for running the asyncio workflow."""

    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        LOGGER.warning("Mission interrupted by user.")


if __name__ == "__main__":
    main()
