"""
Runtime configuration for the coverage swarm.

A single SwarmConfig value is built once (from the command line or directly in
code) and handed to the partitioner, planner, mission controllers and fleet
coordinator at construction time. Distances are in lat/lng degrees unless a
field name says otherwise; times are in simulation time-units.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from path_planner import Algorithm


class ConfigError(ValueError):
    """Raised when the swarm cannot be set up from the given configuration."""


@dataclass
class SwarmConfig:
    """Every tunable of the planning and coordination kernel."""

    sector_count: int = 4
    spacing: float = 0.0001
    algorithm: Algorithm = Algorithm.LAWNMOWER

    # Agent kinematics
    speed: float = 10.0
    speed_scale: float = 0.00001
    arrival_epsilon: float = 0.000005
    takeoff_rate: float = 5.0
    takeoff_height: float = 50.0
    altitude_tolerance: float = 0.01
    base_altitude: float = 50.0
    altitude_step: float = 5.0

    # Fault detection and re-tasking
    stuck_threshold: float = 5.0
    stuck_epsilon: float = 0.000001
    monitor_interval: float = 1.0
    launch_interval: float = 3.0
    stuck_rescue_threshold: int = 10
    idle_assist_threshold: int = 20

    random_walk_steps: int = 500
    coverage_precision: int = 5
    walk_key_precision: int = 6
    seed: Optional[int] = None

    def validate(self) -> "SwarmConfig":
        """Raise ConfigError for the first invalid field, else return self."""

        if not isinstance(self.algorithm, Algorithm):
            try:
                self.algorithm = Algorithm.from_name(str(self.algorithm))
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

        positive = {
            "sector_count": self.sector_count,
            "spacing": self.spacing,
            "speed_scale": self.speed_scale,
            "arrival_epsilon": self.arrival_epsilon,
            "takeoff_rate": self.takeoff_rate,
            "altitude_tolerance": self.altitude_tolerance,
            "stuck_threshold": self.stuck_threshold,
            "stuck_epsilon": self.stuck_epsilon,
            "monitor_interval": self.monitor_interval,
            "random_walk_steps": self.random_walk_steps,
        }
        for name, value in positive.items():
            if value is None or value <= 0:
                raise ConfigError(f"{name} must be positive (got {value!r}).")

        non_negative = {
            "speed": self.speed,
            "takeoff_height": self.takeoff_height,
            "altitude_step": self.altitude_step,
            "launch_interval": self.launch_interval,
            "stuck_rescue_threshold": self.stuck_rescue_threshold,
            "idle_assist_threshold": self.idle_assist_threshold,
            "coverage_precision": self.coverage_precision,
            "walk_key_precision": self.walk_key_precision,
        }
        for name, value in non_negative.items():
            if value is None or value < 0:
                raise ConfigError(f"{name} must not be negative (got {value!r}).")

        if int(self.sector_count) != self.sector_count:
            raise ConfigError(f"sector_count must be an integer (got {self.sector_count!r}).")
        return self
