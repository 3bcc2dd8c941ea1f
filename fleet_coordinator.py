"""
Leader-side monitoring and dynamic re-tasking of followers.

The leader holds a FleetRoster of every follower's MissionController. On each
monitor tick it walks the roster in order:

  * a stuck follower takes the second half of the busiest other follower's
    remaining queue, if that follower has more than stuck_rescue_threshold
    waypoints left;
  * a finished follower takes half of the first other follower with more than
    idle_assist_threshold waypoints left, and is started again.

Agents are launched on a stagger schedule driven by the same tick, and the
monitor only runs once the leader itself has been launched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from mission_controller import MissionController, Role
from path_planner import Waypoint
from swarm_config import ConfigError, SwarmConfig


LOGGER = logging.getLogger("fleet_coordinator")

# Slack for clocks summed from fractional steps.
CLOCK_TOLERANCE = 1e-9

LeaderPolicy = Callable[[Sequence[MissionController]], MissionController]


class RosterError(ValueError):
    """Raised for a transfer that involves an agent outside the roster."""


def lowest_id_leader(controllers: Sequence[MissionController]) -> MissionController:
    return min(controllers, key=lambda c: c.id)


def highest_id_leader(controllers: Sequence[MissionController]) -> MissionController:
    return max(controllers, key=lambda c: c.id)


def most_waypoints_leader(controllers: Sequence[MissionController]) -> MissionController:
    """Most capable = longest planned path; ties go to the lowest id."""

    return min(controllers, key=lambda c: (-c.get_remaining_waypoints(), c.id))


LEADER_POLICIES = {
    "lowest-id": lowest_id_leader,
    "highest-id": highest_id_leader,
    "most-waypoints": most_waypoints_leader,
}


class FleetRoster:
    """The leader's references to its followers, in monitoring order."""

    def __init__(self, leader: MissionController, followers: Iterable[MissionController]):
        self.leader = leader
        self.followers: List[MissionController] = list(followers)
        seen = {id(leader)}
        for follower in self.followers:
            if id(follower) in seen:
                raise RosterError(f"Drone {follower.id} appears more than once in the roster.")
            seen.add(id(follower))

    def __contains__(self, controller: MissionController) -> bool:
        return any(f is controller for f in self.followers)

    def __iter__(self):
        return iter(self.followers)

    def __len__(self) -> int:
        return len(self.followers)

    def others(self, controller: MissionController) -> List[MissionController]:
        return [f for f in self.followers if f is not controller]

    @property
    def everyone(self) -> List[MissionController]:
        return [self.leader] + self.followers


class LaunchSchedule:
    """Activation times for a list of agents, spaced by a fixed interval."""

    def __init__(self, agents: Sequence[MissionController], interval: float, start_time: float = 0.0):
        if interval < 0:
            raise ConfigError(f"Launch interval must not be negative (got {interval!r}).")
        self.entries: List[Tuple[float, MissionController]] = [
            (start_time + index * interval, agent) for index, agent in enumerate(agents)
        ]
        self.clock = 0.0
        self._next = 0

    def advance(self, dt: float) -> List[MissionController]:
        """Move the clock forward and start every agent whose time has come."""

        self.clock += dt
        return self.release()

    def release(self) -> List[MissionController]:
        launched: List[MissionController] = []
        while self._next < len(self.entries) and self.entries[self._next][0] <= self.clock + CLOCK_TOLERANCE:
            activation_time, agent = self.entries[self._next]
            self._next += 1
            LOGGER.info("Launching drone %s at t=%.1f.", agent.id, activation_time)
            agent.start_mission()
            launched.append(agent)
        return launched

    @property
    def finished(self) -> bool:
        return self._next >= len(self.entries)

    def is_launched(self, agent: MissionController) -> bool:
        return any(entry[1] is agent for entry in self.entries[: self._next])


@dataclass
class Reassignment:
    """Record of one completed transfer."""

    time: float
    reason: str
    source_id: int
    target_id: int
    waypoints: int


class FleetCoordinator:
    """Runs the leader's periodic monitor and the staggered launch."""

    def __init__(
        self,
        controllers: Sequence[MissionController],
        config: SwarmConfig,
        leader_policy: LeaderPolicy = lowest_id_leader,
    ):
        if config is None:
            raise ConfigError("FleetCoordinator requires a SwarmConfig.")
        if not controllers:
            raise ConfigError("FleetCoordinator requires at least one mission controller.")
        if any(c is None for c in controllers):
            raise ConfigError("FleetCoordinator was given a missing mission controller.")
        if leader_policy is None:
            raise ConfigError("FleetCoordinator requires a leader selection policy.")
        self.config = config.validate()

        leader = leader_policy(controllers)
        if not any(c is leader for c in controllers):
            raise ConfigError("Leader policy returned an agent outside the fleet.")
        self.roster = FleetRoster(leader, [c for c in controllers if c is not leader])
        leader.role = Role.LEADER
        for follower in self.roster:
            follower.role = Role.FOLLOWER

        self.schedule = LaunchSchedule(self.roster.everyone, config.launch_interval)
        self.clock = 0.0
        self._poll_timer = 0.0
        self.monitor_active = False
        self.reassignments: List[Reassignment] = []
        LOGGER.info(
            "Drone %s leads %d follower(s): %s",
            leader.id,
            len(self.roster),
            [f.id for f in self.roster],
        )

    @property
    def leader(self) -> MissionController:
        return self.roster.leader

    @property
    def followers(self) -> List[MissionController]:
        return self.roster.followers

    def tick(self, dt: float) -> None:
        """Advance launch sequencing and, once the leader is up, the monitor."""

        self.clock += dt
        self.schedule.advance(dt)
        if not self.monitor_active:
            if not self.schedule.is_launched(self.leader):
                return
            self.monitor_active = True
            self._poll_timer = 0.0
            LOGGER.info("Leader drone %s monitoring followers every %.1f.", self.leader.id, self.config.monitor_interval)
            return

        interval = self.config.monitor_interval
        self._poll_timer += dt
        if self._poll_timer + CLOCK_TOLERANCE >= interval:
            # keep the overshoot so passes stay on the interval grid
            self._poll_timer = max(self._poll_timer - interval, 0.0) % interval
            self.monitor_followers()

    def monitor_followers(self) -> None:
        """One monitoring pass over the roster, in roster order."""

        for follower in self.roster:
            if follower.is_stuck():
                LOGGER.warning("Drone %s stuck. Reassigning.", follower.id)
                self.rescue_stuck(follower)
            elif follower.mission_complete:
                self.assist_with_idle(follower)

    def rescue_stuck(self, stuck: MissionController) -> Optional[Reassignment]:
        busiest: Optional[MissionController] = None
        most_waypoints = 0
        for follower in self.roster.others(stuck):
            if follower.mission_complete:
                continue
            remaining = follower.get_remaining_waypoints()
            if remaining > most_waypoints:
                most_waypoints = remaining
                busiest = follower

        if busiest is None or most_waypoints <= self.config.stuck_rescue_threshold:
            LOGGER.info(
                "No follower has more than %d waypoints left; drone %s keeps its queue.",
                self.config.stuck_rescue_threshold,
                stuck.id,
            )
            return None
        return self.transfer(busiest, stuck, reason="stuck")

    def assist_with_idle(self, idle: MissionController) -> Optional[Reassignment]:
        for follower in self.roster.others(idle):
            if follower.mission_complete:
                continue
            if follower.get_remaining_waypoints() > self.config.idle_assist_threshold:
                record = self.transfer(follower, idle, reason="assist")
                idle.start_mission()
                LOGGER.info("Drone %s assisting drone %s.", idle.id, follower.id)
                return record
        LOGGER.debug("No busy follower for idle drone %s to assist.", idle.id)
        return None

    def transfer(self, source: MissionController, target: MissionController, reason: str = "manual") -> Reassignment:
        """Move the second half of source's remaining queue to target as one step."""

        for agent in (source, target):
            if agent not in self.roster:
                raise RosterError(f"Drone {agent.id} is not a follower of leader {self.leader.id}.")
        if source is target:
            raise RosterError(f"Drone {source.id} cannot transfer waypoints to itself.")

        first, second = sorted((source, target), key=lambda c: c.id)
        with first.lock, second.lock:
            segment: List[Waypoint] = source.split_remaining_waypoints()
            target.assign_new_waypoints(segment)

        record = Reassignment(
            time=self.clock,
            reason=reason,
            source_id=source.id,
            target_id=target.id,
            waypoints=len(segment),
        )
        self.reassignments.append(record)
        LOGGER.info(
            "Reassigned %d waypoints from drone %s to drone %s (%s).",
            len(segment),
            source.id,
            target.id,
            reason,
        )
        return record
