import pytest

from area_partitioner import Sector
from collaborators import LocalTangentFrame, NullRangeSensor
from fleet_coordinator import (
    FleetCoordinator,
    FleetRoster,
    LaunchSchedule,
    RosterError,
    highest_id_leader,
    lowest_id_leader,
    most_waypoints_leader,
)
from mission_controller import MissionController, MissionPhase, Role
from swarm_config import ConfigError, SwarmConfig


SECTOR = Sector(min_lat=0.0, max_lat=0.01, min_lng=0.0, max_lng=0.01, id=0)


def path(n, lat=0.0005):
    # starts well clear of the spawn point so a zero-speed agent cannot arrive
    return [(0.001 + i * 0.0001, lat) for i in range(n)]


def agent(drone_id, n, config, speed=None):
    controller = MissionController(
        drone_id=drone_id,
        config=config,
        geodesy=LocalTangentFrame(0.0, 0.0),
        sensor=NullRangeSensor(),
        start_position=(0.0, 0.0, 100.0),
        speed=speed,
    )
    controller.initialize(SECTOR, path(n, lat=0.0005 * (drone_id + 1)))
    return controller


def make_stuck(controller):
    controller.start_mission()
    controller.tick(0.1)
    for _ in range(6):
        controller.tick(1.0)
    assert controller.is_stuck()


def make_idle(controller):
    controller.assign_new_waypoints([])
    controller.start_mission()
    assert controller.mission_complete


@pytest.fixture
def config():
    return SwarmConfig(takeoff_height=0.0)


def test_lowest_id_leader_by_default(config):
    fleet = [agent(3, 5, config), agent(1, 5, config), agent(2, 5, config)]
    coordinator = FleetCoordinator(fleet, config)
    assert coordinator.leader.id == 1
    assert coordinator.leader.role is Role.LEADER
    assert [f.id for f in coordinator.followers] == [3, 2]
    assert all(f.role is Role.FOLLOWER for f in coordinator.followers)


def test_leader_policy_is_pluggable(config):
    fleet = [agent(0, 5, config), agent(1, 30, config), agent(2, 5, config)]
    assert FleetCoordinator(fleet, config, leader_policy=highest_id_leader).leader.id == 2
    assert FleetCoordinator(fleet, config, leader_policy=most_waypoints_leader).leader.id == 1
    assert FleetCoordinator(fleet, config, leader_policy=lambda cs: cs[2]).leader.id == 2
    assert lowest_id_leader(fleet).id == 0


def test_stuck_follower_takes_half_of_the_busiest_queue(config):
    leader = agent(0, 50, config)
    stuck = agent(1, 30, config, speed=0.0)
    busy = agent(2, 40, config)
    light = agent(3, 15, config)
    coordinator = FleetCoordinator([leader, stuck, busy, light], config)

    make_stuck(stuck)
    assert stuck.get_remaining_waypoints() == 30
    expected_segment = busy.remaining_path()[20:]

    coordinator.monitor_followers()

    assert busy.get_remaining_waypoints() == 20
    assert stuck.get_remaining_waypoints() == 20
    assert busy.get_remaining_waypoints() + stuck.get_remaining_waypoints() == 40
    assert stuck.remaining_path() == expected_segment
    assert stuck.current_index == 0
    assert stuck.total_cells == 20
    assert light.get_remaining_waypoints() == 15
    assert leader.get_remaining_waypoints() == 50

    (record,) = coordinator.reassignments
    assert (record.reason, record.source_id, record.target_id, record.waypoints) == ("stuck", 2, 1, 20)


def test_stuck_rescue_needs_more_than_ten_remaining(config):
    leader = agent(0, 5, config)
    stuck = agent(1, 30, config, speed=0.0)
    donor = agent(2, 10, config)
    coordinator = FleetCoordinator([leader, stuck, donor], config)
    make_stuck(stuck)

    coordinator.monitor_followers()

    assert donor.get_remaining_waypoints() == 10
    assert stuck.get_remaining_waypoints() == 30
    assert coordinator.reassignments == []


def test_stuck_rescue_skips_complete_followers(config):
    leader = agent(0, 5, config)
    stuck = agent(1, 30, config, speed=0.0)
    done = agent(2, 40, config)
    coordinator = FleetCoordinator([leader, stuck, done], config)
    make_stuck(stuck)
    make_idle(done)

    assert coordinator.rescue_stuck(stuck) is None
    assert stuck.get_remaining_waypoints() == 30


def test_idle_follower_assists_first_busy_follower(config):
    leader = agent(0, 5, config)
    idle = agent(1, 5, config)
    small = agent(2, 20, config)
    first = agent(3, 25, config)
    second = agent(4, 60, config)
    coordinator = FleetCoordinator([leader, idle, small, first, second], config)
    make_idle(idle)

    coordinator.monitor_followers()

    assert first.get_remaining_waypoints() == 12
    assert idle.get_remaining_waypoints() == 13
    assert second.get_remaining_waypoints() == 60
    assert small.get_remaining_waypoints() == 20
    assert idle.phase is MissionPhase.TAKING_OFF
    assert not idle.mission_complete
    assert [r.reason for r in coordinator.reassignments] == ["assist"]


def test_idle_follower_without_candidates_stays_idle(config):
    leader = agent(0, 5, config)
    idle = agent(1, 5, config)
    other = agent(2, 20, config)
    coordinator = FleetCoordinator([leader, idle, other], config)
    make_idle(idle)

    coordinator.monitor_followers()

    assert idle.mission_complete
    assert coordinator.reassignments == []


def test_transfer_outside_roster_is_rejected(config):
    leader = agent(0, 30, config)
    follower = agent(1, 30, config)
    outsider = agent(9, 30, config)
    coordinator = FleetCoordinator([leader, follower], config)

    with pytest.raises(RosterError):
        coordinator.transfer(outsider, follower)
    with pytest.raises(RosterError):
        coordinator.transfer(follower, outsider)
    with pytest.raises(RosterError):
        coordinator.transfer(leader, follower)
    with pytest.raises(RosterError):
        coordinator.transfer(follower, follower)
    assert outsider.get_remaining_waypoints() == 30
    assert follower.get_remaining_waypoints() == 30


def test_transfer_round_trip_conserves_waypoints(config):
    leader = agent(0, 5, config)
    source = agent(1, 33, config)
    target = agent(2, 7, config)
    coordinator = FleetCoordinator([leader, source, target], config)
    before = source.get_remaining_waypoints()

    record = coordinator.transfer(source, target)

    assert before == source.get_remaining_waypoints() + record.waypoints
    assert target.get_remaining_waypoints() == record.waypoints == 17


def test_roster_rejects_duplicates(config):
    a = agent(0, 5, config)
    b = agent(1, 5, config)
    with pytest.raises(RosterError):
        FleetRoster(a, [b, b])
    roster = FleetRoster(a, [b])
    assert b in roster and a not in roster
    assert roster.everyone == [a, b]


def test_launch_schedule_staggers_activations(config):
    agents = [agent(i, 5, config) for i in range(3)]
    schedule = LaunchSchedule(agents, interval=3.0)
    assert [t for t, _ in schedule.entries] == [0.0, 3.0, 6.0]

    assert schedule.advance(1.0) == [agents[0]]
    assert agents[0].phase is MissionPhase.TAKING_OFF
    assert agents[1].phase is MissionPhase.IDLE
    assert schedule.advance(1.0) == []
    assert schedule.advance(1.0) == [agents[1]]
    assert not schedule.finished
    schedule.advance(3.0)
    assert schedule.finished
    assert all(a.phase is MissionPhase.TAKING_OFF for a in agents)


def test_coordinator_launches_leader_first_then_monitors(config, monkeypatch):
    fleet = [agent(i, 5, config) for i in range(3)]
    coordinator = FleetCoordinator(fleet, config)
    passes = []
    monkeypatch.setattr(coordinator, "monitor_followers", lambda: passes.append(coordinator.clock))

    assert not coordinator.monitor_active
    coordinator.tick(1.0)
    assert coordinator.monitor_active
    assert coordinator.leader.phase is MissionPhase.TAKING_OFF
    assert all(f.phase is MissionPhase.IDLE for f in coordinator.followers)

    for _ in range(4):
        coordinator.tick(1.0)
    assert passes == [2.0, 3.0, 4.0, 5.0]
    assert coordinator.followers[0].phase is MissionPhase.TAKING_OFF


def test_monitor_keeps_its_interval_with_fractional_steps(config, monkeypatch):
    fleet = [agent(i, 5, config) for i in range(3)]
    coordinator = FleetCoordinator(fleet, config)
    passes = []
    monkeypatch.setattr(coordinator, "monitor_followers", lambda: passes.append(coordinator.clock))

    for _ in range(111):
        coordinator.tick(0.1)

    assert len(passes) == 11
    assert passes[0] == pytest.approx(1.1)
    assert [b - a for a, b in zip(passes, passes[1:])] == pytest.approx([1.0] * 10)


def test_launch_schedule_fires_on_time_with_fractional_steps(config):
    agents = [agent(i, 5, config) for i in range(3)]
    schedule = LaunchSchedule(agents, interval=3.0)
    launched_at = {}
    for step in range(1, 61):
        for launched in schedule.advance(0.1):
            launched_at[launched.id] = step
    assert launched_at == {0: 1, 1: 30, 2: 60}


def test_monitor_waits_for_a_late_leader(config):
    fleet = [agent(i, 5, config) for i in range(2)]
    coordinator = FleetCoordinator(fleet, config)
    coordinator.schedule = LaunchSchedule(list(reversed(coordinator.roster.everyone)), interval=3.0)

    coordinator.tick(1.0)
    assert not coordinator.monitor_active
    coordinator.tick(2.0)
    assert coordinator.monitor_active


@pytest.mark.parametrize(
    "controllers, policy",
    [([], lowest_id_leader), ([None], lowest_id_leader), ("fleet", None)],
)
def test_invalid_setup_is_rejected(config, controllers, policy):
    if controllers == "fleet":
        controllers = [agent(0, 5, config)]
    with pytest.raises(ConfigError):
        FleetCoordinator(controllers, config, leader_policy=policy)


def test_policy_returning_stranger_is_rejected(config):
    fleet = [agent(0, 5, config)]
    stranger = agent(5, 5, config)
    with pytest.raises(ConfigError):
        FleetCoordinator(fleet, config, leader_policy=lambda cs: stranger)
