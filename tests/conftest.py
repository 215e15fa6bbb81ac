import io
import json
from datetime import date, datetime, timezone
from typing import List, Tuple

import numpy as np
import pytest

from badge_access_simulator import BadgeAccessSimulator
from badge_types import BuildingId, LocationId, RoomId, RoomType, SecurityLevel, UserId
from facility_model import Building, Location, LocationRegistry, Room
from permissions import PermissionSet
from simulation_config import SimulationConfig
from user_generator import BehaviorProfile, User


SIM_DATE = date(2024, 3, 4)


def at(hour: int, minute: int = 0, second: int = 0, day: date = SIM_DATE) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=timezone.utc)


def _room(rng, building: Building, name: str, room_type: RoomType,
          security: SecurityLevel) -> Room:
    room = Room(RoomId.generate(rng), building.id, name, room_type, security)
    building.add_room(room)
    return room


def _building(rng, location: Location, name: str) -> Building:
    building = Building(BuildingId.generate(rng), location.id, name)
    _room(rng, building, "Main Lobby", RoomType.LOBBY, SecurityLevel.PUBLIC)
    _room(rng, building, "Open Office 1", RoomType.WORKSPACE, SecurityLevel.STANDARD)
    _room(rng, building, "Team Space 2", RoomType.WORKSPACE, SecurityLevel.STANDARD)
    _room(rng, building, "Boardroom 3", RoomType.MEETING_ROOM, SecurityLevel.STANDARD)
    _room(rng, building, "Restroom 1", RoomType.BATHROOM, SecurityLevel.PUBLIC)
    _room(rng, building, "Cafeteria 5", RoomType.CAFETERIA, SecurityLevel.PUBLIC)
    server = _room(rng, building, "Server Room 6", RoomType.SERVER_ROOM, SecurityLevel.HIGH_SECURITY)
    lab = _room(rng, building, "Research Lab 7", RoomType.LABORATORY, SecurityLevel.MAX_SECURITY)
    lab.add_intermediate(server.id)
    location.add_building(building)
    return building


def make_registry(seed: int = 7) -> LocationRegistry:
    """Two locations (New York, London), two identical buildings each."""
    rng = np.random.default_rng(seed)
    registry = LocationRegistry()
    for name, lat, lon in [("New York Office", 40.7128, -74.0060), ("London Office", 51.5074, -0.1278)]:
        location = Location(LocationId.generate(rng), name, lat, lon)
        _building(rng, location, "Main Building")
        _building(rng, location, "North Tower")
        registry.locations.append(location)
    registry.rebuild_indices()
    registry.validate()
    return registry


def room_of_type(building: Building, room_type: RoomType) -> Room:
    return building.rooms_of_type(room_type)[0]


def make_user(registry: LocationRegistry, rng, **flags) -> User:
    """A user working in the first building of the first location."""
    location = registry.locations[0]
    building = location.buildings[0]
    workspace = room_of_type(building, RoomType.WORKSPACE)
    permissions = PermissionSet()
    for room_type in (RoomType.WORKSPACE, RoomType.LOBBY, RoomType.BATHROOM,
                      RoomType.CAFETERIA, RoomType.MEETING_ROOM):
        permissions.grant_room(room_of_type(building, room_type).id)
    user = User(
        id=UserId.generate(rng),
        primary_location=location.id,
        primary_building=building.id,
        primary_workspace=workspace.id,
        permissions=permissions,
        behavior_profile=BehaviorProfile(0.1, 0.1, 0.8, 0.5),
    )
    for key, value in flags.items():
        setattr(user, key, value)
    return user


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def quiet_config():
    """No random badge-reader faults, fixed start date."""
    return SimulationConfig(badge_reader_failure_rate=0.0, start_date=SIM_DATE.isoformat(), seed=1)


def run_simulation(config: SimulationConfig) -> Tuple[str, object]:
    stream = io.StringIO()
    statistics = BadgeAccessSimulator(config, stream).run()
    return stream.getvalue(), statistics


def parse_events(output: str) -> List[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, '%Y-%m-%dT%H:%M:%S.%fZ').replace(tzinfo=timezone.utc)
