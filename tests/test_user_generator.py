from collections import Counter

import numpy as np
import pytest

from badge_types import RoomType
from facility_model import LocationRegistry
from simulation_config import SimulationConfig
from simulation_errors import UserGenerationFailed
from user_generator import BehaviorProfile, UserGenerator


PROFILE_KEYS = {
    "user_id", "primary_location", "primary_building", "primary_workspace",
    "authorized_rooms", "authorized_buildings", "authorized_locations",
    "is_curious", "has_cloned_badge", "is_night_shift", "assigned_night_building",
    "behavior_profile",
}


def generate_users(registry, seed: int = 0, **overrides):
    config = SimulationConfig(**overrides)
    return UserGenerator(config, np.random.default_rng(seed), registry).generate()


def test_generates_requested_population(registry) -> None:
    users = generate_users(registry, user_count=40)
    assert len(users) == 40
    assert len({u.id for u in users}) == 40


def test_minimum_grants_cover_workspace_and_building_commons(registry) -> None:
    for user in generate_users(registry, user_count=30):
        location, building, workspace = registry.get_room(user.primary_workspace)
        assert building.id == user.primary_building
        assert location.id == user.primary_location
        assert user.can_access(workspace.id, building.id, location.id)
        for room in building.rooms_of_type(RoomType.LOBBY, RoomType.BATHROOM, RoomType.CAFETERIA):
            assert user.can_access(room.id, building.id, location.id)


def test_workspace_prefers_workspace_rooms(registry) -> None:
    for user in generate_users(registry, user_count=30):
        _, _, workspace = registry.get_room(user.primary_workspace)
        assert workspace.room_type == RoomType.WORKSPACE


def test_regular_profile_ranges(registry) -> None:
    for user in generate_users(registry, user_count=50, curious_user_percentage=0.0,
                               cloned_badge_percentage=0.0):
        profile = user.behavior_profile
        assert 0.05 <= profile.travel_frequency <= 0.25
        assert 0.0 <= profile.curiosity_level <= 0.3
        assert 0.6 <= profile.schedule_adherence <= 0.95
        assert 0.2 <= profile.social_level <= 0.9
        assert not user.is_curious and not user.has_cloned_badge


def test_all_curious_when_rate_is_one(registry) -> None:
    users = generate_users(registry, user_count=20, curious_user_percentage=1.0)
    assert all(u.is_curious for u in users)
    assert all(0.6 <= u.behavior_profile.curiosity_level <= 0.9 for u in users)
    assert all(u.behavior_profile.is_curious for u in users)


def test_cloned_badge_users_are_eligible(registry) -> None:
    users = generate_users(registry, user_count=25, cloned_badge_percentage=1.0)
    assert all(u.has_cloned_badge for u in users)
    for user in users:
        assert user.behavior_profile.travels_often or user.permissions.locations


def test_no_night_shift_below_threshold(registry) -> None:
    users = generate_users(registry, user_count=499)
    assert not any(u.is_night_shift for u in users)


def test_night_shift_assigned_per_building(registry) -> None:
    users = generate_users(registry, user_count=500, curious_user_percentage=0.05)
    night = [u for u in users if u.is_night_shift]
    per_building = Counter(u.assigned_night_building for u in night)

    assert set(per_building) == {b.id for _, b in registry.iter_buildings()}
    assert all(1 <= count <= 3 for count in per_building.values())
    for user in night:
        assert not user.is_curious and not user.has_cloned_badge
        assert user.permissions.has_building_permission(user.assigned_night_building)
        assert user.primary_building == user.assigned_night_building
        assert user.behavior_profile == BehaviorProfile.night_shift()


def test_profile_record_fields(registry) -> None:
    users = generate_users(registry, user_count=5)
    record = users[0].to_profile_record()
    assert set(record) == PROFILE_KEYS
    assert record["user_id"].startswith("USER_")
    assert record["primary_workspace"] in record["authorized_rooms"]
    assert set(record["behavior_profile"]) == {
        "travel_frequency", "curiosity_level", "schedule_adherence", "social_level"}


def test_same_seed_same_population(registry) -> None:
    first = [u.to_profile_record() for u in generate_users(registry, seed=3, user_count=10)]
    second = [u.to_profile_record() for u in generate_users(registry, seed=3, user_count=10)]
    assert first == second


def test_empty_registry_fails() -> None:
    with pytest.raises(UserGenerationFailed):
        UserGenerator(SimulationConfig(user_count=1), np.random.default_rng(0),
                      LocationRegistry()).generate()
