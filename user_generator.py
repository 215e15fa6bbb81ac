"""
user_generator.py

Synthesizes the badge-holding population: workspace assignment, permission
grants, behavior profiles and the three anomaly flags (curious, cloned
badge, night shift).

Regular, curious and night-shift users share one User record; behavior is
dispatched on the flags and the behavior profile.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from numpy.random import Generator

from badge_types import BuildingId, LocationId, RoomId, RoomType, SecurityLevel, UserId
from facility_model import Building, Location, LocationRegistry, Room
from permissions import PermissionSet
from simulation_config import SimulationConfig
from simulation_errors import UserGenerationFailed


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class BehaviorProfile:
    """Four independent tendencies in [0, 1]; predicates are advisory."""
    travel_frequency: float
    curiosity_level: float
    schedule_adherence: float
    social_level: float

    @property
    def is_curious(self) -> bool:
        return self.curiosity_level > 0.5

    @property
    def is_schedule_focused(self) -> bool:
        return self.schedule_adherence > 0.8

    @property
    def travels_often(self) -> bool:
        return self.travel_frequency > 0.15

    @property
    def is_social(self) -> bool:
        return self.social_level > 0.7

    @classmethod
    def regular(cls, rng: Generator) -> "BehaviorProfile":
        return cls(
            travel_frequency=float(rng.uniform(0.05, 0.25)),
            curiosity_level=float(rng.uniform(0.0, 0.3)),
            schedule_adherence=float(rng.uniform(0.6, 0.95)),
            social_level=float(rng.uniform(0.2, 0.9)),
        )

    @classmethod
    def curious(cls, rng: Generator) -> "BehaviorProfile":
        profile = cls.regular(rng)
        profile.curiosity_level = float(rng.uniform(0.6, 0.9))
        return profile

    @classmethod
    def night_shift(cls) -> "BehaviorProfile":
        return cls(travel_frequency=0.05, curiosity_level=0.1,
                   schedule_adherence=0.9, social_level=0.2)


@dataclass
class User:
    id: UserId
    primary_location: LocationId
    primary_building: BuildingId
    primary_workspace: RoomId
    permissions: PermissionSet
    behavior_profile: BehaviorProfile
    is_curious: bool = False
    has_cloned_badge: bool = False
    is_night_shift: bool = False
    assigned_night_building: Optional[BuildingId] = None
    # Mutable per-day state, owned by the behavior engine
    current_room: Optional[RoomId] = None
    scheduled_activities: List[Any] = field(default_factory=list)

    @property
    def is_regular(self) -> bool:
        return not (self.is_curious or self.has_cloned_badge or self.is_night_shift)

    def can_access(self, room_id: RoomId, building_id: BuildingId, location_id: LocationId) -> bool:
        return self.permissions.can_access(room_id, building_id, location_id)

    def to_profile_record(self) -> Dict[str, Any]:
        """Answer-key record with ground-truth permissions and flags."""
        record = {
            'user_id': str(self.id),
            'primary_location': str(self.primary_location),
            'primary_building': str(self.primary_building),
            'primary_workspace': str(self.primary_workspace),
        }
        record.update(self.permissions.to_dict())
        record.update({
            'is_curious': self.is_curious,
            'has_cloned_badge': self.has_cloned_badge,
            'is_night_shift': self.is_night_shift,
            'assigned_night_building': (str(self.assigned_night_building)
                                        if self.assigned_night_building else None),
            'behavior_profile': asdict(self.behavior_profile),
        })
        return record


# =============================================================================
# User Generator
# =============================================================================

class UserGenerator:
    """Generates users with permissions and anomaly flags."""

    NIGHT_SHIFT_MIN_POPULATION = 500
    MIN_NIGHT_SHIFT_PER_BUILDING = 1
    MAX_NIGHT_SHIFT_PER_BUILDING = 3

    MEETING_ROOM_GRANT_PROBABILITY = 0.8
    SPECIAL_GRANT_PROBABILITY = {
        RoomType.SERVER_ROOM: 0.05,
        RoomType.EXECUTIVE_OFFICE: 0.02,
        RoomType.LABORATORY: 0.03,
    }
    FACILITIES_STAFF_PROBABILITY = 0.01
    MAX_ADDITIONAL_GRANTS = 3
    CLONED_BADGE_TRAVEL_RANGE = (0.2, 0.35)

    GRANTED_COMMON_TYPES = (RoomType.LOBBY, RoomType.BATHROOM, RoomType.KITCHEN, RoomType.CAFETERIA)
    REMOTE_COMMON_TYPES = (RoomType.LOBBY, RoomType.BATHROOM, RoomType.CAFETERIA)

    def __init__(self, config: SimulationConfig, rng: Generator, registry: LocationRegistry):
        self.config = config
        self.rng = rng
        self.registry = registry
        self.logger = logging.getLogger(self.__class__.__name__)

    def generate(self) -> List[User]:
        """Generate config.user_count users, then assign night shifts top-down."""
        if not self.registry.locations:
            raise UserGenerationFailed("Registry contains no locations")
        if self.registry.room_count == 0:
            raise UserGenerationFailed("Registry contains no rooms")

        users = [self.generate_user() for _ in range(self.config.user_count)]

        if self.config.user_count >= self.NIGHT_SHIFT_MIN_POPULATION:
            self.assign_night_shift(users)
        else:
            self.logger.info(f"Population {self.config.user_count} below "
                             f"{self.NIGHT_SHIFT_MIN_POPULATION}; no night-shift users")

        self.logger.info(
            f"Generated {len(users)} users: "
            f"{sum(u.is_curious for u in users)} curious, "
            f"{sum(u.has_cloned_badge for u in users)} cloned badges, "
            f"{sum(u.is_night_shift for u in users)} night shift"
        )
        return users

    def generate_user(self) -> User:
        location = self.registry.locations[int(self.rng.integers(len(self.registry.locations)))]
        building, workspace = self._select_workspace(location)

        permissions = PermissionSet()
        self._grant_home_building(permissions, building, workspace)
        self._grant_additional(permissions, location, building)
        self._grant_other_locations(permissions, location)
        self._grant_special(permissions, building)
        if self.rng.random() < self.FACILITIES_STAFF_PROBABILITY:
            permissions.grant_location(location.id)

        profile = BehaviorProfile.regular(self.rng)
        user = User(
            id=UserId.generate(self.rng),
            primary_location=location.id,
            primary_building=building.id,
            primary_workspace=workspace.id,
            permissions=permissions,
            behavior_profile=profile,
        )

        if self.rng.random() < self.config.curious_user_percentage:
            user.is_curious = True
            user.behavior_profile = BehaviorProfile.curious(self.rng)

        if self.rng.random() < self.config.cloned_badge_percentage:
            user.has_cloned_badge = True
            if not self._cloned_badge_eligible(user):
                # Frequent-traveler adjustment keeps the configured rate attainable
                low, high = self.CLONED_BADGE_TRAVEL_RANGE
                user.behavior_profile.travel_frequency = float(self.rng.uniform(low, high))

        return user

    @staticmethod
    def _cloned_badge_eligible(user: User) -> bool:
        return user.behavior_profile.travels_often or bool(user.permissions.locations)

    # =========================================================================
    # Workspace and grants
    # =========================================================================

    def _select_workspace(self, location: Location) -> Tuple[Building, Room]:
        """
        Workspace rooms first, then unrestricted non-lobby non-bathroom rooms,
        then any non-lobby room, then a lobby.
        """
        candidate_filters = [
            lambda r: r.room_type == RoomType.WORKSPACE,
            lambda r: (r.room_type not in (RoomType.LOBBY, RoomType.BATHROOM)
                       and not r.room_type.restricted_to_business_hours),
            lambda r: r.room_type != RoomType.LOBBY,
            lambda r: True,
        ]
        for accept in candidate_filters:
            candidates = [(b, r) for b, r in location.iter_rooms() if accept(r)]
            if candidates:
                return candidates[int(self.rng.integers(len(candidates)))]
        raise UserGenerationFailed(f"Location {location.name} has no rooms")

    def _grant_home_building(self, permissions: PermissionSet, building: Building, workspace: Room) -> None:
        permissions.grant_room(workspace.id)
        for room in building.rooms_of_type(*self.GRANTED_COMMON_TYPES):
            permissions.grant_room(room.id)
        for room in building.rooms_of_type(RoomType.MEETING_ROOM):
            if self.rng.random() < self.MEETING_ROOM_GRANT_PROBABILITY:
                permissions.grant_room(room.id)

    def _grant_additional(self, permissions: PermissionSet, location: Location, building: Building) -> None:
        """Extra grants stay in-building with probability primary_building_affinity."""
        other_buildings = [b for b in location.buildings if b.id != building.id]
        extra = int(self.rng.integers(0, self.MAX_ADDITIONAL_GRANTS + 1))

        for _ in range(extra):
            stay_home = self.rng.random() < self.config.primary_building_affinity
            if stay_home or not other_buildings:
                candidates = [r for r in building.rooms
                              if r.security_level == SecurityLevel.STANDARD and r.id not in permissions.rooms]
                if candidates:
                    permissions.grant_room(candidates[int(self.rng.integers(len(candidates)))].id)
            else:
                other = other_buildings[int(self.rng.integers(len(other_buildings)))]
                for room in other.rooms_of_type(*self.REMOTE_COMMON_TYPES):
                    permissions.grant_room(room.id)
                meetings = other.rooms_of_type(RoomType.MEETING_ROOM)
                if meetings:
                    permissions.grant_room(meetings[int(self.rng.integers(len(meetings)))].id)

    def _grant_other_locations(self, permissions: PermissionSet, home: Location) -> None:
        for location in self.registry.locations:
            if location.id == home.id:
                continue
            if self.rng.random() >= self.config.different_location_travel:
                continue
            building = location.buildings[int(self.rng.integers(len(location.buildings)))]
            for room in building.rooms_of_type(*self.REMOTE_COMMON_TYPES):
                permissions.grant_room(room.id)

    def _grant_special(self, permissions: PermissionSet, building: Building) -> None:
        for room in building.rooms:
            probability = self.SPECIAL_GRANT_PROBABILITY.get(room.room_type)
            if probability is not None and self.rng.random() < probability:
                permissions.grant_room(room.id)
                # Checkpoints on the way in come with the special grant
                for intermediate in room.required_intermediates:
                    permissions.grant_room(intermediate)

    # =========================================================================
    # Night shift
    # =========================================================================

    def assign_night_shift(self, users: List[User]) -> int:
        """Assign 1-3 otherwise-regular users to every building. Returns the count."""
        assigned = 0
        for location, building in self.registry.iter_buildings():
            wanted = int(self.rng.integers(self.MIN_NIGHT_SHIFT_PER_BUILDING,
                                           self.MAX_NIGHT_SHIFT_PER_BUILDING + 1))
            chosen = self._pick_night_shift_candidates(users, location, building, wanted)
            if len(chosen) < wanted:
                self.logger.warning(f"Only {len(chosen)} of {wanted} night-shift users "
                                    f"available for {building.name}")
            for user in chosen:
                self._make_night_shift(user, location, building)
                assigned += 1

        self.logger.info(f"Assigned {assigned} night-shift users across "
                         f"{self.registry.building_count} buildings")
        return assigned

    def _pick_night_shift_candidates(self, users: List[User], location: Location,
                                     building: Building, wanted: int) -> List[User]:
        regular = [u for u in users if u.is_regular]
        pools = [
            [u for u in regular if u.primary_building == building.id],
            [u for u in regular if u.primary_location == location.id and u.primary_building != building.id],
            [u for u in regular if u.primary_location != location.id],
        ]
        chosen: List[User] = []
        for pool in pools:
            if len(chosen) >= wanted:
                break
            take = min(wanted - len(chosen), len(pool))
            if take:
                indices = self.rng.choice(len(pool), size=take, replace=False)
                chosen.extend(pool[int(i)] for i in sorted(indices))
        return chosen

    def _make_night_shift(self, user: User, location: Location, building: Building) -> None:
        workspaces = building.rooms_of_type(RoomType.WORKSPACE) or \
            [r for r in building.rooms if r.room_type != RoomType.LOBBY] or building.rooms
        workspace = workspaces[int(self.rng.integers(len(workspaces)))]

        user.is_night_shift = True
        user.assigned_night_building = building.id
        user.primary_location = location.id
        user.primary_building = building.id
        user.primary_workspace = workspace.id
        user.permissions.grant_building(building.id)
        user.permissions.grant_room(workspace.id)
        user.behavior_profile = BehaviorProfile.night_shift()


def profile_records(users: List[User]) -> List[Dict[str, Any]]:
    return [user.to_profile_record() for user in users]
