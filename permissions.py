"""
permissions.py

Hierarchical permission model and access-flow validation.

A PermissionSet grants access at three levels: individual rooms, whole
buildings and whole locations. A location grant implies every room in that
location; a building grant implies every room in that building.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Set

from badge_types import BuildingId, LocationId, RoomId


logger = logging.getLogger("Permissions")


# =============================================================================
# Permission Set
# =============================================================================

@dataclass
class PermissionSet:
    """Room, building and location grants held by a single badge."""
    rooms: Set[RoomId] = field(default_factory=set)
    buildings: Set[BuildingId] = field(default_factory=set)
    locations: Set[LocationId] = field(default_factory=set)

    def grant_room(self, room_id: RoomId) -> None:
        self.rooms.add(room_id)

    def grant_building(self, building_id: BuildingId) -> None:
        self.buildings.add(building_id)

    def grant_location(self, location_id: LocationId) -> None:
        self.locations.add(location_id)

    def can_access(self, room_id: RoomId, building_id: BuildingId,
                   location_id: LocationId) -> bool:
        """True when any of the three grant levels covers the room."""
        return (room_id in self.rooms
                or building_id in self.buildings
                or location_id in self.locations)

    def has_building_permission(self, building_id: BuildingId) -> bool:
        return building_id in self.buildings

    def has_location_permission(self, location_id: LocationId) -> bool:
        return location_id in self.locations

    @property
    def is_empty(self) -> bool:
        return not (self.rooms or self.buildings or self.locations)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'authorized_rooms': sorted(self.rooms),
            'authorized_buildings': sorted(self.buildings),
            'authorized_locations': sorted(self.locations),
        }


# =============================================================================
# Access Flow
# =============================================================================

@dataclass(frozen=True)
class FlowStep:
    """One badge swipe on the way to a target room."""
    room_id: RoomId
    building_id: BuildingId
    location_id: LocationId


@dataclass
class AccessFlow:
    """
    Ordered rooms a user must badge through to reach a target.

    The target is the last step; every earlier step is an intermediate
    (the building lobby and any checkpoint rooms).
    """
    steps: List[FlowStep]
    estimated_travel_time: timedelta = timedelta(0)
    requires_lobby_access: bool = False
    involves_high_security: bool = False

    def __post_init__(self):
        if not self.steps:
            raise ValueError("AccessFlow requires at least one step")

    @property
    def room_ids(self) -> List[RoomId]:
        return [step.room_id for step in self.steps]

    @property
    def target(self) -> FlowStep:
        return self.steps[-1]

    @property
    def intermediates(self) -> List[FlowStep]:
        return self.steps[:-1]

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class ValidationResult:
    """Outcome of checking an AccessFlow against a PermissionSet."""
    unauthorized_rooms: List[RoomId] = field(default_factory=list)
    missing_intermediate_access: List[RoomId] = field(default_factory=list)
    requires_lobby_access: bool = False
    involves_high_security: bool = False

    @property
    def is_fully_authorized(self) -> bool:
        return not self.unauthorized_rooms and not self.missing_intermediate_access


def validate_permissions(flow: AccessFlow, permissions: PermissionSet) -> ValidationResult:
    """Split denials along a flow into target denials and intermediate denials."""
    result = ValidationResult(
        requires_lobby_access=flow.requires_lobby_access,
        involves_high_security=flow.involves_high_security,
    )
    last_index = len(flow.steps) - 1

    for index, step in enumerate(flow.steps):
        if permissions.can_access(step.room_id, step.building_id, step.location_id):
            continue
        if index == last_index:
            result.unauthorized_rooms.append(step.room_id)
        else:
            result.missing_intermediate_access.append(step.room_id)

    if not result.is_fully_authorized:
        logger.debug(
            f"Flow to {flow.target.room_id} denied: "
            f"{len(result.unauthorized_rooms)} target, "
            f"{len(result.missing_intermediate_access)} intermediate"
        )
    return result
