"""
facility_model.py

Location -> Building -> Room tree, the registry that indexes it, and the
access-flow resolver that turns (from room, to room) into the ordered
sequence of badge swipes plus an estimated travel time.

Children hold only their parent's id; parent lookup goes through the
registry's flat indices.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from numpy.random import Generator

from badge_types import BuildingId, LocationId, RoomId, RoomType, SecurityLevel
from permissions import AccessFlow, FlowStep
from simulation_errors import TargetRoomUnknown


EARTH_RADIUS_KM = 6371.0


# =============================================================================
# Facility Tree
# =============================================================================

@dataclass
class Room:
    id: RoomId
    building_id: BuildingId
    name: str
    room_type: RoomType
    security_level: SecurityLevel
    required_intermediates: List[RoomId] = field(default_factory=list)

    def add_intermediate(self, room_id: RoomId) -> None:
        """Append a checkpoint room, ignoring self and duplicates."""
        if room_id != self.id and room_id not in self.required_intermediates:
            self.required_intermediates.append(room_id)

    def validate(self) -> None:
        if self.id in self.required_intermediates:
            raise ValueError(f"Room {self.id} lists itself as an intermediate")
        if len(set(self.required_intermediates)) != len(self.required_intermediates):
            raise ValueError(f"Room {self.id} has duplicate intermediates")


@dataclass
class Building:
    id: BuildingId
    location_id: LocationId
    name: str
    rooms: List[Room] = field(default_factory=list)
    lobby_id: Optional[RoomId] = None

    def add_room(self, room: Room) -> None:
        if room.building_id != self.id:
            raise ValueError(f"Room {room.id} belongs to {room.building_id}, not {self.id}")
        self.rooms.append(room)
        if room.room_type == RoomType.LOBBY and self.lobby_id is None:
            self.lobby_id = room.id

    @property
    def lobby(self) -> Optional[Room]:
        for room in self.rooms:
            if room.id == self.lobby_id:
                return room
        return None

    def rooms_of_type(self, *room_types: RoomType) -> List[Room]:
        return [r for r in self.rooms if r.room_type in room_types]

    def validate(self) -> None:
        lobbies = self.rooms_of_type(RoomType.LOBBY)
        if len(lobbies) != 1:
            raise ValueError(f"Building {self.name} has {len(lobbies)} lobbies, expected 1")

        lobby = self.lobby
        if lobby is None:
            raise ValueError(f"Building {self.name} lobby id does not reference one of its rooms")
        if lobby.room_type != RoomType.LOBBY:
            raise ValueError(f"Building {self.name} lobby id references a {lobby.room_type.value}")

        room_ids = {room.id for room in self.rooms}
        for room in self.rooms:
            if room.building_id != self.id:
                raise ValueError(f"Room {room.id} building id mismatch in {self.name}")
            room.validate()
            unknown = [rid for rid in room.required_intermediates if rid not in room_ids]
            if unknown:
                raise ValueError(f"Room {room.id} references intermediates outside its building: {unknown}")


@dataclass
class Location:
    id: LocationId
    name: str
    latitude: float
    longitude: float
    buildings: List[Building] = field(default_factory=list)

    @property
    def coordinates(self) -> Tuple[float, float]:
        return self.latitude, self.longitude

    def add_building(self, building: Building) -> None:
        if building.location_id != self.id:
            raise ValueError(f"Building {building.id} belongs to {building.location_id}, not {self.id}")
        self.buildings.append(building)

    def iter_rooms(self) -> Iterator[Tuple[Building, Room]]:
        for building in self.buildings:
            for room in building.rooms:
                yield building, room

    def validate(self) -> None:
        if not self.buildings:
            raise ValueError(f"Location {self.name} has no buildings")
        for building in self.buildings:
            if building.location_id != self.id:
                raise ValueError(f"Building {building.name} location id mismatch in {self.name}")
            building.validate()


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lon) pairs in kilometres."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


# =============================================================================
# Location Registry
# =============================================================================

class LocationRegistry:
    """
    Owns every location and keeps three flat lookup indices:

    - location id -> Location
    - building id -> (Location, Building)
    - room id     -> (Location, Building, Room)

    Call rebuild_indices() after bulk mutation of the tree.
    """

    def __init__(self, locations: Optional[List[Location]] = None):
        self.locations: List[Location] = list(locations or [])
        self._locations: Dict[LocationId, Location] = {}
        self._buildings: Dict[BuildingId, Tuple[Location, Building]] = {}
        self._rooms: Dict[RoomId, Tuple[Location, Building, Room]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self.rebuild_indices()

    def add_location(self, location: Location) -> None:
        self.locations.append(location)
        self.rebuild_indices()

    def rebuild_indices(self) -> None:
        self._locations.clear()
        self._buildings.clear()
        self._rooms.clear()
        for location in self.locations:
            self._locations[location.id] = location
            for building in location.buildings:
                self._buildings[building.id] = (location, building)
                for room in building.rooms:
                    self._rooms[room.id] = (location, building, room)

    # --- lookups -------------------------------------------------------------

    def get_location(self, location_id: LocationId) -> Optional[Location]:
        return self._locations.get(location_id)

    def get_building(self, building_id: BuildingId) -> Optional[Tuple[Location, Building]]:
        return self._buildings.get(building_id)

    def get_room(self, room_id: RoomId) -> Optional[Tuple[Location, Building, Room]]:
        return self._rooms.get(room_id)

    def resolve_room(self, room_id: RoomId) -> Tuple[Location, Building, Room]:
        """Like get_room but raises TargetRoomUnknown when absent."""
        entry = self._rooms.get(room_id)
        if entry is None:
            raise TargetRoomUnknown(room_id)
        return entry

    def __contains__(self, room_id) -> bool:
        return room_id in self._rooms

    def iter_rooms(self) -> Iterator[Tuple[Location, Building, Room]]:
        for location in self.locations:
            for building in location.buildings:
                for room in building.rooms:
                    yield location, building, room

    def iter_buildings(self) -> Iterator[Tuple[Location, Building]]:
        for location in self.locations:
            for building in location.buildings:
                yield location, building

    # --- aggregate counts ----------------------------------------------------

    @property
    def location_count(self) -> int:
        return len(self._locations)

    @property
    def building_count(self) -> int:
        return len(self._buildings)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def distance_km(self, a: LocationId, b: LocationId) -> float:
        return haversine_km(self._locations[a].coordinates, self._locations[b].coordinates)

    def validate(self) -> None:
        """Check tree invariants and that the indices agree with the tree."""
        if not self.locations:
            raise ValueError("Registry contains no locations")
        for location in self.locations:
            location.validate()

        expected_rooms = sum(len(b.rooms) for _, b in self.iter_buildings())
        expected_buildings = sum(len(loc.buildings) for loc in self.locations)
        if (len(self._locations) != len(self.locations)
                or len(self._buildings) != expected_buildings
                or len(self._rooms) != expected_rooms):
            raise ValueError("Registry indices are out of sync with the facility tree")

        for room_id, (location, building, room) in self._rooms.items():
            if room.building_id != building.id or building.location_id != location.id:
                raise ValueError(f"Inconsistent hierarchy for room {room_id}")

        self.logger.debug(
            f"Registry valid: {self.location_count} locations, "
            f"{self.building_count} buildings, {self.room_count} rooms"
        )

    # =========================================================================
    # Access flow resolution
    # =========================================================================

    def access_flow(self, from_room: Optional[RoomId], to_room: RoomId,
                    rng: Generator) -> AccessFlow:
        """
        Resolve the badge swipes needed to go from one room to another.

        from_room=None means the user is arriving from outside any facility.
        Raises TargetRoomUnknown when to_room is not registered.
        """
        to_location, to_building, target = self.resolve_room(to_room)
        origin = self._rooms.get(from_room) if from_room is not None else None

        if origin is not None and origin[2].id == target.id:
            return AccessFlow(
                steps=[FlowStep(target.id, to_building.id, to_location.id)],
                estimated_travel_time=timedelta(0),
                involves_high_security=target.security_level.is_high_security,
            )

        if origin is not None and origin[1].id == to_building.id:
            return self._building_flow(origin[2], to_location, to_building, target, rng)

        flow = self._building_flow(None, to_location, to_building, target, rng)

        if origin is None:
            flow.estimated_travel_time += _random_span(rng, minutes=(5, 15))
        elif origin[0].id == to_location.id:
            flow.estimated_travel_time += _random_span(rng, minutes=(2, 10))
        else:
            flow.estimated_travel_time += _random_span(rng, hours=(4, 12))
        return flow

    def travel_time(self, from_room: Optional[RoomId], to_room: RoomId,
                    rng: Generator) -> timedelta:
        return self.access_flow(from_room, to_room, rng).estimated_travel_time

    def _building_flow(self, origin: Optional[Room], location: Location,
                       building: Building, target: Room, rng: Generator) -> AccessFlow:
        sequence: List[Room] = []
        requires_lobby = False
        lobby = building.lobby

        if origin is None and lobby is not None and lobby.id != target.id:
            sequence.append(lobby)
            requires_lobby = True

        rooms_by_id = {room.id: room for room in building.rooms}
        for room_id in target.required_intermediates:
            room = rooms_by_id.get(room_id)
            if room is None or room in sequence:
                continue
            if origin is not None and room.id == origin.id:
                continue
            sequence.append(room)
        sequence.append(target)

        travel = timedelta(0)
        for _ in sequence:
            if origin is None:
                travel += timedelta(seconds=int(rng.integers(60, 121)))
            else:
                travel += timedelta(seconds=int(rng.integers(30, 181)))
            travel += timedelta(seconds=int(rng.integers(5, 16)))

        return AccessFlow(
            steps=[FlowStep(room.id, building.id, location.id) for room in sequence],
            estimated_travel_time=travel,
            requires_lobby_access=requires_lobby,
            involves_high_security=any(r.security_level.is_high_security for r in sequence),
        )


def _random_span(rng: Generator, minutes: Tuple[int, int] = None,
                 hours: Tuple[int, int] = None) -> timedelta:
    """Uniform whole-second duration within an inclusive minute or hour range."""
    if hours is not None:
        low, high = hours[0] * 3600, hours[1] * 3600
    else:
        low, high = minutes[0] * 60, minutes[1] * 60
    return timedelta(seconds=int(rng.integers(low, high + 1)))


def access_flow(from_room: Optional[RoomId], to_room: RoomId,
                registry: LocationRegistry, rng: Generator) -> AccessFlow:
    return registry.access_flow(from_room, to_room, rng)


def travel_time_between(from_room: Optional[RoomId], to_room: RoomId,
                        registry: LocationRegistry, rng: Generator) -> timedelta:
    return registry.travel_time(from_room, to_room, rng)
