"""
facility_generator.py

Builds the facility tree (locations, buildings, rooms) from configuration
using the shared seeded random source.
"""

import logging
from typing import List, Set, Tuple

from faker import Faker
from numpy.random import Generator

from badge_types import BuildingId, LocationId, RoomId, RoomType, SecurityLevel
from facility_model import Building, Location, LocationRegistry, Room, haversine_km
from simulation_config import SimulationConfig
from simulation_errors import ConfigInvalid, FacilityGenerationFailed


# =============================================================================
# Facility Generator
# =============================================================================

class FacilityGenerator:
    """Generates a validated LocationRegistry."""

    # (lat_min, lat_max, lon_min, lon_max)
    COORDINATE_REGIONS = {
        'North America': (25.0, 49.0, -125.0, -66.0),
        'Europe': (36.0, 71.0, -10.0, 40.0),
        'Asia-Pacific': (-45.0, 55.0, 95.0, 180.0),
        'South America': (-55.0, 12.0, -82.0, -35.0),
        'Africa': (-35.0, 37.0, -18.0, 52.0),
        'Australia': (-45.0, -10.0, 113.0, 154.0),
    }
    MIN_LOCATION_DISTANCE_KM = 100.0
    MAX_PLACEMENT_ATTEMPTS = 100

    # Cumulative thresholds over a uniform draw
    ROOM_TYPE_DISTRIBUTION = [
        (0.40, RoomType.WORKSPACE),
        (0.55, RoomType.MEETING_ROOM),
        (0.65, RoomType.BATHROOM),
        (0.75, RoomType.KITCHEN),
        (0.85, RoomType.STORAGE),
        (0.92, RoomType.CAFETERIA),
        (0.96, RoomType.EXECUTIVE_OFFICE),
        (0.98, RoomType.SERVER_ROOM),
        (1.00, RoomType.LABORATORY),
    ]

    SECURITY_BY_ROOM_TYPE = {
        RoomType.LOBBY: SecurityLevel.PUBLIC,
        RoomType.BATHROOM: SecurityLevel.PUBLIC,
        RoomType.CAFETERIA: SecurityLevel.PUBLIC,
        RoomType.KITCHEN: SecurityLevel.PUBLIC,
        RoomType.WORKSPACE: SecurityLevel.STANDARD,
        RoomType.MEETING_ROOM: SecurityLevel.STANDARD,
        RoomType.STORAGE: SecurityLevel.STANDARD,
        RoomType.EXECUTIVE_OFFICE: SecurityLevel.RESTRICTED,
    }
    HIGH_SECURITY_PROBABILITY = 0.7

    BUILDING_NAMES = [
        "Main Building", "North Tower", "South Tower", "East Wing", "West Wing",
        "Executive Building", "Research Center", "Innovation Hub",
        "Technology Center", "Operations Center", "Administrative Building",
        "Development Center",
    ]

    ROOM_NAMES = {
        RoomType.WORKSPACE: ["Open Office", "Workspace", "Desk Area", "Team Space"],
        RoomType.MEETING_ROOM: ["Conference Room", "Meeting Room", "Boardroom", "Discussion Room",
                                "Collaboration Space", "Video Conference Room", "Training Room"],
        RoomType.CAFETERIA: ["Cafeteria", "Dining Hall", "Food Court", "Lunch Room"],
        RoomType.KITCHEN: ["Break Room", "Kitchen", "Pantry", "Coffee Station"],
        RoomType.SERVER_ROOM: ["Server Room", "Data Center", "Network Room", "IT Closet"],
        RoomType.EXECUTIVE_OFFICE: ["Executive Office", "Director Office", "VP Office", "C-Suite"],
        RoomType.STORAGE: ["Storage Room", "Supply Closet", "Archive Room", "Warehouse"],
        RoomType.LABORATORY: ["Research Lab", "Testing Lab", "Development Lab", "Innovation Lab"],
    }

    def __init__(self, config: SimulationConfig, rng: Generator, faker: Faker):
        self.config = config
        self.rng = rng
        self.faker = faker
        self.logger = logging.getLogger(self.__class__.__name__)

        self.placed_coordinates: List[Tuple[float, float]] = []
        self.used_location_names: Set[str] = set()

    def generate(self) -> LocationRegistry:
        """Generate every location and return the validated registry."""
        self._check_ranges()

        registry = LocationRegistry()
        for _ in range(self.config.location_count):
            registry.locations.append(self.generate_location())
        registry.rebuild_indices()

        try:
            registry.validate()
        except ValueError as e:
            raise FacilityGenerationFailed(str(e)) from e

        self.logger.info(
            f"Generated {registry.location_count} locations, "
            f"{registry.building_count} buildings, {registry.room_count} rooms"
        )
        return registry

    def _check_ranges(self) -> None:
        cfg = self.config
        if cfg.location_count <= 0:
            raise ConfigInvalid("location_count must be positive")
        if cfg.min_buildings_per_location <= 0 or cfg.min_rooms_per_building <= 0:
            raise ConfigInvalid("building and room minimums must be positive")
        if cfg.min_buildings_per_location > cfg.max_buildings_per_location:
            raise ConfigInvalid("min_buildings_per_location exceeds max_buildings_per_location")
        if cfg.min_rooms_per_building > cfg.max_rooms_per_building:
            raise ConfigInvalid("min_rooms_per_building exceeds max_rooms_per_building")

    # =========================================================================
    # Locations
    # =========================================================================

    def generate_location(self) -> Location:
        latitude, longitude = self._place_coordinates()
        location = Location(
            id=LocationId.generate(self.rng),
            name=self._location_name(),
            latitude=latitude,
            longitude=longitude,
        )

        building_count = int(self.rng.integers(self.config.min_buildings_per_location,
                                               self.config.max_buildings_per_location + 1))
        for index in range(building_count):
            room_count = int(self.rng.integers(self.config.min_rooms_per_building,
                                               self.config.max_rooms_per_building + 1))
            location.add_building(self.generate_building(location.id, self._building_name(index), room_count))

        self.logger.debug(f"Location {location.name} at ({latitude:.3f}, {longitude:.3f}) "
                          f"with {building_count} buildings")
        return location

    def _place_coordinates(self) -> Tuple[float, float]:
        """Sample a point in a populated region at least 100 km from earlier ones."""
        regions = list(self.COORDINATE_REGIONS.values())
        candidate = (0.0, 0.0)

        for _ in range(self.MAX_PLACEMENT_ATTEMPTS):
            lat_min, lat_max, lon_min, lon_max = regions[int(self.rng.integers(len(regions)))]
            candidate = (float(self.rng.uniform(lat_min, lat_max)),
                         float(self.rng.uniform(lon_min, lon_max)))
            if all(haversine_km(candidate, placed) >= self.MIN_LOCATION_DISTANCE_KM
                   for placed in self.placed_coordinates):
                break
        else:
            self.logger.warning("Could not place location 100 km from all others; accepting last candidate")

        self.placed_coordinates.append(candidate)
        return candidate

    def _location_name(self) -> str:
        base = f"{self.faker.city()} Office"
        name = base
        suffix = 2
        while name in self.used_location_names:
            name = f"{base} {suffix}"
            suffix += 1
        self.used_location_names.add(name)
        return name

    def _building_name(self, index: int) -> str:
        if index < len(self.BUILDING_NAMES):
            return self.BUILDING_NAMES[index]
        return f"Building {index + 1}"

    # =========================================================================
    # Buildings and rooms
    # =========================================================================

    def generate_building(self, location_id: LocationId, name: str, room_count: int) -> Building:
        """Lobby first, then room_count - 1 rooms drawn from the type distribution."""
        building = Building(id=BuildingId.generate(self.rng), location_id=location_id, name=name)
        building.add_room(Room(
            id=RoomId.generate(self.rng),
            building_id=building.id,
            name="Main Lobby",
            room_type=RoomType.LOBBY,
            security_level=SecurityLevel.PUBLIC,
        ))

        restroom_number = 0
        for number in range(1, max(room_count, 1)):
            room_type = self._select_room_type()
            if room_type == RoomType.BATHROOM:
                restroom_number += 1
                room_name = f"Restroom {restroom_number}"
            else:
                pool = self.ROOM_NAMES[room_type]
                room_name = f"{pool[int(self.rng.integers(len(pool)))]} {number}"

            building.add_room(Room(
                id=RoomId.generate(self.rng),
                building_id=building.id,
                name=room_name,
                room_type=room_type,
                security_level=self._select_security_level(room_type),
            ))

        self._link_checkpoints(building)
        return building

    def _select_room_type(self) -> RoomType:
        draw = self.rng.random()
        for threshold, room_type in self.ROOM_TYPE_DISTRIBUTION:
            if draw < threshold:
                return room_type
        return RoomType.LABORATORY

    def _select_security_level(self, room_type: RoomType) -> SecurityLevel:
        if room_type in self.SECURITY_BY_ROOM_TYPE:
            return self.SECURITY_BY_ROOM_TYPE[room_type]
        if self.rng.random() < self.HIGH_SECURITY_PROBABILITY:
            return SecurityLevel.HIGH_SECURITY
        return SecurityLevel.MAX_SECURITY

    @staticmethod
    def _link_checkpoints(building: Building) -> None:
        """MaxSecurity rooms are reached through the building's HighSecurity rooms."""
        checkpoints = [r.id for r in building.rooms if r.security_level == SecurityLevel.HIGH_SECURITY]
        if not checkpoints:
            return
        for room in building.rooms:
            if room.security_level == SecurityLevel.MAX_SECURITY:
                for room_id in checkpoints:
                    room.add_intermediate(room_id)


def room_type_histogram(registry: LocationRegistry) -> dict:
    """Count of rooms per type; used by the run summary and tests."""
    counts = {room_type.value: 0 for room_type in RoomType}
    for _, _, room in registry.iter_rooms():
        counts[room.room_type.value] += 1
    return counts

