"""
badge_types.py

Identifier and enumeration types shared by every stage of the badge
simulation: prefixed opaque IDs for users, locations, buildings and rooms,
plus the room-type, security-level, activity-type, event-type and
failure-reason vocabularies.
"""

import uuid
from enum import Enum

from numpy.random import Generator


# =============================================================================
# Identifiers
# =============================================================================

class PrefixedId(str):
    """
    Opaque identifier whose string form is PREFIX + uuid4.

    IDs compare by equality only. Subclasses fix the prefix so that a room id
    can never be mistaken for a building id when serialized.
    """
    PREFIX = ""

    def __new__(cls, value: str):
        if not value.startswith(cls.PREFIX):
            raise ValueError(f"{cls.__name__} must start with '{cls.PREFIX}': {value}")
        return super().__new__(cls, value)

    @classmethod
    def generate(cls, rng: Generator) -> "PrefixedId":
        """Build a new id from the shared random source."""
        return cls(f"{cls.PREFIX}{uuid.UUID(bytes=rng.bytes(16), version=4)}")

    @property
    def uuid(self) -> uuid.UUID:
        return uuid.UUID(self[len(self.PREFIX):])

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str.__repr__(self)})"


class UserId(PrefixedId):
    PREFIX = "USER_"


class LocationId(PrefixedId):
    PREFIX = "LOC_"


class BuildingId(PrefixedId):
    PREFIX = "BLD_"


class RoomId(PrefixedId):
    PREFIX = "ROOM_"


# =============================================================================
# Enumerations
# =============================================================================

class RoomType(str, Enum):
    LOBBY = "Lobby"
    WORKSPACE = "Workspace"
    MEETING_ROOM = "MeetingRoom"
    BATHROOM = "Bathroom"
    CAFETERIA = "Cafeteria"
    KITCHEN = "Kitchen"
    SERVER_ROOM = "ServerRoom"
    EXECUTIVE_OFFICE = "ExecutiveOffice"
    STORAGE = "Storage"
    LABORATORY = "Laboratory"

    @property
    def is_common_area(self) -> bool:
        return self in COMMON_ROOM_TYPES

    @property
    def restricted_to_business_hours(self) -> bool:
        """Rooms that may only be entered during business hours."""
        return self in (RoomType.SERVER_ROOM, RoomType.EXECUTIVE_OFFICE, RoomType.LABORATORY)


COMMON_ROOM_TYPES = frozenset({
    RoomType.LOBBY,
    RoomType.BATHROOM,
    RoomType.CAFETERIA,
    RoomType.KITCHEN,
})


class SecurityLevel(str, Enum):
    PUBLIC = "Public"
    STANDARD = "Standard"
    RESTRICTED = "Restricted"
    HIGH_SECURITY = "HighSecurity"
    MAX_SECURITY = "MaxSecurity"

    @property
    def rank(self) -> int:
        return list(SecurityLevel).index(self)

    @property
    def is_high_security(self) -> bool:
        return self in (SecurityLevel.HIGH_SECURITY, SecurityLevel.MAX_SECURITY)


class ActivityType(str, Enum):
    ARRIVAL = "Arrival"
    MEETING = "Meeting"
    LUNCH = "Lunch"
    BATHROOM = "Bathroom"
    COLLABORATION = "Collaboration"
    DEPARTURE = "Departure"
    NIGHT_PATROL = "NightPatrol"
    UNAUTHORIZED_ATTEMPT = "UnauthorizedAttempt"


class EventType(str, Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"
    INVALID_BADGE = "InvalidBadge"
    OUTSIDE_HOURS = "OutsideHours"
    SUSPICIOUS = "Suspicious"


class FailureReason(str, Enum):
    UNAUTHORIZED_ACCESS = "UnauthorizedAccess"
    BADGE_READER_ERROR = "BadgeReaderError"
    CURIOUS_USER = "CuriousUser"
    IMPOSSIBLE_TRAVELER = "ImpossibleTraveler"
    OUTSIDE_BUSINESS_HOURS = "OutsideBusinessHours"
    INVALID_BADGE = "InvalidBadge"
