"""
event_generator.py

Turns scheduled activities into badge access events.

For each activity the access flow to the target room is resolved and one
event is emitted per swipe. Each swipe is classified by the first matching
rule:

1. night-shift user, off hours, own night building, building grant -> Success
2. curious user at the target of an injected attempt            -> CuriousUser
3. impossible-traveler remote event (pair planner only)         -> ImpossibleTraveler
4. business-hours-only room outside business hours              -> OutsideHours
5. no permission                                                -> UnauthorizedAccess
6. random badge reader fault                                    -> BadgeReaderError
7. otherwise                                                    -> Success
"""

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from numpy.random import Generator

from badge_types import BuildingId, EventType, FailureReason, LocationId, RoomId, UserId
from behavior_engine import ScheduledActivity, is_business_hours
from facility_model import LocationRegistry
from simulation_config import OutputFields, SimulationConfig
from user_generator import User


TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


# =============================================================================
# Event Models
# =============================================================================

@dataclass
class ImpossibleTravelerMetadata:
    home_location: LocationId
    remote_location: LocationId
    geographical_distance_km: float
    time_gap: float  # seconds
    minimum_required_time: float  # seconds
    impossibility_factor: float


@dataclass
class EventMetadata:
    is_curious_attempt: bool = False
    is_impossible_traveler: bool = False
    is_badge_reader_failure: bool = False
    is_night_shift_event: bool = False
    retry_attempt_number: Optional[int] = None
    travel_time_violation: bool = False
    geographical_distance: Optional[float] = None
    impossible_traveler: Optional[ImpossibleTravelerMetadata] = None

    def to_dict(self) -> Dict[str, Any]:
        """Only set flags and present values; impossible-traveler fields are flattened."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'impossible_traveler':
                continue
            if value is None or value is False:
                continue
            result[f.name] = value
        if self.impossible_traveler is not None:
            for f in fields(self.impossible_traveler):
                value = getattr(self.impossible_traveler, f.name)
                result[f.name] = str(value) if isinstance(value, str) else value
        return result


@dataclass(frozen=True)
class AccessEvent:
    timestamp: datetime
    user_id: UserId
    room_id: RoomId
    building_id: BuildingId
    location_id: LocationId
    success: bool
    event_type: EventType = EventType.SUCCESS
    failure_reason: Optional[FailureReason] = None
    metadata: Optional[EventMetadata] = None

    @property
    def is_night_shift_event(self) -> bool:
        return self.metadata is not None and self.metadata.is_night_shift_event

    @property
    def is_curious_attempt(self) -> bool:
        return self.failure_reason == FailureReason.CURIOUS_USER

    @property
    def is_impossible_traveler(self) -> bool:
        return self.failure_reason == FailureReason.IMPOSSIBLE_TRAVELER

    @property
    def is_badge_reader_failure(self) -> bool:
        return self.failure_reason == FailureReason.BADGE_READER_ERROR

    def to_record(self, output_fields: Optional[OutputFields] = None) -> Dict[str, Any]:
        """Required fields always; optional ones per output_fields."""
        output_fields = output_fields or OutputFields()
        record: Dict[str, Any] = {
            'timestamp': format_timestamp(self.timestamp),
            'user_id': str(self.user_id),
            'room_id': str(self.room_id),
            'building_id': str(self.building_id),
            'location_id': str(self.location_id),
            'success': self.success,
        }
        if output_fields.event_type:
            record['event_type'] = self.event_type.value
        if output_fields.failure_reason and self.failure_reason is not None:
            record['failure_reason'] = self.failure_reason.value
        if output_fields.metadata and self.metadata is not None:
            metadata = self.metadata.to_dict()
            if metadata:
                record['metadata'] = metadata
        return record


# =============================================================================
# Time Variance
# =============================================================================

class TimeVariance:
    """Forward-only jitter and tie separation for event timestamps."""

    MAX_JITTER_MS = 300_000
    MIN_TIE_GAP_MS = 1
    MAX_TIE_GAP_MS = 500

    def __init__(self, rng: Generator):
        self.rng = rng

    def offset(self) -> timedelta:
        """A 0-5 min forward jitter at millisecond resolution."""
        return timedelta(milliseconds=int(self.rng.integers(0, self.MAX_JITTER_MS + 1)))

    @staticmethod
    def apply(moment: datetime, offset: timedelta) -> Optional[datetime]:
        """moment shifted by offset, or None when the shift would change its date."""
        shifted = moment + offset
        if shifted.date() != moment.date():
            return None
        return shifted

    def ensure_unique(self, events: List[AccessEvent],
                      previous: Optional[datetime] = None) -> List[AccessEvent]:
        """
        Given events in output order, push each non-increasing timestamp to
        1-500 ms after its predecessor. previous is the last timestamp
        already emitted, if any.
        """
        result: List[AccessEvent] = []
        last = previous
        for event in events:
            if last is not None and event.timestamp <= last:
                gap = int(self.rng.integers(self.MIN_TIE_GAP_MS, self.MAX_TIE_GAP_MS + 1))
                event = replace(event, timestamp=last + timedelta(milliseconds=gap))
            result.append(event)
            last = event.timestamp
        return result


# =============================================================================
# Event Generator
# =============================================================================

class EventGenerator:
    """Produces access events for activities and impossible-traveler pairs."""

    MIN_SWIPE_GAP_SECONDS = 15
    MAX_SWIPE_GAP_SECONDS = 60
    SUSPICIOUS_PROBABILITY = 0.01
    RETRY_MIN_SECONDS = 5
    RETRY_MAX_SECONDS = 30

    IMPOSSIBLE_TRAVELER_PROBABILITY = 0.3
    AIRCRAFT_SPEED_KMH = 900.0
    MIN_TRAVEL_TIME = timedelta(hours=4)
    MIN_PAIR_OFFSET = timedelta(minutes=15)

    def __init__(self, config: SimulationConfig, rng: Generator, registry: LocationRegistry,
                 time_variance: Optional[TimeVariance] = None):
        self.config = config
        self.rng = rng
        self.registry = registry
        self.time_variance = time_variance
        self.logger = logging.getLogger(self.__class__.__name__)

    def events_from_activity(self, user: User, activity: ScheduledActivity,
                             now: Optional[datetime] = None) -> List[AccessEvent]:
        """
        One event per swipe along the flow to the activity's target.

        With a TimeVariance, the whole flow is jittered by one forward offset
        before each swipe is classified, so business-hours rules see the
        emitted timestamp. Swipes the jitter would move to the next day are
        dropped.

        Raises TargetRoomUnknown when the target is not registered.
        """
        flow = self.registry.access_flow(activity.origin_room, activity.target_room, self.rng)
        offset = self.time_variance.offset() if self.time_variance else timedelta(0)
        scheduled = now or activity.start_time
        last_index = len(flow.steps) - 1
        events: List[AccessEvent] = []

        for index, step in enumerate(flow.steps):
            if index > 0:
                scheduled += timedelta(seconds=int(self.rng.integers(
                    self.MIN_SWIPE_GAP_SECONDS, self.MAX_SWIPE_GAP_SECONDS + 1)))
            timestamp = TimeVariance.apply(scheduled, offset)
            if timestamp is None:
                self.logger.debug(f"Dropping swipe for {user.id} jittered past midnight")
                continue
            is_attempt_target = activity.is_unauthorized_attempt and index == last_index
            swipes = self._classify(user, step.room_id, step.building_id, step.location_id,
                                    timestamp, is_attempt_target)
            events.extend(swipes)
            scheduled = swipes[-1].timestamp - offset

        return events

    def _classify(self, user: User, room_id: RoomId, building_id: BuildingId,
                  location_id: LocationId, timestamp: datetime,
                  is_attempt_target: bool) -> List[AccessEvent]:
        _, _, room = self.registry.resolve_room(room_id)
        permitted = user.can_access(room_id, building_id, location_id)
        off_hours = not is_business_hours(timestamp)

        def event(success, event_type, reason=None, metadata=None, at=timestamp):
            return AccessEvent(at, user.id, room_id, building_id, location_id,
                               success, event_type, reason, metadata)

        if (user.is_night_shift and off_hours
                and building_id == user.assigned_night_building
                and user.permissions.has_building_permission(building_id)):
            return [event(True, EventType.SUCCESS, metadata=EventMetadata(is_night_shift_event=True))]

        if user.is_curious and is_attempt_target and not permitted:
            return [event(False, EventType.FAILURE, FailureReason.CURIOUS_USER,
                          EventMetadata(is_curious_attempt=True))]

        if off_hours and room.room_type.restricted_to_business_hours:
            return [event(False, EventType.OUTSIDE_HOURS, FailureReason.OUTSIDE_BUSINESS_HOURS)]

        if not permitted:
            if room.security_level.is_high_security and self.rng.random() < self.SUSPICIOUS_PROBABILITY:
                return [event(False, EventType.SUSPICIOUS, FailureReason.UNAUTHORIZED_ACCESS)]
            return [event(False, EventType.FAILURE, FailureReason.UNAUTHORIZED_ACCESS)]

        if self.rng.random() < self.config.badge_reader_failure_rate:
            retry_at = timestamp + timedelta(seconds=int(self.rng.integers(
                self.RETRY_MIN_SECONDS, self.RETRY_MAX_SECONDS + 1)))
            failure = event(False, EventType.FAILURE, FailureReason.BADGE_READER_ERROR,
                            EventMetadata(is_badge_reader_failure=True))
            if room.room_type.restricted_to_business_hours and not is_business_hours(retry_at):
                return [failure, event(False, EventType.OUTSIDE_HOURS, FailureReason.OUTSIDE_BUSINESS_HOURS,
                                       EventMetadata(retry_attempt_number=1), at=retry_at)]
            return [failure, event(True, EventType.SUCCESS,
                                   metadata=EventMetadata(retry_attempt_number=1), at=retry_at)]

        return [event(True, EventType.SUCCESS)]

    # =========================================================================
    # Impossible-traveler pairs
    # =========================================================================

    def minimum_travel_time(self, a: LocationId, b: LocationId) -> timedelta:
        """Flight time at 900 km/h, never less than four hours."""
        hours = self.registry.distance_km(a, b) / self.AIRCRAFT_SPEED_KMH
        return max(timedelta(hours=hours), self.MIN_TRAVEL_TIME)

    def plan_impossible_traveler(self, user: User,
                                 home_events: List[AccessEvent]) -> List[AccessEvent]:
        """
        With probability 0.3, synthesize a remote event for a cloned-badge user
        at another location, closer in time to one of home_events than the
        minimum physical travel time. Returns [] when nothing is planned.
        """
        if not user.has_cloned_badge or not home_events:
            return []
        if self.rng.random() >= self.IMPOSSIBLE_TRAVELER_PROBABILITY:
            return []

        home = home_events[int(self.rng.integers(len(home_events)))]
        remote_locations = [loc for loc in self.registry.locations if loc.id != home.location_id]
        if not remote_locations:
            self.logger.debug(f"No remote location for impossible traveler {user.id}")
            return []
        remote = remote_locations[int(self.rng.integers(len(remote_locations)))]
        building = remote.buildings[int(self.rng.integers(len(remote.buildings)))]

        min_required = self.minimum_travel_time(home.location_id, remote.id)
        window_end = min(min_required, self.MIN_TRAVEL_TIME) - self.MIN_PAIR_OFFSET
        offset = timedelta(seconds=int(self.rng.integers(
            int(self.MIN_PAIR_OFFSET.total_seconds()), int(window_end.total_seconds()) + 1)))
        distance = self.registry.distance_km(home.location_id, remote.id)

        metadata = EventMetadata(
            is_impossible_traveler=True,
            travel_time_violation=True,
            geographical_distance=round(distance, 3),
            impossible_traveler=ImpossibleTravelerMetadata(
                home_location=home.location_id,
                remote_location=remote.id,
                geographical_distance_km=round(distance, 3),
                time_gap=offset.total_seconds(),
                minimum_required_time=min_required.total_seconds(),
                impossibility_factor=round(min_required / offset, 4),
            ),
        )
        remote_event = AccessEvent(
            timestamp=home.timestamp + offset,
            user_id=user.id,
            room_id=building.lobby_id,
            building_id=building.id,
            location_id=remote.id,
            success=True,
            event_type=EventType.SUCCESS,
            failure_reason=FailureReason.IMPOSSIBLE_TRAVELER,
            metadata=metadata,
        )
        self.logger.debug(f"Impossible traveler {user.id}: {distance:.0f} km in {offset}")
        return [remote_event]
