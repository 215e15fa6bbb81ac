"""
behavior_engine.py

Per-user daily activity schedules.

Regular users arrive in the morning, spend the day in meetings, lunch,
bathroom breaks and collaboration, and leave in the late afternoon.
Night-shift users run the inverted shape: pre-dawn patrols, a morning
departure and an evening arrival followed by more patrols. Curious users
get one-off unauthorized attempts spliced in after ordinary activities.

Every schedule goes through conflict resolution so activities never
overlap and never run past the end of the simulated day.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from numpy.random import Generator

from badge_types import ActivityType, RoomId, RoomType
from facility_model import Building, Location, LocationRegistry, Room
from simulation_config import SimulationConfig
from simulation_errors import BehaviorEngineError, TargetRoomUnknown
from user_generator import User


BUSINESS_HOURS_START = time(9, 0)
BUSINESS_HOURS_END = time(17, 0)


def day_start(day: date) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def is_business_hours(moment: datetime) -> bool:
    """Business hours are [09:00, 17:00) UTC on every day."""
    return BUSINESS_HOURS_START <= moment.time() < BUSINESS_HOURS_END


@dataclass
class ScheduledActivity:
    activity_type: ActivityType
    target_room: RoomId
    start_time: datetime
    duration: timedelta
    origin_room: Optional[RoomId] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration

    @property
    def is_unauthorized_attempt(self) -> bool:
        return self.activity_type == ActivityType.UNAUTHORIZED_ATTEMPT


# =============================================================================
# Behavior Engine
# =============================================================================

class BehaviorEngine:
    """Builds one day's schedule for one user."""

    CURIOUS_ATTEMPT_PROBABILITY = 0.15
    MAX_DAILY_ACTIVITIES = 6
    MAX_MEETINGS = 3
    LUNCH_PROBABILITY = 0.85

    def __init__(self, config: SimulationConfig, rng: Generator):
        self.config = config
        self.rng = rng
        self.logger = logging.getLogger(self.__class__.__name__)

    def generate_daily_schedule(self, user: User, day: date,
                                registry: LocationRegistry) -> List[ScheduledActivity]:
        """
        Ordered, non-overlapping activities for user on day.

        Raises BehaviorEngineError when the user's rooms cannot be resolved
        or nothing survives conflict resolution.
        """
        if user.is_night_shift:
            activities = self._night_shift_schedule(user, day, registry)
        else:
            activities = self._regular_schedule(user, day, registry)

        if user.is_curious:
            activities = self._inject_unauthorized_attempts(user, activities, registry)

        activities = self.resolve_conflicts(activities, day, registry)
        if not activities:
            raise BehaviorEngineError(f"No valid activities for {user.id} on {day.isoformat()}")

        user.scheduled_activities = activities
        user.current_room = activities[-1].target_room
        return activities

    # =========================================================================
    # Regular schedule
    # =========================================================================

    def _regular_schedule(self, user: User, day: date,
                          registry: LocationRegistry) -> List[ScheduledActivity]:
        _, building, workspace = self._home(user, registry)
        base = day_start(day)

        arrival = ScheduledActivity(
            ActivityType.ARRIVAL,
            workspace.id,
            base + timedelta(hours=8, minutes=30) + self._seconds(0, 45 * 60),
            self._minutes(5, 15),
        )

        in_day: List[ScheduledActivity] = []
        in_day.extend(self._lunch(user, base, building, registry))
        in_day.extend(self._bathroom_breaks(user, base, building))
        in_day.extend(self._meetings(user, base, building, registry))
        in_day.extend(self._collaborations(user, base, building, registry))

        if len(in_day) > self.MAX_DAILY_ACTIVITIES:
            keep = self.rng.permutation(len(in_day))[:self.MAX_DAILY_ACTIVITIES]
            in_day = [in_day[int(i)] for i in sorted(keep)]
        in_day.sort(key=lambda a: a.start_time)
        in_day = [self._clip_to_business_hours(a, base) for a in in_day]

        last_room = in_day[-1].target_room if in_day else workspace.id
        last_building = registry.resolve_room(last_room)[1]
        departure = ScheduledActivity(
            ActivityType.DEPARTURE,
            last_building.lobby_id,
            base + timedelta(hours=16, minutes=30) + self._seconds(0, 2 * 3600),
            self._minutes(1, 3),
        )
        return [arrival] + in_day + [departure]

    def _lunch(self, user: User, base: datetime, building: Building,
               registry: LocationRegistry) -> List[ScheduledActivity]:
        if self.rng.random() >= self.LUNCH_PROBABILITY:
            return []
        rooms = self._authorized(user, building, RoomType.CAFETERIA, RoomType.KITCHEN)
        if not rooms:
            rooms = self._authorized_in_location(user, registry, building.location_id,
                                                 RoomType.CAFETERIA, RoomType.KITCHEN)
        if not rooms:
            return []
        return [ScheduledActivity(
            ActivityType.LUNCH,
            self._pick(rooms).id,
            base + timedelta(hours=11, minutes=30) + self._seconds(0, 2 * 3600),
            self._minutes(20, 45),
        )]

    def _bathroom_breaks(self, user: User, base: datetime,
                         building: Building) -> List[ScheduledActivity]:
        rooms = self._authorized(user, building, RoomType.BATHROOM)
        if not rooms:
            return []
        count = int(self.rng.integers(0, 3))
        return [ScheduledActivity(
            ActivityType.BATHROOM,
            self._pick(rooms).id,
            base + timedelta(hours=9, minutes=30) + self._seconds(0, 7 * 3600),
            self._minutes(3, 8),
        ) for _ in range(count)]

    def _meetings(self, user: User, base: datetime, building: Building,
                  registry: LocationRegistry) -> List[ScheduledActivity]:
        count = int(self.rng.binomial(self.MAX_MEETINGS, user.behavior_profile.social_level))
        activities = []
        for _ in range(count):
            room = self._meeting_room(user, building, registry)
            if room is None:
                break
            activities.append(ScheduledActivity(
                ActivityType.MEETING,
                room.id,
                base + timedelta(hours=9) + self._seconds(0, 7 * 3600),
                self._minutes(30, 60),
            ))
        return activities

    def _meeting_room(self, user: User, building: Building,
                      registry: LocationRegistry) -> Optional[Room]:
        """Own building, other building in location, or other location by travel weights."""
        own = self._authorized(user, building, RoomType.MEETING_ROOM)
        same_location = [r for r in self._authorized_in_location(user, registry, building.location_id,
                                                                  RoomType.MEETING_ROOM)
                         if r.building_id != building.id]
        elsewhere = [r for loc in registry.locations if loc.id != building.location_id
                     for r in self._authorized_in_location(user, registry, loc.id, RoomType.MEETING_ROOM)]

        draw = self.rng.random()
        cfg = self.config
        if draw < cfg.primary_building_affinity:
            ordered = [own, same_location, elsewhere]
        elif draw < cfg.primary_building_affinity + cfg.same_location_travel:
            ordered = [same_location, own, elsewhere]
        else:
            ordered = [elsewhere, own, same_location]

        for rooms in ordered:
            if rooms:
                return self._pick(rooms)
        return None

    def _collaborations(self, user: User, base: datetime, building: Building,
                        registry: LocationRegistry) -> List[ScheduledActivity]:
        upper = 3 if user.behavior_profile.is_social else 2
        count = int(self.rng.integers(0, upper))
        activities = []
        for _ in range(count):
            if self.rng.random() < user.behavior_profile.travel_frequency:
                rooms = [r for r in self._authorized_in_location(
                    user, registry, building.location_id, RoomType.WORKSPACE, RoomType.MEETING_ROOM)
                    if r.building_id != building.id]
            else:
                rooms = []
            if not rooms:
                rooms = [r for r in self._authorized(user, building,
                                                     RoomType.WORKSPACE, RoomType.MEETING_ROOM)
                         if r.id != user.primary_workspace]
            if not rooms:
                break
            activities.append(ScheduledActivity(
                ActivityType.COLLABORATION,
                self._pick(rooms).id,
                base + timedelta(hours=9, minutes=30) + self._seconds(0, int(6.5 * 3600)),
                self._minutes(15, 45),
            ))
        return activities

    @staticmethod
    def _clip_to_business_hours(activity: ScheduledActivity, base: datetime) -> ScheduledActivity:
        close = base + timedelta(hours=BUSINESS_HOURS_END.hour)
        if activity.end_time > close:
            activity.duration = max(close - activity.start_time, timedelta(minutes=1))
        return activity

    # =========================================================================
    # Night-shift schedule
    # =========================================================================

    def _night_shift_schedule(self, user: User, day: date,
                              registry: LocationRegistry) -> List[ScheduledActivity]:
        entry = registry.get_building(user.assigned_night_building)
        if entry is None:
            raise BehaviorEngineError(f"Night building {user.assigned_night_building} unknown for {user.id}")
        _, building = entry
        base = day_start(day)

        activities = self._patrols(building, base + self._seconds(0, 30 * 60),
                                   base + timedelta(hours=5, minutes=30))

        activities.append(ScheduledActivity(
            ActivityType.DEPARTURE,
            building.lobby_id,
            base + timedelta(hours=6) + self._seconds(0, 4 * 3600),
            self._minutes(1, 3),
        ))

        arrival = ScheduledActivity(
            ActivityType.ARRIVAL,
            user.primary_workspace,
            base + timedelta(hours=15) + self._seconds(0, 4 * 3600),
            self._minutes(5, 15),
        )
        activities.append(arrival)

        evening_start = max(arrival.end_time, base + timedelta(hours=BUSINESS_HOURS_END.hour))
        activities.extend(self._patrols(building, evening_start + self._minutes(10, 60),
                                        base + timedelta(hours=23, minutes=30)))
        return activities

    def _patrols(self, building: Building, start: datetime,
                 latest_start: datetime) -> List[ScheduledActivity]:
        rooms = [r for r in building.rooms if r.room_type != RoomType.LOBBY] or building.rooms
        count = int(self.rng.integers(2, 5))
        patrols = []
        cursor = start
        for _ in range(count):
            if cursor > latest_start:
                break
            activity = ScheduledActivity(ActivityType.NIGHT_PATROL, self._pick(rooms).id,
                                         cursor, self._minutes(20, 60))
            patrols.append(activity)
            cursor = activity.end_time + self._minutes(2, 10)
        return patrols

    # =========================================================================
    # Unauthorized attempts
    # =========================================================================

    def _inject_unauthorized_attempts(self, user: User, activities: List[ScheduledActivity],
                                      registry: LocationRegistry) -> List[ScheduledActivity]:
        result: List[ScheduledActivity] = []
        for activity in activities:
            result.append(activity)
            if self.rng.random() >= self.CURIOUS_ATTEMPT_PROBABILITY:
                continue
            target = self._unauthorized_target(user, activity.target_room, registry)
            if target is None:
                continue
            result.append(ScheduledActivity(
                ActivityType.UNAUTHORIZED_ATTEMPT,
                target.id,
                activity.end_time + self._minutes(1, 10),
                self._minutes(1, 3),
            ))
        return result

    def _unauthorized_target(self, user: User, near_room: RoomId,
                             registry: LocationRegistry) -> Optional[Room]:
        """Same-building high-security rooms, then any same-building room, then the location."""
        entry = registry.get_room(near_room)
        if entry is None:
            return None
        location, building, _ = entry

        def denied(rooms) -> List[Room]:
            return [r for r in rooms
                    if r.room_type != RoomType.LOBBY
                    and not user.can_access(r.id, r.building_id, location.id)]

        same_building = denied(building.rooms)
        preferred = [r for r in same_building if r.security_level.is_high_security]
        in_location = denied(r for b in location.buildings if b.id != building.id for r in b.rooms)

        for rooms in (preferred, same_building, in_location):
            if rooms:
                return self._pick(rooms)
        return None

    # =========================================================================
    # Conflict resolution
    # =========================================================================

    def resolve_conflicts(self, activities: List[ScheduledActivity], day: date,
                          registry: LocationRegistry) -> List[ScheduledActivity]:
        """
        Make activities non-overlapping while preserving their order.

        When activity i+1 starts before i ends plus the travel time between
        their rooms, it and every later activity shift forward by the
        difference (the overlap plus travel when they overlap). Anything
        pushed past 23:59:59 is truncated, or dropped when no time remains.

        Also fills in each activity's origin room. Arrivals come from
        outside; an unauthorized attempt does not move the user.
        """
        deadline = end_of_day(day)
        resolved: List[ScheduledActivity] = []
        shift = timedelta(0)
        current_room: Optional[RoomId] = None

        for activity in activities:
            try:
                registry.resolve_room(activity.target_room)
            except TargetRoomUnknown as e:
                self.logger.warning(f"{e}; dropping {activity.activity_type.value}")
                continue

            activity.start_time += shift
            if activity.activity_type == ActivityType.ARRIVAL:
                current_room = None
            activity.origin_room = current_room

            if resolved:
                previous = resolved[-1]
                travel = registry.travel_time(current_room, activity.target_room, self.rng)
                required_start = previous.end_time + travel
                if activity.start_time < required_start:
                    delta = required_start - activity.start_time
                    activity.start_time += delta
                    shift += delta

            if activity.start_time >= deadline:
                self.logger.debug(f"Dropping {activity.activity_type.value} past end of day")
                continue
            if activity.end_time > deadline:
                activity.duration = deadline - activity.start_time

            resolved.append(activity)
            if not activity.is_unauthorized_attempt:
                current_room = activity.target_room

        return resolved

    # =========================================================================
    # Helpers
    # =========================================================================

    def _home(self, user: User, registry: LocationRegistry) -> Tuple[Location, Building, Room]:
        try:
            return registry.resolve_room(user.primary_workspace)
        except TargetRoomUnknown as e:
            raise BehaviorEngineError(f"Workspace of {user.id} is unreachable: {e}") from e

    @staticmethod
    def _authorized(user: User, building: Building, *room_types: RoomType) -> List[Room]:
        return [r for r in building.rooms
                if r.room_type in room_types and user.can_access(r.id, building.id, building.location_id)]

    @staticmethod
    def _authorized_in_location(user: User, registry: LocationRegistry, location_id,
                                *room_types: RoomType) -> List[Room]:
        location = registry.get_location(location_id)
        if location is None:
            return []
        return [r for _, r in location.iter_rooms()
                if r.room_type in room_types and user.can_access(r.id, r.building_id, location.id)]

    def _pick(self, items):
        return items[int(self.rng.integers(len(items)))]

    def _seconds(self, low: int, high: int) -> timedelta:
        return timedelta(seconds=int(self.rng.integers(low, high + 1)))

    def _minutes(self, low: int, high: int) -> timedelta:
        return timedelta(seconds=int(self.rng.integers(low * 60, high * 60 + 1)))
