"""
simulation_statistics.py

Counters describing a simulation run. Only the batch orchestrator writes to
them, once per emitted event.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List

from badge_types import EventType


@dataclass
class SimulationStatistics:
    total_users: int = 0
    total_locations: int = 0
    total_buildings: int = 0
    total_rooms: int = 0
    curious_users: int = 0
    cloned_badge_users: int = 0
    night_shift_users: int = 0

    total_events: int = 0
    success_events: int = 0
    failure_events: int = 0
    invalid_badge_events: int = 0
    outside_hours_events: int = 0
    suspicious_events: int = 0

    # Orthogonal to the event-type counters above
    curious_events: int = 0
    impossible_traveler_events: int = 0
    night_shift_events: int = 0
    badge_reader_failure_events: int = 0

    days_simulated: int = 0
    simulation_duration_seconds: float = 0.0

    def record_infrastructure(self, registry, users) -> None:
        self.total_locations = registry.location_count
        self.total_buildings = registry.building_count
        self.total_rooms = registry.room_count
        self.total_users = len(users)
        self.curious_users = sum(1 for u in users if u.is_curious)
        self.cloned_badge_users = sum(1 for u in users if u.has_cloned_badge)
        self.night_shift_users = sum(1 for u in users if u.is_night_shift)

    def record_events(self, events: Iterable) -> None:
        for event in events:
            self.total_events += 1
            if event.event_type == EventType.SUCCESS:
                self.success_events += 1
            elif event.event_type == EventType.FAILURE:
                self.failure_events += 1
            elif event.event_type == EventType.INVALID_BADGE:
                self.invalid_badge_events += 1
            elif event.event_type == EventType.OUTSIDE_HOURS:
                self.outside_hours_events += 1
            elif event.event_type == EventType.SUSPICIOUS:
                self.suspicious_events += 1

            if event.is_curious_attempt:
                self.curious_events += 1
            if event.is_impossible_traveler:
                self.impossible_traveler_events += 1
            if event.is_night_shift_event:
                self.night_shift_events += 1
            if event.is_badge_reader_failure:
                self.badge_reader_failure_events += 1

    @property
    def is_consistent(self) -> bool:
        return self.total_events == (self.success_events + self.failure_events
                                     + self.invalid_badge_events + self.outside_hours_events
                                     + self.suspicious_events)

    def percentage(self, count: int) -> float:
        if self.total_events == 0:
            return 0.0
        return 100.0 * count / self.total_events

    @property
    def success_rate(self) -> float:
        return self.percentage(self.success_events)

    @property
    def events_per_second(self) -> float:
        if self.simulation_duration_seconds <= 0:
            return 0.0
        return self.total_events / self.simulation_duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary_lines(self) -> List[str]:
        """Human-readable report, one line per entry."""
        lines = [
            "=" * 60,
            "SIMULATION STATISTICS",
            "=" * 60,
            f"Users: {self.total_users} (curious {self.curious_users}, "
            f"cloned badges {self.cloned_badge_users}, night shift {self.night_shift_users})",
            f"Facilities: {self.total_locations} locations, {self.total_buildings} buildings, "
            f"{self.total_rooms} rooms",
            f"Days simulated: {self.days_simulated}",
            f"Total events: {self.total_events}",
        ]
        for label, count in [
            ("Success", self.success_events),
            ("Failure", self.failure_events),
            ("Invalid badge", self.invalid_badge_events),
            ("Outside hours", self.outside_hours_events),
            ("Suspicious", self.suspicious_events),
            ("Curious attempts", self.curious_events),
            ("Impossible traveler", self.impossible_traveler_events),
            ("Night shift", self.night_shift_events),
            ("Badge reader failures", self.badge_reader_failure_events),
        ]:
            lines.append(f"  {label:<22} {count:>10} ({self.percentage(count):.2f}%)")
        lines.append(f"Duration: {self.simulation_duration_seconds:.2f}s "
                     f"({self.events_per_second:.0f} events/s)")
        return lines
