"""
batch_generator.py

Day-by-day simulation loop.

Each day every user gets a schedule, every activity becomes events, and the
day's events are sorted and written in chronological order. Events that land
on a later day are held back and merged into that day before it is written;
whatever is still pending after the last day is flushed at the end.
Statistics are updated here and nowhere else, after events are written.
"""

import json
import logging
import time
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, TextIO, Tuple

import pandas as pd
from numpy.random import Generator

from behavior_engine import BehaviorEngine
from event_generator import AccessEvent, EventGenerator, TimeVariance
from facility_model import LocationRegistry
from simulation_config import OutputFields, SimulationConfig
from simulation_errors import BehaviorEngineError, EventSerializationError, TargetRoomUnknown
from simulation_statistics import SimulationStatistics
from user_generator import User


# =============================================================================
# Event Writer
# =============================================================================

class EventWriter:
    """Renders events as NDJSON lines (or CSV rows) on a text stream."""

    REQUIRED_COLUMNS = ['timestamp', 'user_id', 'room_id', 'building_id', 'location_id', 'success']

    def __init__(self, stream: TextIO, output_fields: OutputFields, output_format: str = 'json'):
        self.stream = stream
        self.output_fields = output_fields
        self.output_format = output_format
        self.logger = logging.getLogger(self.__class__.__name__)
        self._header_written = False

    @property
    def columns(self) -> List[str]:
        columns = list(self.REQUIRED_COLUMNS)
        if self.output_fields.event_type:
            columns.append('event_type')
        if self.output_fields.failure_reason:
            columns.append('failure_reason')
        if self.output_fields.metadata:
            columns.append('metadata')
        return columns

    def serialize(self, event: AccessEvent) -> str:
        try:
            return json.dumps(event.to_record(self.output_fields))
        except (TypeError, ValueError) as e:
            raise EventSerializationError(f"Cannot serialize event for {event.user_id}: {e}") from e

    def write(self, events: List[AccessEvent]) -> List[AccessEvent]:
        """Write events in order; returns the ones actually written."""
        if self.output_format == 'csv':
            return self._write_csv(events)

        written = []
        for event in events:
            try:
                line = self.serialize(event)
            except EventSerializationError as e:
                self.logger.warning(f"{e}; event dropped")
                continue
            self.stream.write(line + "\n")
            written.append(event)
        self.stream.flush()
        return written

    def _write_csv(self, events: List[AccessEvent]) -> List[AccessEvent]:
        records = []
        written = []
        for event in events:
            try:
                record = event.to_record(self.output_fields)
                if 'metadata' in record:
                    record['metadata'] = json.dumps(record['metadata'])
            except (TypeError, ValueError) as e:
                self.logger.warning(f"Cannot serialize event for {event.user_id}: {e}; event dropped")
                continue
            records.append(record)
            written.append(event)

        if records or not self._header_written:
            df = pd.DataFrame(records, columns=self.columns)
            df.to_csv(self.stream, index=False, header=not self._header_written)
            self._header_written = True
        self.stream.flush()
        return written


# =============================================================================
# Batch Generator
# =============================================================================

class BatchGenerator:
    """Runs the simulation for a number of days and owns the statistics."""

    def __init__(self, config: SimulationConfig, registry: LocationRegistry, users: List[User],
                 rng: Generator, writer: EventWriter,
                 statistics: Optional[SimulationStatistics] = None):
        self.config = config
        self.registry = registry
        self.users = users
        self.rng = rng
        self.writer = writer
        self.statistics = statistics or SimulationStatistics()
        self.logger = logging.getLogger(self.__class__.__name__)

        self.behavior_engine = BehaviorEngine(config, rng)
        self.time_variance = TimeVariance(rng)
        self.event_generator = EventGenerator(config, rng, registry, self.time_variance)

        self.pending: Dict[date, List[AccessEvent]] = defaultdict(list)
        self.last_emitted: Optional[datetime] = None

    def run(self, num_days: Optional[int] = None) -> SimulationStatistics:
        """Simulate num_days days (config.days by default) and return the statistics."""
        num_days = self.config.days if num_days is None else num_days
        if num_days < 1:
            raise ValueError(f"num_days must be at least 1, got {num_days}")

        self.logger.info("=" * 60)
        self.logger.info(f"BADGE EVENT SIMULATION - {num_days} day(s), {len(self.users)} users")
        self.logger.info("=" * 60)

        started = time.perf_counter()
        self.statistics.record_infrastructure(self.registry, self.users)
        base_date = self.config.base_date()

        for offset in range(num_days):
            day = base_date + timedelta(days=offset)
            events_today, spill = self.generate_day(day)

            carried = self.pending.pop(day, [])
            merged = carried + events_today
            merged.sort(key=lambda e: e.timestamp)
            self._emit(merged)

            for spill_day, events in spill.items():
                self.pending[spill_day].extend(events)

            self.logger.info(f"Day {offset + 1}/{num_days} ({day.isoformat()}): "
                             f"{len(merged)} events ({len(carried)} carried over)")

        if self.pending:
            leftovers = [e for spill_day in sorted(self.pending) for e in self.pending[spill_day]]
            leftovers.sort(key=lambda e: e.timestamp)
            self.pending.clear()
            self._emit(leftovers)
            self.logger.info(f"Flushed {len(leftovers)} events scheduled past the last day")

        self.statistics.days_simulated = num_days
        self.statistics.simulation_duration_seconds = time.perf_counter() - started
        return self.statistics

    def generate_day(self, day: date) -> Tuple[List[AccessEvent], Dict[date, List[AccessEvent]]]:
        """Events falling on day, and events falling on later days keyed by date."""
        events_today: List[AccessEvent] = []
        spill: Dict[date, List[AccessEvent]] = defaultdict(list)

        for user in self.users:
            for event in self._user_day_events(user, day):
                event_day = event.timestamp.date()
                if event_day == day:
                    events_today.append(event)
                elif event_day > day:
                    spill[event_day].append(event)
                else:
                    self.logger.warning(f"Event for {user.id} dated {event_day} generated on {day}; "
                                        f"emitting with {day}")
                    events_today.append(event)

        return events_today, dict(spill)

    def _user_day_events(self, user: User, day: date) -> List[AccessEvent]:
        try:
            schedule = self.behavior_engine.generate_daily_schedule(user, day, self.registry)
        except BehaviorEngineError as e:
            self.logger.warning(f"Skipping {user.id} on {day}: {e}")
            return []

        events: List[AccessEvent] = []
        for activity in schedule:
            try:
                events.extend(self.event_generator.events_from_activity(user, activity))
            except TargetRoomUnknown as e:
                self.logger.warning(f"{e}; dropping {activity.activity_type.value} for {user.id}")

        events.extend(self.event_generator.plan_impossible_traveler(user, events))
        return events

    def _emit(self, events: List[AccessEvent]) -> None:
        events = self.time_variance.ensure_unique(events, self.last_emitted)
        written = self.writer.write(events)
        if written:
            self.last_emitted = written[-1].timestamp
        self.statistics.record_events(written)
