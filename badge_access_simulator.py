#!/usr/bin/env python3
"""
badge_access_simulator.py

Generates synthetic physical-access badge events for a fictional enterprise:
- stdout: chronologically ordered access events, one JSON object per line
- optional user-profile file: the answer key with each user's ground-truth
  permissions and anomaly flags (curious, cloned badge, night shift)

Usage:
    python badge_access_simulator.py --user-count 1000 --days 3 --seed 42 > events.jsonl
    python badge_access_simulator.py --config simulation_config.json --user-profiles-output profiles.jsonl
    python badge_access_simulator.py --print-config
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

# External dependencies
try:
    import numpy as np
    import pandas as pd
    from faker import Faker
except ImportError as e:
    print(f"Error: Missing required library: {e}", file=sys.stderr)
    print("Please install dependencies: pip install pandas numpy faker scipy", file=sys.stderr)
    sys.exit(1)

from batch_generator import BatchGenerator, EventWriter
from facility_generator import FacilityGenerator, room_type_histogram
from facility_model import LocationRegistry
from simulation_config import SimulationConfig, build_config
from simulation_errors import ConfigInvalid, SimulationError
from simulation_statistics import SimulationStatistics
from user_generator import User, UserGenerator, profile_records


# =============================================================================
# Data Writer
# =============================================================================

class DataWriter:
    """Writes the user-profile answer key and run statistics."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def write_user_profiles(self, users: List[User], output_path: Path) -> Path:
        """Write one JSON record per user."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame(profile_records(users))
        df.to_json(output_path, orient='records', lines=True, double_precision=15)
        self.logger.info(f"Written {len(df)} user profiles to {output_path}")
        return output_path

    def write_statistics(self, stats: SimulationStatistics, output_path: Path) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(stats.to_dict(), f, indent=2, default=str)
        self.logger.info(f"Written statistics to {output_path}")
        return output_path


# =============================================================================
# Simulator
# =============================================================================

class BadgeAccessSimulator:
    """Wires the generators together for one run."""

    def __init__(self, config: SimulationConfig, stream: Optional[TextIO] = None):
        self.config = config
        self.stream = stream if stream is not None else sys.stdout
        self.logger = logging.getLogger(self.__class__.__name__)
        self.data_writer = DataWriter()

        # Generated data
        self.registry: Optional[LocationRegistry] = None
        self.users: List[User] = []

    def run(self) -> SimulationStatistics:
        self.logger.info("=" * 60)
        self.logger.info("BADGE ACCESS SIMULATION - STARTING")
        self.logger.info("=" * 60)

        seed = self.config.seed
        self.logger.info(f"Using seed: {seed if seed is not None else 'OS entropy'}")
        rng = np.random.default_rng(seed)
        faker = Faker()
        faker.seed_instance(int(rng.integers(2 ** 32)))

        registry = FacilityGenerator(self.config, rng, faker).generate()
        self.logger.debug(f"Room types: {room_type_histogram(registry)}")
        self.registry = registry

        users = UserGenerator(self.config, rng, registry).generate()
        self.users = users

        if self.config.user_profiles_output:
            self.data_writer.write_user_profiles(users, Path(self.config.user_profiles_output))

        writer = EventWriter(self.stream, self.config.output_fields, self.config.output_format)
        statistics = BatchGenerator(self.config, registry, users, rng, writer).run(self.config.days)

        self.logger.info("=" * 60)
        self.logger.info(f"BADGE ACCESS SIMULATION - COMPLETE ({statistics.total_events} events)")
        self.logger.info("=" * 60)
        return statistics


# =============================================================================
# Main Entry Point
# =============================================================================

def setup_logging(level: str = 'WARNING') -> None:
    """Configure logging on stderr; stdout carries the event stream."""
    log_format = "%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=log_format,
        stream=sys.stderr
    )
    # Suppress verbose logs from faker
    logging.getLogger("faker").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Synthetic Badge Access Event Generator",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", type=Path, default=None,
                        help="Path to configuration JSON file")

    population = parser.add_argument_group("population and facilities")
    population.add_argument("--user-count", type=int, help="Number of badge holders")
    population.add_argument("--location-count", type=int, help="Number of office locations")
    population.add_argument("--min-buildings-per-location", type=int)
    population.add_argument("--max-buildings-per-location", type=int)
    population.add_argument("--min-rooms-per-building", type=int)
    population.add_argument("--max-rooms-per-building", type=int)

    rates = parser.add_argument_group("behavior and anomaly rates")
    rates.add_argument("--curious-user-percentage", type=float)
    rates.add_argument("--cloned-badge-percentage", type=float)
    rates.add_argument("--primary-building-affinity", type=float)
    rates.add_argument("--same-location-travel", type=float)
    rates.add_argument("--different-location-travel", type=float)
    rates.add_argument("--badge-reader-failure-rate", type=float)

    run = parser.add_argument_group("run")
    run.add_argument("--days", type=int, help="Number of days to simulate")
    run.add_argument("--seed", type=int, help="Random seed (omit for OS entropy)")
    run.add_argument("--start-date", help="First simulated day, YYYY-MM-DD (default: today UTC)")

    output = parser.add_argument_group("output")
    output.add_argument("--output-format", choices=['json', 'csv'])
    output.add_argument("--user-profiles-output", help="Write the user-profile answer key here")
    output.add_argument("--statistics-output", type=Path, default=None,
                        help="Write final statistics JSON here")
    output.add_argument("--include-failure-reason", action="store_true", default=None)
    output.add_argument("--include-event-type", action="store_true", default=None)
    output.add_argument("--include-metadata", action="store_true", default=None)
    output.add_argument("--include-all", action="store_true", default=None,
                        help="Include every optional event field")

    parser.add_argument("--dry-run", action="store_true",
                        help="Validate configuration and exit")
    parser.add_argument("--print-config", action="store_true",
                        help="Print the default configuration as JSON and exit")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose (INFO) logging")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")

    return parser.parse_args(argv)


CONFIG_ARGUMENTS = [
    'user_count', 'location_count',
    'min_buildings_per_location', 'max_buildings_per_location',
    'min_rooms_per_building', 'max_rooms_per_building',
    'curious_user_percentage', 'cloned_badge_percentage',
    'primary_building_affinity', 'same_location_travel', 'different_location_travel',
    'badge_reader_failure_rate', 'days', 'seed', 'start_date',
    'output_format', 'user_profiles_output',
]
OUTPUT_FIELD_ARGUMENTS = ['include_failure_reason', 'include_event_type', 'include_metadata', 'include_all']


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """CLI values that were actually given; None means 'not set'."""
    overrides = {name: getattr(args, name) for name in CONFIG_ARGUMENTS
                 if getattr(args, name) is not None}
    output_fields = {name: True for name in OUTPUT_FIELD_ARGUMENTS if getattr(args, name)}
    if output_fields:
        overrides['output_fields'] = output_fields
    return overrides


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.debug:
        log_level = 'DEBUG'
    elif args.verbose:
        log_level = 'INFO'
    else:
        log_level = 'WARNING'
    setup_logging(log_level)

    if args.print_config:
        print(json.dumps(SimulationConfig().to_dict(), indent=2))
        return

    try:
        config = build_config(args.config, overrides_from_args(args))
        if args.dry_run:
            logging.getLogger("BadgeAccessSimulator").info("Configuration valid (dry run)")
            return

        statistics = BadgeAccessSimulator(config).run()
        print("\n".join(statistics.summary_lines()), file=sys.stderr)
        if args.statistics_output:
            DataWriter().write_statistics(statistics, args.statistics_output)
    except FileNotFoundError as e:
        logging.error(f"File not found: {e}")
        sys.exit(1)
    except ConfigInvalid as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)
    except SimulationError as e:
        logging.error(f"Simulation failed: {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
