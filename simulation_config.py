"""
simulation_config.py

Simulation configuration: defaults, JSON file loading, CLI-override merging
and validation.

Precedence, lowest to highest: dataclass defaults, JSON config file, CLI flags.
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from simulation_errors import ConfigInvalid


OUTPUT_FORMATS = ('json', 'csv')
TRAVEL_DISTRIBUTION_TOLERANCE = 0.01


@dataclass
class OutputFields:
    """Optional event fields to include in the output stream."""
    include_failure_reason: bool = False
    include_event_type: bool = False
    include_metadata: bool = False
    include_all: bool = False

    @property
    def failure_reason(self) -> bool:
        return self.include_all or self.include_failure_reason

    @property
    def event_type(self) -> bool:
        return self.include_all or self.include_event_type

    @property
    def metadata(self) -> bool:
        return self.include_all or self.include_metadata


@dataclass
class SimulationConfig:
    user_count: int = 10000
    location_count: int = 5
    min_buildings_per_location: int = 2
    max_buildings_per_location: int = 5
    min_rooms_per_building: int = 8
    max_rooms_per_building: int = 15
    curious_user_percentage: float = 0.05
    cloned_badge_percentage: float = 0.001
    primary_building_affinity: float = 0.8
    same_location_travel: float = 0.15
    different_location_travel: float = 0.05
    badge_reader_failure_rate: float = 0.001
    days: int = 1
    seed: Optional[int] = None
    start_date: Optional[str] = None
    output_fields: OutputFields = field(default_factory=OutputFields)
    output_format: str = 'json'
    user_profiles_output: Optional[str] = None

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationConfig":
        """Build a config from a (possibly partial) dictionary over defaults."""
        config = cls()
        config.update(data)
        return config

    def update(self, overrides: Dict[str, Any]) -> None:
        """Apply non-None overrides; nested output_fields merge key by key."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigInvalid(f"Unknown configuration keys: {sorted(unknown)}")

        for key, value in overrides.items():
            if value is None:
                continue
            if key == 'output_fields':
                self._update_output_fields(value)
            else:
                setattr(self, key, value)

    def _update_output_fields(self, value: Any) -> None:
        if isinstance(value, OutputFields):
            value = asdict(value)
        if not isinstance(value, dict):
            raise ConfigInvalid(f"output_fields must be an object, got {type(value).__name__}")
        known = {f.name for f in fields(OutputFields)}
        unknown = set(value) - known
        if unknown:
            raise ConfigInvalid(f"Unknown output_fields keys: {sorted(unknown)}")
        for key, flag in value.items():
            if flag is not None:
                setattr(self.output_fields, key, bool(flag))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def base_date(self) -> date:
        """First simulated day; today (UTC) unless start_date is set."""
        if self.start_date:
            return date.fromisoformat(self.start_date)
        return datetime.now(timezone.utc).date()

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """Raise ConfigInvalid on the first problem found."""
        for name in ('user_count', 'location_count', 'days'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigInvalid(f"{name} must be a positive integer, got {value!r}")

        self._validate_range('buildings_per_location')
        self._validate_range('rooms_per_building')

        for name in ('curious_user_percentage', 'cloned_badge_percentage',
                     'primary_building_affinity', 'same_location_travel',
                     'different_location_travel', 'badge_reader_failure_rate'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise ConfigInvalid(f"{name} must be within [0, 1], got {value!r}")

        travel_total = (self.primary_building_affinity + self.same_location_travel
                        + self.different_location_travel)
        if abs(travel_total - 1.0) > TRAVEL_DISTRIBUTION_TOLERANCE:
            raise ConfigInvalid(
                "primary_building_affinity + same_location_travel + "
                f"different_location_travel must sum to 1.0, got {travel_total:.3f}"
            )

        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigInvalid(f"output_format must be one of {OUTPUT_FORMATS}, got {self.output_format!r}")

        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            raise ConfigInvalid(f"seed must be a non-negative integer, got {self.seed!r}")

        if self.start_date:
            try:
                date.fromisoformat(self.start_date)
            except (TypeError, ValueError) as e:
                raise ConfigInvalid(f"start_date must be YYYY-MM-DD: {e}") from e

    def _validate_range(self, suffix: str) -> None:
        low = getattr(self, f"min_{suffix}")
        high = getattr(self, f"max_{suffix}")
        if low < 1:
            raise ConfigInvalid(f"min_{suffix} must be at least 1, got {low}")
        if low > high:
            raise ConfigInvalid(f"min_{suffix} ({low}) exceeds max_{suffix} ({high})")


# =============================================================================
# Configuration Loader
# =============================================================================

class ConfigLoader:
    """Loads a JSON configuration file into a SimulationConfig."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.logger = logging.getLogger(self.__class__.__name__)

    def load(self) -> SimulationConfig:
        self.logger.info(f"Loading configuration from {self.config_path}")

        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigInvalid(f"Config file is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigInvalid("Config file must contain a JSON object")

        return SimulationConfig.from_dict(data)


def build_config(config_path: Optional[Path] = None,
                 overrides: Optional[Dict[str, Any]] = None) -> SimulationConfig:
    """Defaults, then the optional config file, then overrides; validated."""
    if config_path is not None:
        config = ConfigLoader(config_path).load()
    else:
        config = SimulationConfig()
    if overrides:
        config.update(overrides)
    config.validate()
    return config
