"""
simulation_errors.py

Error taxonomy for the badge simulation.

Startup errors (ConfigInvalid, FacilityGenerationFailed, UserGenerationFailed)
are fatal. Per-user, per-activity and per-event errors (BehaviorEngineError,
TargetRoomUnknown, EventSerializationError) are logged and the offending item
is skipped.
"""


class SimulationError(Exception):
    """Base class for every error raised by the simulator."""


class ConfigInvalid(SimulationError, ValueError):
    """Configuration failed validation."""


class FacilityGenerationFailed(SimulationError):
    """Generated facility registry violates a structural invariant."""


class UserGenerationFailed(SimulationError):
    """User population could not be synthesized from the registry."""


class BehaviorEngineError(SimulationError):
    """No valid schedule could be produced for a user on a given day."""


class EventSerializationError(SimulationError):
    """A single event could not be rendered to the output format."""


class TargetRoomUnknown(SimulationError, KeyError):
    """A room id was looked up that the registry does not contain."""

    def __init__(self, room_id):
        super().__init__(room_id)
        self.room_id = room_id

    def __str__(self) -> str:
        return f"Target room not in registry: {self.room_id}"
