"""
Observable PTU state exposed to clients.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional


class PropertyState(Enum):
    """Status indicator attached to each observable property."""
    IDLE = "Idle"
    OK = "Ok"
    BUSY = "Busy"
    ALERT = "Alert"


# Indicator names, one per observable property group
CONNECTION = "connection"
POSITION = "position"
TELEMETRY = "telemetry"
CORRECTIONS = "corrections"
HOLD_POWER = "hold_power"
MOVE_POWER = "move_power"
CONTROL_MODE = "control_mode"
RESOLUTION = "resolution"
LIMITS = "limits"
RESET = "reset"

INDICATORS = (
    CONNECTION,
    POSITION,
    TELEMETRY,
    CORRECTIONS,
    HOLD_POWER,
    MOVE_POWER,
    CONTROL_MODE,
    RESOLUTION,
    LIMITS,
    RESET,
)


def steps_to_degrees(steps: Optional[int], resolution_arcsec: Optional[float]) -> Optional[float]:
    """Convert motor steps to degrees using the axis resolution (arcsec/step)."""
    if steps is None or resolution_arcsec is None:
        return None
    return steps * resolution_arcsec / 3600.0


@dataclass
class AxisStatus:
    """Snapshot of one axis."""
    position_steps: Optional[int] = None
    position_degrees: Optional[float] = None
    hold_power: Optional[str] = None
    move_power: Optional[str] = None
    resolution_arcsec: Optional[float] = None
    min_limit: Optional[float] = None
    max_limit: Optional[float] = None
    corrections: Optional[int] = None


@dataclass
class TelemetryStatus:
    voltage: float
    temp_body: float
    temp_pan: float
    temp_tilt: float


@dataclass
class PTUStatus:
    """Immutable-by-convention snapshot returned by PTUController.status()."""
    connected: bool
    port: str
    pan: AxisStatus = field(default_factory=AxisStatus)
    tilt: AxisStatus = field(default_factory=AxisStatus)
    control_mode: Optional[str] = None
    telemetry: Optional[TelemetryStatus] = None
    indicators: Dict[str, str] = field(default_factory=dict)
    last_poll: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)
