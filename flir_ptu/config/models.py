"""
Configuration models using Pydantic for validation.

All configuration is loaded from config.json and validated at startup.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    ip: str = Field(default="0.0.0.0", description="IP address to bind to")
    port: int = Field(default=5000, ge=1, le=65535, description="HTTP port")


class TransportConfig(BaseModel):
    """Serial / TCP transport configuration."""

    port: str = Field(
        default="",
        description="Serial device (e.g. /dev/ttyUSB0, COM3) or pyserial URL (e.g. socket://10.0.0.5:4000)"
    )
    baud: int = Field(default=9600, description="Baud rate (ignored for socket:// URLs)")
    timeout_seconds: float = Field(
        default=3.0, gt=0, le=30, description="Steady-state per-exchange read timeout"
    )
    handshake_timeout_seconds: float = Field(
        default=10.0, gt=0, le=120, description="Timeout waiting for the startup banner"
    )
    drain_byte_timeout_seconds: float = Field(
        default=0.1, gt=0, le=5, description="Per-byte timeout while draining residual bytes"
    )
    reset_timeout_seconds: float = Field(
        default=60.0, gt=0, le=600, description="Timeout for axis reset (physical homing cycle)"
    )
    max_command_length: int = Field(
        default=64, ge=1, le=1024, description="Maximum command line length in bytes"
    )

    @property
    def is_url(self) -> bool:
        """True when the port is a pyserial URL rather than a device path."""
        return "://" in self.port


class PTUConfig(BaseModel):
    """Pan-tilt unit behaviour configuration."""

    polling_interval_seconds: float = Field(
        default=1.0, ge=0.1, le=60, description="Interval between telemetry/position polls"
    )
    poll_on_connect: bool = Field(
        default=True, description="Start the background polling thread after connecting"
    )
    read_settings_on_connect: bool = Field(
        default=True, description="Query power modes, resolution and limits after the handshake"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    file: Optional[str] = Field(
        default="flir_ptu.log",
        description="Log file path (None for console only)"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SimulatorConfig(BaseModel):
    """Byte-level PTU simulator configuration."""

    enabled: bool = Field(default=False, description="Use simulator instead of real hardware")
    banner: str = Field(
        default=(
            "\r\n\r\n### PAN-TILT CONTROLLER\r\n"
            "### v3.3.0, (C)2010-2011 FLIR Commercial Systems, Inc., All Rights Reserved\r\n"
            "Initializing...*\r\n"
        ),
        description="Startup banner emitted when the transport opens"
    )
    initial_pan: int = Field(default=0, description="Starting pan position (steps)")
    initial_tilt: int = Field(default=0, description="Starting tilt position (steps)")
    pan_resolution_arcsec: float = Field(default=46.2857, gt=0, description="Pan resolution (arcsec/step)")
    tilt_resolution_arcsec: float = Field(default=46.2857, gt=0, description="Tilt resolution (arcsec/step)")
    pan_limits: tuple[int, int] = Field(default=(-27998, 27999), description="Pan min/max (steps)")
    tilt_limits: tuple[int, int] = Field(default=(-6999, 3500), description="Tilt min/max (steps)")
    voltage: float = Field(default=12.1, description="Simulated input voltage")
    temperatures_f: tuple[float, float, float] = Field(
        default=(75.0, 80.0, 78.5), description="Body, pan motor, tilt motor temperature (degF)"
    )
    response_latency_ms: int = Field(
        default=0, ge=0, le=5000, description="Artificial response delay (ms)"
    )
    residual_bytes: str = Field(
        default="", description="Stray bytes left in the channel after every reply"
    )
    drop_reply_rate: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Fraction of commands that get no reply (0.0-1.0)"
    )
    axes_initialized: bool = Field(
        default=True, description="False mimics a factory-reset unit whose axes were never reset"
    )

    @field_validator("pan_limits", "tilt_limits")
    @classmethod
    def validate_limits(cls, v):
        """Ensure min < max."""
        if v[0] >= v[1]:
            raise ValueError(f"Limit minimum ({v[0]}) must be below maximum ({v[1]})")
        return v


class AppConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    ptu: PTUConfig = Field(default_factory=PTUConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)
