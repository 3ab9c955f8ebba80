"""
Sensor Device Entity
====================
Identity, transport configuration and mutable runtime state of a physical
sensor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sensorhub.enums import CalibrationStatus, Protocol, SensorKind, SensorStatus

# Parameter measured by a device when none is configured explicitly.
DEFAULT_PARAMETERS: dict[SensorKind, str] = {
    SensorKind.ROOT_ZONE: "ec",
    SensorKind.CANOPY_TEMPERATURE: "canopy_temp",
    SensorKind.CO2: "co2",
    SensorKind.LIGHT_PAR: "ppfd",
}

# Required connection_params keys per protocol. Modbus RTU swaps "host"
# for a serial "port"; see required_connection_keys().
REQUIRED_CONNECTION_KEYS: dict[Protocol, tuple[str, ...]] = {
    Protocol.MODBUS: ("host", "address"),
    Protocol.MQTT: ("topic",),
    Protocol.SERIAL: ("port", "baud_rate"),
    Protocol.HTTP: ("url",),
}


def required_connection_keys(protocol: Protocol, params: dict[str, Any]) -> tuple[str, ...]:
    """Return the connection_params keys a device must provide."""
    if protocol == Protocol.MODBUS and str(params.get("mode", "tcp")).lower() == "rtu":
        return ("port", "address")
    return REQUIRED_CONNECTION_KEYS[protocol]


@dataclass
class CalibrationState:
    """Active linear calibration of a device (calibrated = raw * slope + offset)."""

    offset: float = 0.0
    slope: float = 1.0
    last_calibrated: datetime | None = None
    next_calibration_due: datetime | None = None
    status: CalibrationStatus = CalibrationStatus.CALIBRATED

    def apply(self, raw_value: float) -> float:
        return (raw_value * self.slope) + self.offset

    def is_due(self, now: datetime) -> bool:
        return self.next_calibration_due is not None and self.next_calibration_due <= now

    def replace_fit(self, offset: float, slope: float, calibrated_at: datetime, interval_days: int) -> None:
        """Install a passing fit and push the next due date out."""
        self.offset = offset
        self.slope = slope
        self.last_calibrated = calibrated_at
        self.next_calibration_due = calibrated_at + timedelta(days=interval_days)
        self.status = CalibrationStatus.CALIBRATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "offset": self.offset,
            "slope": self.slope,
            "last_calibrated": self.last_calibrated.isoformat() if self.last_calibrated else None,
            "next_calibration_due": (
                self.next_calibration_due.isoformat() if self.next_calibration_due else None
            ),
            "status": self.status.value,
        }


@dataclass
class SensorDevice:
    """
    A registered sensor.

    ``status`` and ``error_count`` are owned by the connection manager,
    ``calibration`` by the calibration engine. Callers outside those services
    read snapshots via :meth:`to_dict`.
    """

    id: str
    kind: SensorKind
    protocol: Protocol
    connection_params: dict[str, Any]
    polling_interval_seconds: float = 60.0
    parameter: str | None = None
    calibration: CalibrationState = field(default_factory=CalibrationState)
    status: SensorStatus = SensorStatus.DISCONNECTED
    error_count: int = 0
    last_reading_at: datetime | None = None

    # Descriptive metadata
    name: str | None = None
    model: str | None = None
    manufacturer: str | None = None
    zone: str | None = None

    # Canopy IR sensors: leaf temperature = canopy temperature * emissivity
    emissivity: float | None = None
    # CO2 NDIR sensors need to warm up before the first connect
    warmup_seconds: float = 0.0

    def __post_init__(self) -> None:
        self.kind = SensorKind(self.kind)
        self.protocol = Protocol(self.protocol)
        if self.parameter is None:
            self.parameter = DEFAULT_PARAMETERS.get(self.kind)

    @property
    def is_pull(self) -> bool:
        return self.protocol.is_pull

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary"""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "protocol": self.protocol.value,
            "parameter": self.parameter,
            "connection_params": dict(self.connection_params),
            "polling_interval_seconds": self.polling_interval_seconds,
            "calibration": self.calibration.to_dict(),
            "status": self.status.value,
            "error_count": self.error_count,
            "last_reading_at": self.last_reading_at.isoformat() if self.last_reading_at else None,
            "model": self.model,
            "manufacturer": self.manufacturer,
            "zone": self.zone,
            "emissivity": self.emissivity,
            "warmup_seconds": self.warmup_seconds,
        }
