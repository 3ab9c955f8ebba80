"""
Calibration Records
===================
Reference/measured pairs and the outcome of one calibration run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ReferenceMeasurement:
    """One calibration point: the reference standard and what the sensor read."""

    reference: float
    measured: float
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "measured": self.measured,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class LinearFit:
    offset: float
    slope: float


@dataclass(frozen=True)
class CalibrationValidation:
    accuracy_percent: float
    r2: float
    passed: bool
    uncertainty: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy_percent": self.accuracy_percent,
            "r2": self.r2,
            "passed": self.passed,
            "uncertainty": self.uncertainty,
        }


@dataclass(frozen=True)
class CalibrationRecord:
    """
    Append-only history entry for one calibration run.

    The record is kept whether the fit passed or not; only a passing record
    replaces the device's active calibration.
    """

    id: str
    sensor_id: str
    reference_measurements: tuple[ReferenceMeasurement, ...]
    fitted_offset: float
    fitted_slope: float
    validation: CalibrationValidation
    previous_offset: float
    previous_slope: float
    created_at: datetime
    performed_by: str = "operator"
    notes: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.validation.passed

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sensor_id": self.sensor_id,
            "reference_measurements": [m.to_dict() for m in self.reference_measurements],
            "fitted_offset": self.fitted_offset,
            "fitted_slope": self.fitted_slope,
            "validation": self.validation.to_dict(),
            "previous_calibration": {"offset": self.previous_offset, "slope": self.previous_slope},
            "created_at": self.created_at.isoformat(),
            "performed_by": self.performed_by,
            "notes": self.notes,
        }
