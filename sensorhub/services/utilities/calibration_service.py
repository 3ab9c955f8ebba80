"""
Calibration Service
===================
Fits, applies and validates the linear raw -> engineering-unit transform of
each sensor, and keeps calibration history.

    calibrated = raw * slope + offset

A fit is accepted only when it reaches ``min_accuracy`` percent; otherwise the
previous calibration stays active, the device is flagged
``needs_calibration`` and a ``calibration_needed`` alert is raised.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Sequence

import numpy as np

from sensorhub.domain.exceptions import CalibrationValidationError, NotFoundError
from sensorhub.domain.sensors import (
    CalibrationRecord,
    CalibrationState,
    CalibrationValidation,
    LinearFit,
    ReferenceMeasurement,
)
from sensorhub.enums import AlertSeverity, CalibrationStatus, SensorEvent
from sensorhub.utils.time import coerce_datetime, utc_now

if TYPE_CHECKING:
    from sensorhub.hardware.sensors.registry import DeviceRegistry
    from sensorhub.services.application.alert_service import AlertService
    from sensorhub.services.protocols import ReadingStore
    from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_MIN_ACCURACY = 95.0


def _as_arrays(measurements: Sequence[ReferenceMeasurement]) -> tuple[np.ndarray, np.ndarray]:
    x = np.array([m.measured for m in measurements], dtype=float)
    y = np.array([m.reference for m in measurements], dtype=float)
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise CalibrationValidationError("Calibration points must be finite numbers")
    return x, y


def fit(measurements: Sequence[ReferenceMeasurement]) -> LinearFit:
    """
    Ordinary least squares of reference (y) against measured (x).

        slope  = (nΣxy − ΣxΣy) / (nΣx² − (Σx)²)
        offset = (Σy − slope·Σx) / n

    Raises:
        CalibrationValidationError: fewer than two points, or every measured
            value identical (the denominator vanishes)
    """
    if len(measurements) < 2:
        raise CalibrationValidationError(
            "At least two calibration points are required",
            detail={"points": len(measurements)},
        )
    x, y = _as_arrays(measurements)
    n = float(len(x))
    sum_x, sum_y = float(np.sum(x)), float(np.sum(y))
    sum_xy, sum_xx = float(np.sum(x * y)), float(np.sum(x * x))

    denominator = n * sum_xx - sum_x**2
    if np.allclose(x, x[0]) or denominator == 0:
        raise CalibrationValidationError(
            "Measured values are degenerate; they must span more than one value",
            detail={"measured": x.tolist()},
        )

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    offset = (sum_y - slope * sum_x) / n
    return LinearFit(offset=float(offset), slope=float(slope))


def apply(raw_value: float, calibration: CalibrationState | LinearFit) -> float:
    """calibrated = raw * slope + offset"""
    return raw_value * calibration.slope + calibration.offset


def _percent_error(predicted: float, reference: float) -> float:
    if reference == 0:
        # No relative scale at zero: exact hits are perfect, anything else is a miss
        return 0.0 if math.isclose(predicted, 0.0, abs_tol=1e-12) else 100.0
    return abs(predicted - reference) / abs(reference) * 100.0


def validate(
    measurements: Sequence[ReferenceMeasurement],
    offset: float,
    slope: float,
    min_accuracy: float = DEFAULT_MIN_ACCURACY,
) -> CalibrationValidation:
    """
    Score a fit against the points it was derived from.

    accuracy_percent = 100 − mean(percent error of each prediction), floored at 0
    r2 = 1 − SS_res / SS_tot
    uncertainty = sqrt(SS_res / (n − 2)), the residual standard error
    """
    if not measurements:
        raise CalibrationValidationError("No calibration points to validate")
    x, y = _as_arrays(measurements)
    predicted = x * slope + offset

    errors = [_percent_error(float(p), float(r)) for p, r in zip(predicted, y)]
    accuracy = max(0.0, 100.0 - float(np.mean(errors)))

    residuals = y - predicted
    ss_res = float(np.sum(residuals**2))
    ss_tot = float(np.sum((y - np.mean(y)) ** 2))
    if ss_tot == 0:
        r2 = 1.0 if math.isclose(ss_res, 0.0, abs_tol=1e-12) else 0.0
    else:
        r2 = 1.0 - ss_res / ss_tot

    uncertainty = math.sqrt(ss_res / (len(x) - 2)) if len(x) > 2 else 0.0

    return CalibrationValidation(
        accuracy_percent=round(accuracy, 4),
        r2=round(r2, 6),
        passed=accuracy >= min_accuracy,
        uncertainty=round(uncertainty, 6),
    )


def parse_measurements(points: Iterable[Any]) -> list[ReferenceMeasurement]:
    """Accept ReferenceMeasurement objects or ``{reference, measured, timestamp}`` dicts."""
    parsed: list[ReferenceMeasurement] = []
    for point in points:
        if isinstance(point, ReferenceMeasurement):
            parsed.append(point)
            continue
        try:
            parsed.append(
                ReferenceMeasurement(
                    reference=float(point["reference"]),
                    measured=float(point["measured"]),
                    timestamp=coerce_datetime(point.get("timestamp")),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CalibrationValidationError(f"Invalid calibration point {point!r}") from exc
    return parsed


class CalibrationService:
    """
    Service for sensor calibration runs.

    Provides:
    - Operator-triggered calibration (fit + validate + replace)
    - Calibration history
    - The periodic calibration-due sweep
    """

    def __init__(
        self,
        registry: "DeviceRegistry",
        store: "ReadingStore",
        alert_service: "AlertService",
        event_bus: "EventBus | None" = None,
        *,
        min_accuracy: float = DEFAULT_MIN_ACCURACY,
        interval_days: int = 30,
    ):
        self.registry = registry
        self.store = store
        self.alert_service = alert_service
        self.event_bus = event_bus
        self.min_accuracy = min_accuracy
        self.interval_days = interval_days
        self._history: dict[str, list[CalibrationRecord]] = {}

    def calibrate(
        self,
        sensor_id: str,
        points: Iterable[Any],
        *,
        performed_by: str = "operator",
        notes: str | None = None,
        now: datetime | None = None,
    ) -> CalibrationRecord:
        """
        Fit and validate a calibration from reference/measured pairs.

        Returns the record whether it passed or not. Raises
        CalibrationValidationError when no fit can be computed at all.
        """
        measurements = parse_measurements(points)
        now = now or utc_now()

        with self.registry.locked(sensor_id) as device:
            state = device.calibration
            previous = (state.offset, state.slope)
            prior_status = state.status
            state.status = CalibrationStatus.CALIBRATING
            try:
                fitted = fit(measurements)
                validation = validate(measurements, fitted.offset, fitted.slope, self.min_accuracy)
            except CalibrationValidationError:
                state.status = prior_status
                raise

            record = CalibrationRecord(
                id=uuid.uuid4().hex,
                sensor_id=sensor_id,
                reference_measurements=tuple(measurements),
                fitted_offset=fitted.offset,
                fitted_slope=fitted.slope,
                validation=validation,
                previous_offset=previous[0],
                previous_slope=previous[1],
                created_at=now,
                performed_by=performed_by,
                notes=notes,
            )

            if validation.passed:
                state.replace_fit(fitted.offset, fitted.slope, now, self.interval_days)
            else:
                # Keep the active fit; only flag it
                state.status = CalibrationStatus.NEEDS_CALIBRATION

        self._history.setdefault(sensor_id, []).append(record)
        self.store.save_calibration(record)

        if validation.passed:
            logger.info(
                "Calibrated sensor %s: y = %.6gx + %.6g (accuracy %.2f%%, r2 %.4f)",
                sensor_id,
                fitted.slope,
                fitted.offset,
                validation.accuracy_percent,
                validation.r2,
            )
        else:
            logger.warning(
                "Calibration rejected for sensor %s: accuracy %.2f%% < %.2f%%",
                sensor_id,
                validation.accuracy_percent,
                self.min_accuracy,
            )
            self.alert_service.raise_calibration_needed(
                sensor_id,
                AlertSeverity.HIGH,
                reason=(
                    f"Calibration accuracy {validation.accuracy_percent:.1f}% is below "
                    f"the required {self.min_accuracy:.1f}%"
                ),
            )

        if self.event_bus is not None:
            self.event_bus.publish(SensorEvent.CALIBRATION_COMPLETED, record)
        return record

    def get_history(self, sensor_id: str) -> list[CalibrationRecord]:
        """Calibration records for a sensor, oldest first."""
        self.registry.get(sensor_id)
        return list(self._history.get(sensor_id, []))

    def forget(self, sensor_id: str) -> None:
        self._history.pop(sensor_id, None)

    def check_due_calibrations(self, now: datetime | None = None) -> list[str]:
        """
        Flag devices whose ``next_calibration_due`` has passed.

        Returns:
            Ids of devices that became due in this sweep
        """
        now = now or utc_now()
        newly_due: list[str] = []
        for device in self.registry.list_devices():
            try:
                with self.registry.locked(device.id) as locked_device:
                    state = locked_device.calibration
                    if not state.is_due(now) or state.status == CalibrationStatus.NEEDS_CALIBRATION:
                        continue
                    state.status = CalibrationStatus.NEEDS_CALIBRATION
                    due = state.next_calibration_due
            except NotFoundError:
                # Deregistered during the sweep
                continue
            newly_due.append(device.id)
            self.alert_service.raise_calibration_needed(
                device.id,
                AlertSeverity.MEDIUM,
                reason=f"Calibration was due {due.isoformat() if due else 'now'}",
            )
        if newly_due:
            logger.info("Calibration due for %d sensor(s): %s", len(newly_due), ", ".join(newly_due))
        return newly_due
