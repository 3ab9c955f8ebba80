"""
Sensor Management Service
==========================
Facade over registration, connection and calibration, and home of the
reading pipeline that turns a raw transport value into a stored reading.

Pipeline (one raw value from a connected sensor):
    raw -> calibration -> measured values (+ leaf_temp for IR canopy sensors)
        -> quality (range + rate of change) -> derived VPD / leaf VPD
        -> threshold alerts -> ReadingStore -> EventBus

Architecture:
    SensorManagementService
      ├─ ConnectionManager (transports, reconnection)
      │    └─ SensorPollingService (per-device timers)
      ├─ CalibrationService (fit/apply/validate)
      ├─ ThresholdService + AlertService (out_of_range alerts)
      └─ QualityProcessor (reading quality)
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from sensorhub.domain.sensors import CalibrationRecord, SensorDevice, SensorReading
from sensorhub.enums import ReadingQuality, SensorEvent, SensorKind
from sensorhub.hardware.sensors.processors.quality_processor import QualityProcessor
from sensorhub.services.utilities.calibration_service import apply as apply_calibration
from sensorhub.utils.psychrometrics import compute_derived_metrics
from sensorhub.utils.time import utc_now

if TYPE_CHECKING:
    from sensorhub.hardware.sensors.registry import DeviceRegistry
    from sensorhub.services.application.alert_service import AlertService
    from sensorhub.services.application.threshold_service import ThresholdService
    from sensorhub.services.hardware.connection_manager import ConnectionManager
    from sensorhub.services.protocols import ReadingStore
    from sensorhub.services.utilities.calibration_service import CalibrationService
    from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_ZONE = "default"
AMBIENT_PARAMETERS = ("temperature", "humidity")


class AmbientContext:
    """
    Latest ambient air temperature and humidity per zone.

    Derived metrics combine values from different devices of the same zone;
    entries older than ``max_age_seconds`` are ignored.
    """

    def __init__(self, max_age_seconds: float = 300.0):
        self.max_age = timedelta(seconds=max_age_seconds)
        self._lock = threading.Lock()
        self._values: Dict[str, Dict[str, tuple[float, datetime]]] = {}

    def update(self, zone: str, parameter: str, value: float, at: datetime) -> None:
        with self._lock:
            self._values.setdefault(zone, {})[parameter] = (value, at)

    def get(self, zone: str, parameter: str, now: datetime) -> Optional[float]:
        with self._lock:
            entry = self._values.get(zone, {}).get(parameter)
        if entry is None:
            return None
        value, at = entry
        if now - at > self.max_age:
            return None
        return value


class SensorManagementService:
    """
    Unified service for sensor operations.

    Example:
        service.register_sensor(device)
        service.connect_sensor(device.id)
        service.calibrate_sensor(device.id, [{"reference": 1.41, "measured": 1.38}, ...])
    """

    def __init__(
        self,
        registry: "DeviceRegistry",
        connection_manager: "ConnectionManager",
        calibration_service: "CalibrationService",
        threshold_service: "ThresholdService",
        alert_service: "AlertService",
        store: "ReadingStore",
        *,
        quality_processor: QualityProcessor | None = None,
        event_bus: "EventBus | None" = None,
        ambient_max_age_seconds: float = 300.0,
    ):
        self.registry = registry
        self.connection_manager = connection_manager
        self.calibration_service = calibration_service
        self.threshold_service = threshold_service
        self.alert_service = alert_service
        self.store = store
        self.quality_processor = quality_processor or QualityProcessor()
        self.event_bus = event_bus
        self.ambient = AmbientContext(ambient_max_age_seconds)
        self._last_readings: Dict[str, SensorReading] = {}

        self.connection_manager.on_raw_value = self.process_raw_value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register_sensor(self, device: SensorDevice, *, connect: bool = False) -> SensorDevice:
        """Register a device; optionally connect it straight away."""
        self.connection_manager.register(device)
        if connect:
            self.connection_manager.connect(device.id)
        return device

    def deregister_sensor(self, sensor_id: str) -> SensorDevice:
        device = self.connection_manager.deregister(sensor_id)
        self.calibration_service.forget(sensor_id)
        self.threshold_service.clear_sensor_thresholds(sensor_id)
        self._last_readings.pop(sensor_id, None)
        return device

    def connect_sensor(self, sensor_id: str) -> bool:
        return self.connection_manager.connect(sensor_id)

    def disconnect_sensor(self, sensor_id: str) -> None:
        self.connection_manager.disconnect(sensor_id)

    def get_sensor(self, sensor_id: str) -> SensorDevice:
        return self.registry.get(sensor_id)

    def list_sensors(self, *, zone: str | None = None, kind: SensorKind | None = None) -> List[SensorDevice]:
        devices = self.registry.list_devices()
        return [
            d for d in devices if (zone is None or d.zone == zone) and (kind is None or d.kind == kind)
        ]

    def get_sensor_status(self, sensor_id: str) -> Dict[str, Any]:
        device = self.registry.get(sensor_id)
        last = self._last_readings.get(sensor_id)
        return {
            "sensor_id": sensor_id,
            "status": device.status.value,
            "error_count": device.error_count,
            "last_reading_at": device.last_reading_at.isoformat() if device.last_reading_at else None,
            "reconnect_pending": self.connection_manager.has_pending_reconnect(sensor_id),
            "reconnect_attempts": self.connection_manager.retry_counts.get(sensor_id, 0),
            "calibration": device.calibration.to_dict(),
            "latest_reading": last.to_dict() if last else None,
        }

    def latest_reading(self, sensor_id: str) -> Optional[SensorReading]:
        self.registry.get(sensor_id)
        return self._last_readings.get(sensor_id)

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def calibrate_sensor(
        self,
        sensor_id: str,
        points: Iterable[Any],
        *,
        performed_by: str = "operator",
        notes: str | None = None,
    ) -> CalibrationRecord:
        return self.calibration_service.calibrate(sensor_id, points, performed_by=performed_by, notes=notes)

    # ------------------------------------------------------------------
    # Reading pipeline
    # ------------------------------------------------------------------

    def process_raw_value(
        self, device: SensorDevice, raw_value: float, timestamp: datetime | None = None
    ) -> SensorReading:
        """Run one raw value through the full pipeline and return the stored reading."""
        timestamp = timestamp or utc_now()
        previous = self._last_readings.get(device.id)

        with self.registry.locked(device.id):
            calibrated = apply_calibration(raw_value, device.calibration)
            parameter = device.parameter or "value"
            emissivity = device.emissivity
            zone = device.zone or DEFAULT_ZONE

        measured: Dict[str, float] = {parameter: calibrated}
        if device.kind == SensorKind.CANOPY_TEMPERATURE or parameter == "canopy_temp":
            measured["leaf_temp"] = calibrated * emissivity if emissivity else calibrated

        values = dict(measured)
        measured_quality = self.quality_processor.assess(measured, timestamp, previous)
        if measured_quality.quality != ReadingQuality.BAD:
            values.update(self._derived_metrics(zone, parameter, measured, timestamp))

        assessment = self.quality_processor.assess(values, timestamp, previous)
        reading = SensorReading(
            sensor_id=device.id,
            timestamp=timestamp,
            values=values,
            quality=assessment.quality,
            raw_value=raw_value,
            quality_issues=assessment.issues,
        )

        # Values outside the physical range are sensor faults, not conditions
        if reading.quality != ReadingQuality.BAD:
            for violation in self.threshold_service.evaluate(device.id, reading.values):
                self.alert_service.raise_out_of_range(device.id, violation)

        self.store.save_reading(reading)
        self._last_readings[device.id] = reading
        with self.registry.locked(device.id):
            device.last_reading_at = timestamp

        if self.event_bus is not None:
            self.event_bus.publish(SensorEvent.READING_RECEIVED, reading)
        return reading

    def _derived_metrics(
        self, zone: str, parameter: str, measured: Dict[str, float], timestamp: datetime
    ) -> Dict[str, float]:
        if parameter in AMBIENT_PARAMETERS:
            self.ambient.update(zone, parameter, measured[parameter], timestamp)

        leaf_temp = measured.get("leaf_temp")
        if parameter not in AMBIENT_PARAMETERS and leaf_temp is None:
            return {}

        air_temp = self.ambient.get(zone, "temperature", timestamp)
        humidity = self.ambient.get(zone, "humidity", timestamp)
        return compute_derived_metrics(air_temp, humidity, leaf_temp)
