"""
In-Memory Reading Store
=======================
Thread-safe ReadingStore used for development, tests and as the default
wiring when no durable store is supplied.

Readings are kept per sensor in time order, bounded by ``max_readings_per_sensor``.
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Dict, List

from sensorhub.domain.sensors import CalibrationRecord, SensorAlert, SensorReading
from sensorhub.utils.time import ensure_utc

logger = logging.getLogger(__name__)


class InMemoryReadingStore:
    def __init__(self, max_readings_per_sensor: int = 100_000) -> None:
        self.max_readings_per_sensor = max_readings_per_sensor
        self._lock = threading.Lock()
        self._readings: Dict[str, List[SensorReading]] = defaultdict(list)
        self._timestamps: Dict[str, List[datetime]] = defaultdict(list)
        self._alerts: Dict[str, SensorAlert] = {}
        self._calibrations: Dict[str, List[CalibrationRecord]] = defaultdict(list)

    def save_reading(self, reading: SensorReading) -> None:
        ts = ensure_utc(reading.timestamp)
        with self._lock:
            timestamps = self._timestamps[reading.sensor_id]
            readings = self._readings[reading.sensor_id]
            index = bisect.bisect_right(timestamps, ts)
            timestamps.insert(index, ts)
            readings.insert(index, reading)
            overflow = len(readings) - self.max_readings_per_sensor
            if overflow > 0:
                del timestamps[:overflow]
                del readings[:overflow]

    def save_alert(self, alert: SensorAlert) -> None:
        with self._lock:
            self._alerts[alert.id] = alert

    def save_calibration(self, record: CalibrationRecord) -> None:
        with self._lock:
            self._calibrations[record.sensor_id].append(record)

    def query_range(self, sensor_id: str, start: datetime, end: datetime) -> List[SensorReading]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            timestamps = self._timestamps.get(sensor_id, [])
            lo = bisect.bisect_left(timestamps, start)
            hi = bisect.bisect_right(timestamps, end)
            return list(self._readings.get(sensor_id, [])[lo:hi])

    # Convenience lookups used by the API and tests

    def latest_reading(self, sensor_id: str) -> SensorReading | None:
        with self._lock:
            readings = self._readings.get(sensor_id)
            return readings[-1] if readings else None

    def list_alerts(self) -> List[SensorAlert]:
        with self._lock:
            return list(self._alerts.values())

    def list_calibrations(self, sensor_id: str) -> List[CalibrationRecord]:
        with self._lock:
            return list(self._calibrations.get(sensor_id, []))
