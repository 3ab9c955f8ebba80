"""
Service protocols (structural typing interfaces).

Protocols let the sensor services declare the *minimal* surface they depend
on without importing a concrete class. Durable storage lives outside this
package; anything with these methods can be wired into the container.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Protocol, runtime_checkable

from sensorhub.domain.sensors import CalibrationRecord, SensorAlert, SensorReading


@runtime_checkable
class ReadingStore(Protocol):
    """Persistence boundary for readings, alerts and calibration history.

    ``InMemoryReadingStore`` satisfies this protocol implicitly.
    """

    def save_reading(self, reading: SensorReading) -> None:
        """Persist one calibrated reading."""
        ...

    def save_alert(self, alert: SensorAlert) -> None:
        """Insert or update an alert (keyed by ``alert.id``)."""
        ...

    def save_calibration(self, record: CalibrationRecord) -> None:
        """Append a calibration record to the sensor's history."""
        ...

    def query_range(self, sensor_id: str, start: datetime, end: datetime) -> List[SensorReading]:
        """Return the sensor's readings with ``start <= timestamp <= end`` in time order."""
        ...


@runtime_checkable
class AlertSink(Protocol):
    """What the connection manager needs to report device failures."""

    def raise_sensor_error(self, sensor_id: str, reason: str) -> object:
        ...
