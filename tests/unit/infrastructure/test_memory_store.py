"""Tests for InMemoryReadingStore."""

from datetime import datetime, timedelta, timezone

import pytest

from sensorhub.domain.sensors import SensorReading
from sensorhub.infrastructure.memory_store import InMemoryReadingStore
from sensorhub.services.protocols import ReadingStore

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _reading(sensor_id, minutes, value=1.0):
    return SensorReading(sensor_id=sensor_id, timestamp=T0 + timedelta(minutes=minutes), values={"ec": value})


def test_satisfies_reading_store_protocol():
    assert isinstance(InMemoryReadingStore(), ReadingStore)


def test_out_of_order_inserts_are_sorted(store):
    for minute in (5, 1, 3):
        store.save_reading(_reading("ec-1", minute))

    readings = store.query_range("ec-1", T0, T0 + timedelta(hours=1))

    assert [r.timestamp.minute for r in readings] == [1, 3, 5]
    assert store.latest_reading("ec-1").timestamp.minute == 5


def test_range_is_inclusive(store):
    for minute in range(5):
        store.save_reading(_reading("ec-1", minute))

    readings = store.query_range("ec-1", T0 + timedelta(minutes=1), T0 + timedelta(minutes=3))

    assert len(readings) == 3


def test_naive_bounds_are_utc(store):
    store.save_reading(_reading("ec-1", 0))
    naive_start = datetime(2025, 6, 1, 11, 0)
    naive_end = datetime(2025, 6, 1, 13, 0)

    assert len(store.query_range("ec-1", naive_start, naive_end)) == 1


def test_sensors_are_isolated(store):
    store.save_reading(_reading("ec-1", 0))
    assert store.query_range("ec-2", T0, T0 + timedelta(hours=1)) == []
    assert store.latest_reading("ec-2") is None


def test_bounded_per_sensor():
    store = InMemoryReadingStore(max_readings_per_sensor=3)
    for minute in range(5):
        store.save_reading(_reading("ec-1", minute, value=float(minute)))

    values = [r.values["ec"] for r in store.query_range("ec-1", T0, T0 + timedelta(hours=1))]

    assert values == [2.0, 3.0, 4.0]


def test_readings_are_immutable():
    reading = _reading("ec-1", 0)
    with pytest.raises(TypeError):
        reading.values["ec"] = 5.0
