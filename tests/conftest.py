"""
Shared test fixtures for the sensor hub test suite.

Provides:
- Fake transport adapters scripted per sensor (no broker, port or slave needed)
- A manual timer factory so reconnect/warm-up delays fire on demand
- Service fixtures wired the same way ServiceContainer wires them

Usage:
    def test_example(connection_manager, make_device, transports):
        device = connection_manager.register(make_device("ec-1"))
        transports["ec-1"].values.append(1.2)
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from sensorhub.domain.exceptions import ReadTimeoutError, SensorConnectionError
from sensorhub.domain.sensors import SensorDevice
from sensorhub.enums import Protocol, SensorKind
from sensorhub.hardware.adapters.sensors import AdapterFactory, ISensorAdapter
from sensorhub.hardware.sensors import DeviceRegistry
from sensorhub.infrastructure.memory_store import InMemoryReadingStore
from sensorhub.services.application.aggregation_service import AggregationService
from sensorhub.services.application.alert_service import AlertService
from sensorhub.services.application.analytics_service import AnalyticsService
from sensorhub.services.application.threshold_service import ThresholdService
from sensorhub.services.hardware.connection_manager import ConnectionManager
from sensorhub.services.hardware.sensor_management_service import SensorManagementService
from sensorhub.services.hardware.sensor_polling_service import SensorPollingService
from sensorhub.services.hardware.state_tracking_service import StateTrackingService
from sensorhub.services.utilities.calibration_service import CalibrationService

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("sensorhub").setLevel(logging.WARNING)

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

DEFAULT_PARAMS: dict[Protocol, dict[str, Any]] = {
    Protocol.MODBUS: {"host": "10.0.0.5", "address": 0},
    Protocol.MQTT: {"topic": "farm/zone-a/co2"},
    Protocol.SERIAL: {"port": "/dev/ttyUSB0", "baud_rate": 9600},
    Protocol.HTTP: {"url": "http://sensor.local/value"},
}


# ========================== Fake transports =================================


class TransportScript:
    """Behaviour shared by every adapter built for one sensor."""

    def __init__(self) -> None:
        self.values: deque = deque()
        self.connect_failures = 0
        self.adapters: list["FakeAdapter"] = []

    @property
    def current(self) -> "FakeAdapter":
        return self.adapters[-1]


class FakeAdapter(ISensorAdapter):
    """Adapter whose reads and connects follow a TransportScript."""

    def __init__(self, sensor_id: str, params: dict[str, Any], *, protocol: Protocol, script: TransportScript):
        super().__init__(sensor_id, params)
        self.protocol = protocol
        self.script = script
        self.open_calls = 0
        self.close_calls = 0
        self.callback = None
        self.on_error = None

    def open(self) -> None:
        self.open_calls += 1
        if self.script.connect_failures > 0:
            self.script.connect_failures -= 1
            raise SensorConnectionError("connection refused")
        self._open = True

    def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def read_once(self) -> float:
        item = self.script.values.popleft() if self.script.values else ReadTimeoutError("no data")
        if isinstance(item, Exception):
            raise item
        return item

    def subscribe(self, callback, on_error=None) -> None:
        self.callback = callback
        self.on_error = on_error

    def push(self, value: float) -> None:
        self.callback(value)


class ManualTimer:
    def __init__(self, delay: float, fn) -> None:
        self.delay = delay
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.fn()


class TimerRecorder:
    """Timer factory that records timers instead of starting threads."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, delay: float, fn) -> ManualTimer:
        timer = ManualTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]


# ========================== Fixtures ========================================


@pytest.fixture()
def transports():
    return defaultdict(TransportScript)


@pytest.fixture()
def adapter_factory(transports):
    factory = AdapterFactory()

    def builder(device: SensorDevice) -> FakeAdapter:
        script = transports[device.id]
        adapter = FakeAdapter(device.id, device.connection_params, protocol=device.protocol, script=script)
        script.adapters.append(adapter)
        return adapter

    for protocol in Protocol:
        factory.register_protocol_adapter(protocol, builder)
    return factory


@pytest.fixture()
def make_device():
    def _make(
        sensor_id: str,
        kind: SensorKind = SensorKind.ROOT_ZONE,
        protocol: Protocol = Protocol.MODBUS,
        **kwargs: Any,
    ) -> SensorDevice:
        params = kwargs.pop("connection_params", None)
        return SensorDevice(
            id=sensor_id,
            kind=kind,
            protocol=protocol,
            connection_params=dict(DEFAULT_PARAMS[protocol]) if params is None else params,
            **kwargs,
        )

    return _make


@pytest.fixture()
def timers():
    return TimerRecorder()


@pytest.fixture()
def scheduler():
    return MagicMock(spec=SensorPollingService)


@pytest.fixture()
def store():
    return InMemoryReadingStore()


@pytest.fixture()
def registry():
    return DeviceRegistry()


@pytest.fixture()
def state_tracker():
    return StateTrackingService()


@pytest.fixture()
def alert_service(store):
    return AlertService(store)


@pytest.fixture()
def threshold_service():
    return ThresholdService()


@pytest.fixture()
def calibration_service(registry, store, alert_service):
    return CalibrationService(registry, store, alert_service, min_accuracy=95.0, interval_days=30)


@pytest.fixture()
def connection_manager(registry, adapter_factory, scheduler, alert_service, state_tracker, timers):
    return ConnectionManager(
        registry,
        adapter_factory,
        scheduler,
        alert_service,
        state_tracker=state_tracker,
        error_threshold=3,
        reconnect_delay_seconds=30.0,
        timer_factory=timers,
    )


@pytest.fixture()
def sensor_management(
    registry, connection_manager, calibration_service, threshold_service, alert_service, store
):
    return SensorManagementService(
        registry,
        connection_manager,
        calibration_service,
        threshold_service,
        alert_service,
        store,
    )


@pytest.fixture()
def aggregation_service(registry, store):
    return AggregationService(registry, store, default_freshness_seconds=300)


@pytest.fixture()
def analytics_service(store, state_tracker, alert_service):
    return AnalyticsService(store, state_tracker, alert_service)
