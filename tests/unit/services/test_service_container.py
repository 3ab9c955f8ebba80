"""Tests for ServiceContainer wiring."""

import pytest

from sensorhub.config import AppConfig
from sensorhub.enums import Protocol, SensorKind
from sensorhub.services.container import CALIBRATION_SWEEP_JOB, ServiceContainer


@pytest.fixture
def container(adapter_factory):
    built = ServiceContainer.build(
        AppConfig(log_file="", error_threshold=2, reconnect_delay_seconds=5.0),
        adapter_factory=adapter_factory,
    )
    yield built
    built.shutdown()


def test_services_share_one_registry_and_store(container):
    assert container.connection_manager.registry is container.registry
    assert container.sensor_management.registry is container.registry
    assert container.aggregation_service.store is container.store
    assert container.analytics_service.store is container.store


def test_config_reaches_connection_manager(container):
    assert container.connection_manager.error_threshold == 2
    assert container.connection_manager.reconnect_delay_seconds == 5.0


def test_pushed_values_flow_into_the_store(container, make_device, transports):
    device = make_device("co2-1", kind=SensorKind.CO2, protocol=Protocol.MQTT)
    container.sensor_management.register_sensor(device, connect=True)

    transports["co2-1"].current.push(910.0)

    assert container.store.latest_reading("co2-1").values["co2"] == pytest.approx(910.0)
    assert not container.scheduler.is_scheduled("co2-1")


def test_start_schedules_calibration_sweep(container):
    container.start()
    assert container.scheduler.stop_job(CALIBRATION_SWEEP_JOB) is True


def test_shutdown_closes_transports(container, make_device, transports):
    device = make_device("co2-1", kind=SensorKind.CO2, protocol=Protocol.MQTT)
    container.sensor_management.register_sensor(device, connect=True)

    container.shutdown()

    assert transports["co2-1"].current.close_calls == 1
    assert container.connection_manager.connect("co2-1") is False
