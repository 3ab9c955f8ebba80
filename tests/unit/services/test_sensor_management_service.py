"""
Tests for the reading pipeline in SensorManagementService.

Raw values are fed straight into process_raw_value with explicit timestamps;
the end-to-end case goes through a scripted adapter and the connection
manager instead.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from sensorhub.domain.sensors import CalibrationState
from sensorhub.enums import AlertType, Protocol, ReadingQuality, SensorEvent, SensorKind
from sensorhub.services.hardware.sensor_management_service import SensorManagementService
from sensorhub.services.application.threshold_service import ThresholdRange
from sensorhub.utils.psychrometrics import calculate_leaf_vpd_kpa

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ambient_devices(sensor_management, make_device):
    def _register(zone="zone-a"):
        air = make_device(
            f"air-t-{zone}", kind=SensorKind.DERIVED_ONLY, protocol=Protocol.HTTP, parameter="temperature", zone=zone
        )
        rh = make_device(
            f"air-rh-{zone}", kind=SensorKind.DERIVED_ONLY, protocol=Protocol.HTTP, parameter="humidity", zone=zone
        )
        return sensor_management.register_sensor(air), sensor_management.register_sensor(rh)

    return _register


class TestCalibrationAndQuality:
    def test_calibration_is_applied(self, sensor_management, make_device, store):
        device = sensor_management.register_sensor(
            make_device("ec-1", calibration=CalibrationState(offset=0.1, slope=2.0))
        )

        reading = sensor_management.process_raw_value(device, 1.0, T0)

        assert reading.values["ec"] == pytest.approx(2.1)
        assert reading.raw_value == 1.0
        assert reading.quality == ReadingQuality.GOOD
        assert store.latest_reading("ec-1") is reading
        assert device.last_reading_at == T0

    def test_out_of_physical_range_is_bad_and_raises_no_alert(self, sensor_management, make_device, alert_service):
        device = sensor_management.register_sensor(make_device("ec-1"))

        reading = sensor_management.process_raw_value(device, 25.0, T0)

        assert reading.quality == ReadingQuality.BAD
        assert reading.quality_issues
        assert alert_service.active_alerts("ec-1") == []

    def test_fast_change_is_questionable(self, sensor_management, make_device):
        device = sensor_management.register_sensor(make_device("ec-1"))
        sensor_management.process_raw_value(device, 1.5, T0)

        reading = sensor_management.process_raw_value(device, 2.5, T0 + timedelta(minutes=1))

        assert reading.quality == ReadingQuality.QUESTIONABLE

    def test_readings_are_stored_in_order(self, sensor_management, make_device, store):
        device = sensor_management.register_sensor(make_device("ec-1"))
        for minute in range(3):
            sensor_management.process_raw_value(device, 1.5, T0 + timedelta(minutes=minute))

        stored = store.query_range("ec-1", T0, T0 + timedelta(minutes=5))
        assert [r.timestamp for r in stored] == [T0 + timedelta(minutes=m) for m in range(3)]


class TestThresholdAlerts:
    def test_out_of_range_alert_and_dedupe(self, sensor_management, make_device, alert_service):
        device = sensor_management.register_sensor(make_device("ec-1"))

        sensor_management.process_raw_value(device, 3.5, T0)
        sensor_management.process_raw_value(device, 3.6, T0 + timedelta(minutes=5))

        alerts = alert_service.active_alerts("ec-1", AlertType.OUT_OF_RANGE)
        assert len(alerts) == 1
        assert alerts[0].threshold.boundary == 3.0
        assert alerts[0].metadata["occurrences"] == 2

    def test_sensor_specific_threshold(self, sensor_management, make_device, alert_service, threshold_service):
        device = sensor_management.register_sensor(make_device("ec-1"))
        threshold_service.set_sensor_threshold("ec-1", "ec", ThresholdRange(1.0, 2.0))

        sensor_management.process_raw_value(device, 2.4, T0)

        assert len(alert_service.active_alerts("ec-1")) == 1


class TestDerivedMetrics:
    def test_vpd_from_zone_ambient(self, sensor_management, ambient_devices):
        air, rh = ambient_devices()

        first = sensor_management.process_raw_value(air, 25.0, T0)
        second = sensor_management.process_raw_value(rh, 60.0, T0 + timedelta(seconds=10))

        assert "vpd" not in first.values
        assert second.values["vpd"] == pytest.approx(1.267, abs=1e-3)

    def test_other_zone_does_not_contribute(self, sensor_management, ambient_devices):
        air, _ = ambient_devices("zone-a")
        _, rh_b = ambient_devices("zone-b")

        sensor_management.process_raw_value(air, 25.0, T0)
        reading = sensor_management.process_raw_value(rh_b, 60.0, T0)

        assert "vpd" not in reading.values

    def test_stale_ambient_is_ignored(self, sensor_management, ambient_devices):
        air, rh = ambient_devices()

        sensor_management.process_raw_value(air, 25.0, T0)
        reading = sensor_management.process_raw_value(rh, 60.0, T0 + timedelta(minutes=10))

        assert "vpd" not in reading.values

    def test_canopy_sensor_gets_leaf_temperature_and_leaf_vpd(
        self, sensor_management, ambient_devices, make_device
    ):
        air, rh = ambient_devices()
        canopy = sensor_management.register_sensor(
            make_device("ir-1", kind=SensorKind.CANOPY_TEMPERATURE, emissivity=0.95, zone="zone-a")
        )
        sensor_management.process_raw_value(air, 25.0, T0)
        sensor_management.process_raw_value(rh, 60.0, T0)

        reading = sensor_management.process_raw_value(canopy, 24.0, T0 + timedelta(seconds=30))

        assert reading.values["canopy_temp"] == pytest.approx(24.0)
        assert reading.values["leaf_temp"] == pytest.approx(22.8)
        assert reading.values["leaf_vpd"] == pytest.approx(calculate_leaf_vpd_kpa(25.0, 60.0, 22.8), abs=1e-3)
        assert reading.values["vpd"] == pytest.approx(1.267, abs=1e-3)

    def test_bad_measurement_gets_no_derived_values(self, sensor_management, ambient_devices):
        air, rh = ambient_devices()
        sensor_management.process_raw_value(air, 25.0, T0)

        reading = sensor_management.process_raw_value(rh, 130.0, T0)

        assert reading.quality == ReadingQuality.BAD
        assert "vpd" not in reading.values


class TestFacade:
    def test_poll_through_connection_manager(self, sensor_management, make_device, transports, connection_manager, store):
        sensor_management.register_sensor(make_device("ec-1"), connect=True)
        transports["ec-1"].values.append(1.8)

        connection_manager.poll_once("ec-1")

        assert store.latest_reading("ec-1").values["ec"] == pytest.approx(1.8)
        status = sensor_management.get_sensor_status("ec-1")
        assert status["status"] == "connected"
        assert status["latest_reading"]["values"]["ec"] == pytest.approx(1.8)
        assert status["reconnect_pending"] is False

    def test_list_sensors_filters(self, sensor_management, make_device):
        sensor_management.register_sensor(make_device("ec-1", zone="zone-a"))
        sensor_management.register_sensor(make_device("co2-1", kind=SensorKind.CO2, protocol=Protocol.MQTT, zone="zone-a"))
        sensor_management.register_sensor(make_device("ec-2", zone="zone-b"))

        assert {d.id for d in sensor_management.list_sensors(zone="zone-a")} == {"ec-1", "co2-1"}
        assert [d.id for d in sensor_management.list_sensors(kind=SensorKind.CO2)] == ["co2-1"]

    def test_deregister_clears_sensor_thresholds(self, sensor_management, make_device, threshold_service, registry):
        sensor_management.register_sensor(make_device("ec-1"))
        threshold_service.set_sensor_threshold("ec-1", "ec", ThresholdRange(1.0, 2.0))

        sensor_management.deregister_sensor("ec-1")

        assert not registry.contains("ec-1")
        assert threshold_service.effective_ranges("ec-1")["ec"] == ThresholdRange(1.0, 3.0)

    def test_reading_event_is_published(
        self, registry, connection_manager, calibration_service, threshold_service, alert_service, store, make_device
    ):
        bus = MagicMock()
        service = SensorManagementService(
            registry, connection_manager, calibration_service, threshold_service, alert_service, store, event_bus=bus
        )
        device = service.register_sensor(make_device("ec-1"))

        reading = service.process_raw_value(device, 1.5, T0)

        bus.publish.assert_called_once_with(SensorEvent.READING_RECEIVED, reading)
