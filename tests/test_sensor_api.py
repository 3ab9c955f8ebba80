"""
Sensor API endpoint tests.

The app is built around a real ServiceContainer whose adapter factory hands
out scripted fake transports. MQTT sensors are used wherever a connection is
needed so that no polling thread races the assertions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sensorhub import create_app
from sensorhub.config import AppConfig
from sensorhub.domain.sensors import SensorReading
from sensorhub.services.container import ServiceContainer

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
BASE = "/api/v1/sensors"


@pytest.fixture()
def container(adapter_factory):
    container = ServiceContainer.build(AppConfig(log_file=""), adapter_factory=adapter_factory)
    yield container
    container.shutdown()


@pytest.fixture()
def client(container):
    app = create_app(AppConfig(log_file=""), container=container)
    app.config["TESTING"] = True
    return app.test_client()


def _mqtt_sensor(sensor_id, **overrides):
    body = {
        "id": sensor_id,
        "kind": "root_zone",
        "protocol": "mqtt",
        "parameter": "ec",
        "zone": "zone-a",
        "connection_params": {"topic": f"farm/zone-a/{sensor_id}"},
    }
    body.update(overrides)
    return body


def _register(client, body):
    response = client.post(BASE, json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


# ========================== Registration ====================================


class TestRegistration:
    def test_register_returns_created_device(self, client):
        response = client.post(BASE, json=_mqtt_sensor("ec-1", name="Bench EC"))

        assert response.status_code == 201
        payload = response.get_json()
        assert payload["ok"] is True
        assert payload["data"]["id"] == "ec-1"
        assert payload["data"]["status"] == "disconnected"
        assert payload["data"]["calibration"]["slope"] == 1.0

    def test_kind_and_protocol_are_case_insensitive(self, client):
        data = _register(client, _mqtt_sensor("ec-1", kind="ROOT_ZONE", protocol="MQTT"))

        assert data["kind"] == "root_zone"
        assert data["protocol"] == "mqtt"

    def test_missing_kind_is_rejected(self, client):
        body = _mqtt_sensor("ec-1")
        del body["kind"]

        response = client.post(BASE, json=body)

        assert response.status_code == 400
        assert response.get_json()["ok"] is False

    def test_missing_connection_params_is_rejected(self, client):
        response = client.post(BASE, json=_mqtt_sensor("ec-1", connection_params={}))

        assert response.status_code == 400

    def test_duplicate_id_conflicts(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.post(BASE, json=_mqtt_sensor("ec-1"))

        assert response.status_code == 409


class TestListingAndLookup:
    def test_list_filters_by_zone_and_kind(self, client):
        _register(client, _mqtt_sensor("ec-1"))
        _register(client, _mqtt_sensor("ec-2", zone="zone-b"))
        _register(client, _mqtt_sensor("co2-1", kind="co2", parameter="co2"))

        by_zone = client.get(BASE, query_string={"zone": "zone-a"}).get_json()["data"]
        by_kind = client.get(BASE, query_string={"kind": "co2"}).get_json()["data"]

        assert sorted(d["id"] for d in by_zone) == ["co2-1", "ec-1"]
        assert [d["id"] for d in by_kind] == ["co2-1"]

    def test_unknown_kind_filter_is_bad_request(self, client):
        response = client.get(BASE, query_string={"kind": "weather"})

        assert response.status_code == 400

    def test_unknown_sensor_is_not_found(self, client):
        response = client.get(f"{BASE}/missing")

        assert response.status_code == 404
        assert response.get_json()["ok"] is False


# ========================== Connection control ==============================


class TestConnection:
    def test_connect_and_disconnect(self, client, transports):
        _register(client, _mqtt_sensor("ec-1"))

        connected = client.post(f"{BASE}/ec-1/connect")
        assert connected.status_code == 200
        assert connected.get_json()["data"]["status"] == "connected"

        transports["ec-1"].current.push(1.8)
        status = client.get(f"{BASE}/ec-1/status").get_json()["data"]
        assert status["latest_reading"]["values"]["ec"] == pytest.approx(1.8)

        disconnected = client.post(f"{BASE}/ec-1/disconnect")
        assert disconnected.status_code == 200
        assert disconnected.get_json()["data"]["status"] == "disconnected"
        assert disconnected.get_json()["data"]["reconnect_pending"] is False

    def test_warmup_connect_is_accepted(self, client):
        _register(client, _mqtt_sensor("co2-1", kind="co2", parameter="co2", warmup_seconds=30))

        response = client.post(f"{BASE}/co2-1/connect")

        assert response.status_code == 202
        assert response.get_json()["data"]["status"] == "connecting"

    def test_failed_connect_reports_error_status(self, client, transports):
        _register(client, _mqtt_sensor("ec-1"))
        transports["ec-1"].connect_failures = 1

        response = client.post(f"{BASE}/ec-1/connect")

        assert response.status_code == 202
        data = response.get_json()["data"]
        assert data["status"] == "error"
        assert data["reconnect_pending"] is True

    def test_deregister(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.delete(f"{BASE}/ec-1")

        assert response.status_code == 200
        assert client.get(f"{BASE}/ec-1").status_code == 404


# ========================== Thresholds ======================================


class TestThresholds:
    def test_defaults_then_override(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        defaults = client.get(f"{BASE}/ec-1/thresholds").get_json()["data"]
        assert defaults["ec"] == {"min": 1.0, "max": 3.0}

        response = client.put(f"{BASE}/ec-1/thresholds", json={"thresholds": {"ec": {"min": 1.2, "max": 2.4}}})

        assert response.status_code == 200
        assert response.get_json()["data"]["ec"] == {"min": 1.2, "max": 2.4}

    def test_inverted_bounds_rejected(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.put(f"{BASE}/ec-1/thresholds", json={"thresholds": {"ec": {"min": 3, "max": 1}}})

        assert response.status_code == 400

    def test_unknown_sensor(self, client):
        response = client.put(f"{BASE}/nope/thresholds", json={"thresholds": {"ec": {"min": 1, "max": 2}}})

        assert response.status_code == 404


# ========================== Calibration =====================================


class TestCalibration:
    def test_passing_calibration_is_created_and_applied(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.post(
            f"{BASE}/ec-1/calibrations",
            json={
                "points": [
                    {"reference": 3.0, "measured": 1.0},
                    {"reference": 5.0, "measured": 2.0},
                    {"reference": 9.0, "measured": 4.0},
                ],
                "performed_by": "technician",
            },
        )

        assert response.status_code == 201
        record = response.get_json()["data"]
        assert record["validation"]["passed"] is True
        assert record["fitted_slope"] == pytest.approx(2.0)
        assert record["fitted_offset"] == pytest.approx(1.0)

        device = client.get(f"{BASE}/ec-1").get_json()["data"]
        assert device["calibration"]["status"] == "calibrated"

    def test_failing_calibration_is_recorded_but_not_applied(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.post(
            f"{BASE}/ec-1/calibrations",
            json={
                "points": [
                    {"reference": 1.0, "measured": 1.0},
                    {"reference": 2.0, "measured": 2.5},
                    {"reference": 3.0, "measured": 2.5},
                    {"reference": 4.0, "measured": 4.0},
                ]
            },
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["validation"]["passed"] is False
        device = client.get(f"{BASE}/ec-1").get_json()["data"]
        assert device["calibration"]["slope"] == 1.0

        history = client.get(f"{BASE}/ec-1/calibrations").get_json()["data"]
        assert len(history) == 1

    def test_single_point_rejected(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.post(f"{BASE}/ec-1/calibrations", json={"points": [{"reference": 1, "measured": 1}]})

        assert response.status_code == 400


# ========================== Groups ==========================================


class TestGroups:
    @pytest.fixture()
    def connected_pair(self, client, transports):
        for sensor_id in ("ec-1", "ec-2"):
            _register(client, _mqtt_sensor(sensor_id))
            assert client.post(f"{BASE}/{sensor_id}/connect").status_code == 200
        return transports

    def test_group_crud_and_reading(self, client, connected_pair):
        created = client.post(
            f"{BASE}/groups",
            json={"id": "bench", "member_sensor_ids": ["ec-1", "ec-2"], "aggregation_method": "average"},
        )
        assert created.status_code == 201

        connected_pair["ec-1"].current.push(1.5)
        connected_pair["ec-2"].current.push(2.5)

        reading = client.get(f"{BASE}/groups/bench/reading").get_json()["data"]
        assert reading["values"]["ec"] == pytest.approx(2.0)
        assert sorted(reading["contributing_sensor_ids"]) == ["ec-1", "ec-2"]

        updated = client.patch(f"{BASE}/groups/bench", json={"aggregation_method": "max"})
        assert updated.status_code == 200
        assert updated.get_json()["data"]["aggregation_method"] == "max"

        listed = client.get(f"{BASE}/groups").get_json()["data"]
        assert [g["id"] for g in listed] == ["bench"]

        assert client.delete(f"{BASE}/groups/bench").status_code == 200
        assert client.get(f"{BASE}/groups/bench").status_code == 404

    def test_unknown_member_rejected(self, client, connected_pair):
        response = client.post(f"{BASE}/groups", json={"id": "bench", "member_sensor_ids": ["ec-1", "ghost"]})

        assert response.status_code == 400

    def test_grouped_sensor_cannot_be_deregistered(self, client, connected_pair):
        client.post(f"{BASE}/groups", json={"id": "bench", "member_sensor_ids": ["ec-1", "ec-2"]})

        response = client.delete(f"{BASE}/ec-1")

        assert response.status_code == 409
        assert client.get(f"{BASE}/ec-1").status_code == 200


# ========================== Analytics =======================================


class TestAnalytics:
    def _seed(self, container, sensor_id, values, step=timedelta(minutes=1)):
        for i, value in enumerate(values):
            container.store.save_reading(
                SensorReading(sensor_id=sensor_id, timestamp=T0 + i * step, values={"ec": value})
            )

    def test_statistics_over_window(self, client, container):
        _register(client, _mqtt_sensor("ec-1"))
        self._seed(container, "ec-1", [1.0, 1.0, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0])

        response = client.get(
            f"{BASE}/ec-1/analytics",
            query_string={"start": _iso(T0), "end": _iso(T0 + timedelta(hours=1))},
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["reading_count"] == 8
        assert data["statistics"]["ec"]["mean"] == pytest.approx(1.5)
        assert data["trends"]["ec"]["direction"] == "increasing"

    def test_inverted_window_rejected(self, client):
        _register(client, _mqtt_sensor("ec-1"))

        response = client.get(
            f"{BASE}/ec-1/analytics",
            query_string={"start": _iso(T0 + timedelta(hours=1)), "end": _iso(T0)},
        )

        assert response.status_code == 400

    def test_comparison_needs_enough_pairs(self, client, container):
        _register(client, _mqtt_sensor("ec-1"))
        _register(client, _mqtt_sensor("ec-2"))
        self._seed(container, "ec-1", [1.0, 1.1, 1.2])
        self._seed(container, "ec-2", [1.0, 1.1, 1.2])

        response = client.get(
            f"{BASE}/comparison",
            query_string={
                "sensor_a": "ec-1",
                "sensor_b": "ec-2",
                "parameter": "ec",
                "start": _iso(T0),
                "end": _iso(T0 + timedelta(hours=1)),
            },
        )

        assert response.status_code == 422

    def test_comparison_requires_arguments(self, client):
        response = client.get(f"{BASE}/comparison", query_string={"sensor_a": "ec-1"})

        assert response.status_code == 400


# ========================== Alerts ==========================================


class TestAlerts:
    @pytest.fixture()
    def alert_id(self, client, transports):
        _register(client, _mqtt_sensor("ec-1"))
        client.post(f"{BASE}/ec-1/connect")
        transports["ec-1"].current.push(4.2)

        alerts = client.get(f"{BASE}/alerts", query_string={"sensor_id": "ec-1", "type": "out_of_range"})
        data = alerts.get_json()["data"]
        assert len(data) == 1
        return data[0]["id"]

    def test_acknowledge_then_resolve(self, client, alert_id):
        acked = client.post(f"{BASE}/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "grower"})
        assert acked.status_code == 200
        assert acked.get_json()["data"]["status"] == "acknowledged"
        assert acked.get_json()["data"]["acknowledged_by"] == "grower"

        resolved = client.post(f"{BASE}/alerts/{alert_id}/resolve")
        assert resolved.status_code == 200
        assert resolved.get_json()["data"]["status"] == "resolved"

        again = client.post(f"{BASE}/alerts/{alert_id}/acknowledge", json={})
        assert again.status_code == 409

    def test_status_filter(self, client, alert_id):
        active = client.get(f"{BASE}/alerts", query_string={"status": "active"}).get_json()["data"]
        resolved = client.get(f"{BASE}/alerts", query_string={"status": "resolved"}).get_json()["data"]

        assert [a["id"] for a in active] == [alert_id]
        assert resolved == []

    def test_unknown_alert(self, client):
        response = client.post(f"{BASE}/alerts/nope/resolve")

        assert response.status_code == 404
