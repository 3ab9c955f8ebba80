"""
Sensor Device Endpoints
=======================

Registration, listing, status and connection control.
"""

from __future__ import annotations

import logging

from flask import request

from sensorhub.domain.exceptions import ConfigurationError
from sensorhub.enums import SensorKind
from sensorhub.schemas import RegisterSensorRequest, SensorThresholdsRequest
from sensorhub.services.application.threshold_service import ThresholdRange
from sensorhub.utils.http import safe_route

from .._common import get_container, get_json, success
from . import sensors_api

logger = logging.getLogger("sensors_api")


def _sensors():
    return get_container().sensor_management


@sensors_api.post("")
@safe_route("Failed to register sensor")
def register_sensor():
    body = RegisterSensorRequest.model_validate(get_json())
    device = _sensors().register_sensor(body.to_device(), connect=body.connect)
    logger.info("Registered sensor %s via API", device.id)
    return success(device.to_dict(), 201)


@sensors_api.get("")
@safe_route("Failed to list sensors")
def list_sensors():
    kind = request.args.get("kind")
    try:
        kind_filter = SensorKind(kind) if kind else None
    except ValueError:
        raise ConfigurationError(f"Unknown sensor kind: {kind}") from None
    devices = _sensors().list_sensors(zone=request.args.get("zone"), kind=kind_filter)
    return success([d.to_dict() for d in devices])


@sensors_api.get("/<sensor_id>")
@safe_route("Failed to load sensor")
def get_sensor(sensor_id: str):
    return success(_sensors().get_sensor(sensor_id).to_dict())


@sensors_api.delete("/<sensor_id>")
@safe_route("Failed to deregister sensor")
def deregister_sensor(sensor_id: str):
    device = _sensors().deregister_sensor(sensor_id)
    return success({"id": device.id, "deregistered": True})


@sensors_api.get("/<sensor_id>/status")
@safe_route("Failed to load sensor status")
def sensor_status(sensor_id: str):
    return success(_sensors().get_sensor_status(sensor_id))


@sensors_api.post("/<sensor_id>/connect")
@safe_route("Failed to connect sensor")
def connect_sensor(sensor_id: str):
    connected = _sensors().connect_sensor(sensor_id)
    return success(_sensors().get_sensor_status(sensor_id), 200 if connected else 202)


@sensors_api.post("/<sensor_id>/disconnect")
@safe_route("Failed to disconnect sensor")
def disconnect_sensor(sensor_id: str):
    _sensors().disconnect_sensor(sensor_id)
    return success(_sensors().get_sensor_status(sensor_id))


@sensors_api.get("/<sensor_id>/thresholds")
@safe_route("Failed to load thresholds")
def get_thresholds(sensor_id: str):
    container = get_container()
    container.registry.get(sensor_id)
    ranges = container.threshold_service.effective_ranges(sensor_id)
    return success({p: r.to_dict() for p, r in ranges.items()})


@sensors_api.put("/<sensor_id>/thresholds")
@safe_route("Failed to update thresholds")
def set_thresholds(sensor_id: str):
    body = SensorThresholdsRequest.model_validate(get_json())
    container = get_container()
    container.registry.get(sensor_id)
    for parameter, bounds in body.thresholds.items():
        container.threshold_service.set_sensor_threshold(
            sensor_id, parameter, ThresholdRange(bounds.min, bounds.max)
        )
    ranges = container.threshold_service.effective_ranges(sensor_id)
    return success({p: r.to_dict() for p, r in ranges.items()})
