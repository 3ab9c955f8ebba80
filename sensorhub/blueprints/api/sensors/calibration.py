"""
Calibration Endpoints
=====================
"""

from __future__ import annotations

from sensorhub.schemas import CalibrationRequest
from sensorhub.utils.http import safe_route

from .._common import get_container, get_json, success
from . import sensors_api


@sensors_api.post("/<sensor_id>/calibrations")
@safe_route("Failed to calibrate sensor")
def calibrate_sensor(sensor_id: str):
    body = CalibrationRequest.model_validate(get_json())
    record = get_container().sensor_management.calibrate_sensor(
        sensor_id,
        body.measurement_dicts(),
        performed_by=body.performed_by,
        notes=body.notes,
    )
    # A rejected fit is still a recorded calibration run
    return success(record.to_dict(), 201 if record.passed else 200)


@sensors_api.get("/<sensor_id>/calibrations")
@safe_route("Failed to load calibration history")
def calibration_history(sensor_id: str):
    records = get_container().calibration_service.get_history(sensor_id)
    return success([r.to_dict() for r in records])
