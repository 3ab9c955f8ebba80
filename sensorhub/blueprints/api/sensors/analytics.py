"""
Sensor Analytics Endpoints
==========================

Statistics, trends and anomalies over a date range, plus cross-sensor
comparison. ``start``/``end`` are ISO 8601 query parameters (default: the
last 24 hours).
"""

from __future__ import annotations

from flask import request

from sensorhub.domain.exceptions import ConfigurationError
from sensorhub.utils.http import safe_route

from .._common import get_container, get_window, success
from . import sensors_api


@sensors_api.get("/<sensor_id>/analytics")
@safe_route("Failed to compute analytics")
def sensor_analytics(sensor_id: str):
    container = get_container()
    container.registry.get(sensor_id)
    start, end = get_window()
    parameters = [p for p in request.args.get("parameters", "").split(",") if p]
    result = container.analytics_service.analyze(
        sensor_id,
        start,
        end,
        parameters=parameters or None,
        raise_alerts=request.args.get("raise_alerts", "false").lower() in ("1", "true", "yes"),
    )
    return success(result.to_dict())


@sensors_api.get("/comparison")
@safe_route("Failed to compare sensors")
def compare_sensors():
    sensor_a = request.args.get("sensor_a")
    sensor_b = request.args.get("sensor_b")
    parameter = request.args.get("parameter")
    if not (sensor_a and sensor_b and parameter):
        raise ConfigurationError("sensor_a, sensor_b and parameter are required")
    container = get_container()
    container.registry.get(sensor_a)
    container.registry.get(sensor_b)
    start, end = get_window()
    comparison = container.analytics_service.compare_sensors(sensor_a, sensor_b, parameter, start, end)
    return success(comparison.to_dict())
