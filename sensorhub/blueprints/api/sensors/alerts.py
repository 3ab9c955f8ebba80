"""
Sensor Alert Endpoints
======================
"""

from __future__ import annotations

from flask import request

from sensorhub.schemas import AcknowledgeAlertRequest, AlertQuery
from sensorhub.utils.http import safe_route

from .._common import get_container, get_json, success
from . import sensors_api


@sensors_api.get("/alerts")
@safe_route("Failed to list alerts")
def list_alerts():
    query = AlertQuery.model_validate(request.args.to_dict())
    alerts = get_container().alert_service.list_alerts(
        sensor_id=query.sensor_id,
        status=query.status,
        alert_type=query.type,
    )
    return success([a.to_dict() for a in alerts])


@sensors_api.post("/alerts/<alert_id>/acknowledge")
@safe_route("Failed to acknowledge alert")
def acknowledge_alert(alert_id: str):
    body = AcknowledgeAlertRequest.model_validate(get_json())
    alert = get_container().alert_service.acknowledge(alert_id, body.acknowledged_by)
    return success(alert.to_dict())


@sensors_api.post("/alerts/<alert_id>/resolve")
@safe_route("Failed to resolve alert")
def resolve_alert(alert_id: str):
    return success(get_container().alert_service.resolve(alert_id).to_dict())
