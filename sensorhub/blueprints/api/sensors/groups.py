"""
Sensor Group Endpoints
======================

Group definitions and aggregated group readings.
"""

from __future__ import annotations

from flask import request

from sensorhub.schemas import GroupRequest, UpdateGroupRequest
from sensorhub.utils.http import safe_route
from sensorhub.utils.time import utc_now

from .._common import get_container, get_json, parse_datetime, success
from . import sensors_api


def _groups():
    return get_container().aggregation_service


@sensors_api.post("/groups")
@safe_route("Failed to save group")
def create_group():
    body = GroupRequest.model_validate(get_json())
    group = _groups().save_group(body.id, body.member_sensor_ids, **body.service_kwargs())
    return success(group.to_dict(), 201)


@sensors_api.get("/groups")
@safe_route("Failed to list groups")
def list_groups():
    return success([g.to_dict() for g in _groups().list_groups()])


@sensors_api.get("/groups/<group_id>")
@safe_route("Failed to load group")
def get_group(group_id: str):
    return success(_groups().get_group(group_id).to_dict())


@sensors_api.patch("/groups/<group_id>")
@safe_route("Failed to update group")
def update_group(group_id: str):
    body = UpdateGroupRequest.model_validate(get_json())
    group = _groups().update_group(group_id, **body.changes())
    return success(group.to_dict())


@sensors_api.delete("/groups/<group_id>")
@safe_route("Failed to delete group")
def delete_group(group_id: str):
    _groups().delete_group(group_id)
    return success({"id": group_id, "deleted": True})


@sensors_api.get("/groups/<group_id>/reading")
@safe_route("Failed to aggregate group")
def group_reading(group_id: str):
    at = parse_datetime(request.args.get("at"), utc_now())
    return success(_groups().aggregate(group_id, at).to_dict())
