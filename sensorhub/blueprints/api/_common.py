"""
Blueprint Helpers
=================

Request parsing and container access shared by the sensor API modules.

Usage:
    from .._common import get_container, get_json, get_window, success
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app, request

from sensorhub.domain.exceptions import ConfigurationError
from sensorhub.utils.http import success_response
from sensorhub.utils.time import ensure_utc, parse_iso, utc_now

# Analytics window when the query omits start/end
DEFAULT_WINDOW = timedelta(hours=24)


def get_container():
    """The ServiceContainer that create_app stored on the Flask config."""
    container = current_app.config.get("CONTAINER")
    if container is None:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def get_json() -> dict:
    """JSON body, or ``{}`` when the request has none (pydantic reports missing fields)."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def success(data: dict | list | None = None, status: int = 200, *, message: str | None = None):
    return success_response(data, status, message=message)


def parse_datetime(param: Optional[str], default: datetime) -> datetime:
    """
    Parse an ISO 8601 query parameter, falling back to ``default``.

    Raises:
        ConfigurationError: If ``param`` is present but not ISO 8601
    """
    if not param:
        return ensure_utc(default)
    try:
        return parse_iso(param)
    except ValueError:
        raise ConfigurationError(f"Invalid datetime format: {param}. Expected ISO 8601.") from None


def get_window() -> tuple[datetime, datetime]:
    """``start``/``end`` query parameters; the last 24 hours by default."""
    end = parse_datetime(request.args.get("end"), utc_now())
    start = parse_datetime(request.args.get("start"), end - DEFAULT_WINDOW)
    return start, end
