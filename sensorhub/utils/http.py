"""
HTTP Response Helpers
=====================

JSON envelopes shared by every API route::

    {"ok": true,  "data": {...}, "error": null}
    {"ok": false, "data": null,  "error": {"message": ..., "timestamp": ...}, "message": ...}

Domain errors are turned into responses by :func:`exception_response`, which
both :func:`safe_route` and the app-wide error handler use.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from flask import Response, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from sensorhub.domain.exceptions import SensorHubError
from sensorhub.utils.time import iso_now

logger = logging.getLogger(__name__)

# Shown instead of str(exc) for server-side failures
GENERIC_MESSAGES: dict[int, str] = {
    500: "An internal error occurred",
    502: "Sensor returned an unreadable payload",
    503: "Sensor unavailable",
    504: "Sensor did not answer in time",
}


def _json(body: dict[str, Any], status: int) -> Response:
    response = jsonify(body)
    response.status_code = status
    return response


def success_response(data: dict | list | None = None, status: int = 200, *, message: str | None = None) -> Response:
    body: dict[str, Any] = {"ok": True, "data": data, "error": None}
    if message is not None:
        body["message"] = message
    return _json(body, status)


def error_response(message: str, status: int = 500, *, details: dict | None = None) -> Response:
    error: dict[str, Any] = {"message": message, "timestamp": iso_now()}
    body: dict[str, Any] = {"ok": False, "data": None, "error": error, "message": message}
    if details:
        error.update(details)
        body["details"] = details
    return _json(body, status)


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log ``exc`` with its traceback and answer with a generic message."""
    logger.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    return error_response(GENERIC_MESSAGES.get(status, GENERIC_MESSAGES[500]), status)


def exception_response(exc: BaseException, *, context: str = "", fallback_status: int = 500) -> Response:
    """
    Map an exception raised while serving a request to a JSON response.

    - ``SensorHubError``: its ``http_status``; 4xx carry message and ``detail``
    - pydantic ``ValidationError``: 400 with the field errors
    - werkzeug ``HTTPException``: its code and description
    - anything else: ``fallback_status`` with a generic message
    """
    if isinstance(exc, SensorHubError):
        status = exc.http_status
        if status >= 500:
            return safe_error(exc, status, context=context or type(exc).__name__)
        return error_response(str(exc) or context or "Request failed", status, details=exc.detail or None)
    if isinstance(exc, ValidationError):
        errors = exc.errors(include_url=False, include_context=False)
        return error_response("Invalid request", 400, details={"errors": errors})
    if isinstance(exc, HTTPException):
        status = int(exc.code or 500)
        if status >= 500:
            return safe_error(exc, status, context=context or "http-exception")
        return error_response(exc.description or "Request failed", status)
    return safe_error(exc, fallback_status, context=context or "unhandled")


def safe_route(error_message: str = "An internal error occurred", *, error_status: int = 500) -> Callable:
    """Wrap a Flask view so every exception becomes a JSON error envelope.

    Usage::

        @sensors_api.post("/<sensor_id>/calibrations")
        @safe_route("Failed to calibrate sensor")
        def calibrate(sensor_id):
            ...
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                return exception_response(exc, context=error_message, fallback_status=error_status)

        return wrapper

    return decorator
