"""Centralized exception hierarchy for the sensor core.

All domain and service exceptions inherit from :class:`SensorHubError` so that
callers can catch a single base class when they need a broad safety net, yet
still match on specific subclasses where narrower handling is appropriate.

Blueprint-level error handling (see ``sensorhub/utils/http.safe_route``) maps
these to the correct HTTP status codes automatically.

Hierarchy
---------
::

    SensorHubError (base: maps to 500)
    ├── ConfigurationError          (400: bad/missing connection params)
    ├── NotFoundError               (404: sensor or group does not exist)
    ├── ConflictError               (409: duplicate / state conflict)
    ├── SensorConnectionError       (503: transport-level failure)
    ├── ReadError                   (503: a single read failed)
    │   ├── ReadTimeoutError        (504: protocol timeout elapsed)
    │   └── ParseError              (502: malformed payload)
    ├── CalibrationValidationError  (422: fit rejected)
    └── InsufficientDataError       (422: too few readings to analyse)

Transport and parse failures are converted to error counts and alerts by the
connection manager; only configuration, lookup and calibration errors reach
API callers.
"""

from __future__ import annotations


class SensorHubError(Exception):
    """Base exception for all sensor core errors.

    Parameters
    ----------
    message:
        Human-readable description.
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Caller errors ────────────────────────────────────────────────────


class ConfigurationError(SensorHubError):
    """Connection parameters missing or invalid for the declared protocol."""

    http_status: int = 400


class NotFoundError(SensorHubError):
    """Requested sensor or group does not exist (HTTP 404)."""

    http_status: int = 404


class ConflictError(SensorHubError):
    """Operation conflicts with existing state (HTTP 409)."""

    http_status: int = 409


class CalibrationValidationError(SensorHubError):
    """Calibration fit is degenerate or below the accuracy threshold."""

    http_status: int = 422


class InsufficientDataError(SensorHubError):
    """Not enough readings in the window for the requested analysis."""

    http_status: int = 422


# ── Transport errors ─────────────────────────────────────────────────


class SensorConnectionError(SensorHubError):
    """Transport could not be opened or was lost (HTTP 503)."""

    http_status: int = 503


class ReadError(SensorHubError):
    """A single read attempt failed."""

    http_status: int = 503


class ReadTimeoutError(ReadError):
    """The adapter's protocol-level timeout elapsed."""

    http_status: int = 504


class ParseError(ReadError):
    """The device answered with a payload that is not a reading."""

    http_status: int = 502
