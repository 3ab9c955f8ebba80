"""
Sensor API Blueprint
====================

Sensor core API organized into sub-modules:
- devices.py: registration, status, connect/disconnect, thresholds
- calibration.py: calibration runs and history
- groups.py: sensor groups and aggregated readings
- analytics.py: statistics, trends, anomalies, comparison
- alerts.py: alert listing, acknowledge, resolve

All routes are registered under the /api/v1/sensors prefix.
"""

from __future__ import annotations

import logging

from flask import Blueprint

sensors_api = Blueprint("sensors_api", __name__)
logger = logging.getLogger("sensors_api")

# Import sub-modules to register their routes on sensors_api
from . import alerts, analytics, calibration, devices, groups  # noqa: E402

_ = (alerts, analytics, calibration, devices, groups)

__all__ = ["sensors_api"]
