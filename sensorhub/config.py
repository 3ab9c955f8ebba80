"""
Configuration for the Sensor Hub
================================
Runtime settings for connection management, calibration and analytics,
loaded from ``SENSORHUB_*`` environment variables.
Also sets up the root logging handlers.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import suppress
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Any, Callable


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("SENSORHUB_ENV", "development"))

    # Connection management
    error_threshold: int = field(default_factory=lambda: _env_int("SENSORHUB_ERROR_THRESHOLD", 3))
    reconnect_delay_seconds: float = field(
        default_factory=lambda: _env_float("SENSORHUB_RECONNECT_DELAY_SECONDS", 30.0)
    )
    io_timeout_seconds: float = field(default_factory=lambda: _env_float("SENSORHUB_IO_TIMEOUT_SECONDS", 5.0))
    default_polling_interval_seconds: float = field(
        default_factory=lambda: _env_float("SENSORHUB_DEFAULT_POLLING_INTERVAL_SECONDS", 60.0)
    )

    # Calibration
    calibration_interval_days: int = field(
        default_factory=lambda: _env_int("SENSORHUB_CALIBRATION_INTERVAL_DAYS", 30)
    )
    calibration_min_accuracy: float = field(
        default_factory=lambda: _env_float("SENSORHUB_CALIBRATION_MIN_ACCURACY", 95.0)
    )
    calibration_check_interval_seconds: float = field(
        default_factory=lambda: _env_float("SENSORHUB_CALIBRATION_CHECK_INTERVAL_SECONDS", 86400.0)
    )

    # Aggregation / analytics
    group_freshness_seconds: float = field(
        default_factory=lambda: _env_float("SENSORHUB_GROUP_FRESHNESS_SECONDS", 300.0)
    )
    activity_history_size: int = field(default_factory=lambda: _env_int("SENSORHUB_ACTIVITY_HISTORY_SIZE", 10_000))

    # MQTT
    mqtt_broker_host: str = field(default_factory=lambda: os.getenv("SENSORHUB_MQTT_HOST", "localhost"))
    mqtt_broker_port: int = field(default_factory=lambda: _env_int("SENSORHUB_MQTT_PORT", 1883))

    eventbus_queue_size: int = field(default_factory=lambda: _env_int("SENSORHUB_EVENTBUS_QUEUE_SIZE", 1024))
    eventbus_worker_count: int = field(default_factory=lambda: _env_int("SENSORHUB_EVENTBUS_WORKER_COUNT", 2))

    DEBUG: bool = field(default_factory=lambda: _env_bool("SENSORHUB_DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("SENSORHUB_LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: os.getenv("SENSORHUB_LOG_FILE", "logs/sensorhub.log"))

    def __post_init__(self) -> None:
        if self.error_threshold < 1:
            raise ValueError("SENSORHUB_ERROR_THRESHOLD must be at least 1.")
        if self.reconnect_delay_seconds < 0:
            raise ValueError("SENSORHUB_RECONNECT_DELAY_SECONDS must not be negative.")
        if self.eventbus_worker_count < 1:
            raise ValueError("SENSORHUB_EVENTBUS_WORKER_COUNT must be at least 1.")

    def as_flask_config(self) -> dict[str, Any]:
        """Render configuration values for the Flask application."""
        return {
            "ENV": self.environment,
            "DEBUG": self.DEBUG,
            "JSON_SORT_KEYS": False,
        }


CONSOLE_HANDLER = "sensorhub_console"
FILE_HANDLER = "sensorhub_file"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that flood DEBUG output
NOISY_LOGGERS = ("pymodbus", "urllib3")


def _install_handler(root: logging.Logger, name: str, build: Callable[[], logging.Handler]) -> bool:
    if any(getattr(h, "name", "") == name for h in root.handlers):
        return False
    handler = build()
    handler.name = name
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return True


def _console_handler() -> logging.Handler:
    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    return logging.StreamHandler(stream=stream)


def setup_logging(
    debug: bool = False,
    log_file: str | None = "logs/sensorhub.log",
    level: str = "INFO",
) -> None:
    """
    Configure root logging for the hub. Safe to call repeatedly: the console
    and rotating file handlers are added once and re-levelled afterwards.
    ``debug`` overrides ``level``.
    """
    log_level = logging.DEBUG if debug else logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")

    root = logging.getLogger()
    root.setLevel(log_level)

    added = _install_handler(root, CONSOLE_HANDLER, _console_handler)
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        added |= _install_handler(
            root,
            FILE_HANDLER,
            lambda: RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"),
        )

    for handler in root.handlers:
        if getattr(handler, "name", "") in (CONSOLE_HANDLER, FILE_HANDLER):
            handler.setLevel(log_level)
    if added:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("SENSORHUB_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()
