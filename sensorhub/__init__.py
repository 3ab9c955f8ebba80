from __future__ import annotations

import atexit
import contextlib
import logging
import signal
import threading

from flask import Flask, request

from sensorhub.blueprints.api.sensors import sensors_api
from sensorhub.config import AppConfig, load_config, setup_logging
from sensorhub.utils.http import exception_response

__version__ = "0.1.0"


def create_app(
    config: AppConfig | None = None,
    *,
    container=None,
    bootstrap_runtime: bool = False,
) -> Flask:
    """
    Build the Flask application around a ``ServiceContainer``.

    Args:
        config: Configuration; loaded from the environment when omitted
        container: Pre-built container (tests inject one with fake adapters)
        bootstrap_runtime: Start background jobs and install shutdown handlers
    """
    config = config or load_config()
    setup_logging(debug=config.DEBUG, log_file=config.log_file, level=config.log_level)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())

    if container is None:
        from sensorhub.services.container import ServiceContainer

        container = ServiceContainer.build(config)
    flask_app.config["CONTAINER"] = container

    if bootstrap_runtime:
        container.start()
        _install_shutdown_handlers(container)

    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        if not request.path.startswith("/api/"):
            raise exc
        return exception_response(exc)

    flask_app.register_blueprint(sensors_api, url_prefix="/api/v1/sensors")
    logging.info("Sensor hub application ready (%s)", config.environment)
    return flask_app


def _install_shutdown_handlers(container) -> None:
    shutdown_lock = threading.Lock()
    shutdown_done = False

    def _graceful_shutdown(reason: str = "unknown") -> None:
        nonlocal shutdown_done
        with shutdown_lock:
            if shutdown_done:
                return
            shutdown_done = True
        logging.info("Graceful shutdown initiated (%s)", reason)
        container.shutdown()

    def _signal_handler(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logging.info("Received %s, shutting down", sig_name)
        _graceful_shutdown(sig_name)
        raise SystemExit(0)

    atexit.register(_graceful_shutdown, "atexit")
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(OSError, ValueError):
            signal.signal(sig, _signal_handler)
