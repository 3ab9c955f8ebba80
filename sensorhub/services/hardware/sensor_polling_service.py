"""
Sensor Polling Service
======================
Drives pull-based sensors (Modbus, Serial, HTTP) on independent timers.

Features:
- One worker thread per device, each with its own interval and stop event
- A slow or failing device never delays another device's schedule
- Fixed-rate ticks: a tick that overruns skips the missed slots instead of
  bursting to catch up
- Named maintenance jobs (the calibration-due sweep) on the same machinery

Push-based sensors (MQTT) are not scheduled here; their adapter delivers
values from the broker callback.
"""

import logging
import threading
import time
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

TickHandler = Callable[[str], Any]


class _PeriodicWorker:
    """A daemon thread calling ``fn`` every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, fn: Callable[[], Any], run_immediately: bool = True):
        self.name = name
        self.interval = max(0.01, float(interval))
        self.fn = fn
        self.run_immediately = run_immediately
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self.ticks = 0

    def start(self) -> None:
        self.thread.start()

    def _loop(self) -> None:
        next_run = time.monotonic() + (0.0 if self.run_immediately else self.interval)
        while not self.stop_event.wait(max(0.0, next_run - time.monotonic())):
            try:
                self.fn()
            except Exception:
                # A tick must never kill the schedule
                logger.exception("Periodic job %s failed", self.name)
            self.ticks += 1
            now = time.monotonic()
            next_run += self.interval
            if next_run <= now:
                skipped = int((now - next_run) // self.interval) + 1
                next_run += skipped * self.interval
                logger.debug("Job %s overran; skipped %d slot(s)", self.name, skipped)

    def stop(self, timeout: float) -> None:
        self.stop_event.set()
        # A job may stop itself from inside its own tick
        if self.thread is not threading.current_thread() and self.thread.is_alive():
            self.thread.join(timeout=timeout)


class SensorPollingService:
    """
    Service for periodic sampling of pull-based sensors.

    ``tick_handler(sensor_id)`` is called on every tick; the connection
    manager supplies it and owns read/error handling.
    """

    def __init__(self, tick_handler: TickHandler | None = None, join_timeout: float = 10.0):
        self.tick_handler = tick_handler
        self.join_timeout = join_timeout
        self._lock = threading.Lock()
        self._workers: dict[Hashable, _PeriodicWorker] = {}
        self._stopped = False

    def set_tick_handler(self, tick_handler: TickHandler) -> None:
        self.tick_handler = tick_handler

    # -------------------------------------------------------------------------
    # Device polling
    # -------------------------------------------------------------------------

    def start(self, sensor_id: str, interval_seconds: float) -> None:
        """Start (or restart) polling ``sensor_id`` every ``interval_seconds``."""
        if self.tick_handler is None:
            raise RuntimeError("SensorPollingService has no tick handler")
        handler = self.tick_handler
        self._start_worker(
            ("sensor", sensor_id),
            _PeriodicWorker(f"poll-{sensor_id}", interval_seconds, lambda: handler(sensor_id)),
        )
        logger.info("Polling sensor %s every %.1fs", sensor_id, interval_seconds)

    def stop(self, sensor_id: str) -> bool:
        """Stop polling ``sensor_id``. Returns False if it was not scheduled."""
        return self._stop_worker(("sensor", sensor_id))

    def is_scheduled(self, sensor_id: str) -> bool:
        with self._lock:
            return ("sensor", sensor_id) in self._workers

    def scheduled_sensors(self) -> list[str]:
        with self._lock:
            return [key[1] for key in self._workers if key[0] == "sensor"]

    # -------------------------------------------------------------------------
    # Maintenance jobs
    # -------------------------------------------------------------------------

    def start_job(self, name: str, interval_seconds: float, fn: Callable[[], Any], run_immediately: bool = False) -> None:
        self._start_worker(("job", name), _PeriodicWorker(f"job-{name}", interval_seconds, fn, run_immediately))
        logger.info("Scheduled job %s every %.0fs", name, interval_seconds)

    def stop_job(self, name: str) -> bool:
        return self._stop_worker(("job", name))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stop_all(self) -> None:
        """Stop every worker and refuse new ones."""
        with self._lock:
            self._stopped = True
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.stop_event.set()
        for worker in workers:
            worker.stop(self.join_timeout)
        if workers:
            logger.info("Stopped %d polling worker(s)", len(workers))

    def _start_worker(self, key: Hashable, worker: _PeriodicWorker) -> None:
        with self._lock:
            if self._stopped:
                logger.debug("Ignoring start of %s after shutdown", worker.name)
                return
            previous = self._workers.pop(key, None)
            self._workers[key] = worker
        if previous is not None:
            previous.stop(self.join_timeout)
        worker.start()

    def _stop_worker(self, key: Hashable) -> bool:
        with self._lock:
            worker = self._workers.pop(key, None)
        if worker is None:
            return False
        worker.stop(self.join_timeout)
        return True
