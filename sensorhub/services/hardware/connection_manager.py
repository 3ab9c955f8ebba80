"""
Connection Manager
==================
Owns one transport adapter per registered sensor and the state machine
around it:

    disconnected -> connecting -> connected
                         |            |
                         v            v  (error_threshold consecutive read failures)
                       error      disconnected
                         |            |
                         +-- retry after reconnect_delay_seconds --+

This is the only component that creates or destroys transport handles.
Transport and parse failures never escape to callers: they become error
counts, status changes, a ``sensor_error`` alert and a scheduled retry.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from sensorhub.domain.exceptions import ConfigurationError, ConflictError, ReadError, SensorConnectionError
from sensorhub.domain.sensors import SensorDevice, required_connection_keys
from sensorhub.enums import SensorEvent, SensorKind, SensorStatus
from sensorhub.hardware.adapters.sensors.base_adapter import ISensorAdapter
from sensorhub.services.hardware.state_tracking_service import StateTrackingService

if TYPE_CHECKING:
    from sensorhub.hardware.adapters.sensors.factory import AdapterFactory
    from sensorhub.hardware.sensors.registry import DeviceRegistry
    from sensorhub.services.hardware.sensor_polling_service import SensorPollingService
    from sensorhub.services.protocols import AlertSink
    from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

RawValueHandler = Callable[[SensorDevice, float], Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]

# Failures are logged on the first occurrence and then every Nth
_LOG_EVERY_N_FAILURES = 10


def _default_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    return timer


def validate_device(device: SensorDevice) -> None:
    """
    Check that a device can be driven by its protocol.

    Raises:
        ConfigurationError: missing/empty connection params, bad interval,
            or a derived-only device that names no parameter
    """
    params = device.connection_params or {}
    missing = [
        key
        for key in required_connection_keys(device.protocol, params)
        if params.get(key) is None or (isinstance(params.get(key), str) and not params[key].strip())
    ]
    if missing:
        raise ConfigurationError(
            f"Missing connection parameters for {device.protocol.value}: {', '.join(missing)}",
            detail={"sensor_id": device.id, "protocol": device.protocol.value, "missing": missing},
        )
    if device.polling_interval_seconds <= 0:
        raise ConfigurationError(
            "polling_interval_seconds must be positive",
            detail={"sensor_id": device.id},
        )
    if device.kind == SensorKind.DERIVED_ONLY and not device.parameter:
        raise ConfigurationError(
            "derived_only sensors must declare the parameter they measure",
            detail={"sensor_id": device.id},
        )
    if device.emissivity is not None and not 0 < device.emissivity <= 1:
        raise ConfigurationError("emissivity must be in (0, 1]", detail={"sensor_id": device.id})
    if device.warmup_seconds < 0:
        raise ConfigurationError("warmup_seconds must not be negative", detail={"sensor_id": device.id})


class ConnectionManager:
    """Connection table, reconnection and error-streak handling for all sensors."""

    def __init__(
        self,
        registry: "DeviceRegistry",
        adapter_factory: "AdapterFactory",
        scheduler: "SensorPollingService",
        alerts: "AlertSink",
        *,
        state_tracker: StateTrackingService | None = None,
        event_bus: "EventBus | None" = None,
        error_threshold: int = 3,
        reconnect_delay_seconds: float = 30.0,
        timer_factory: TimerFactory = _default_timer,
    ):
        self.registry = registry
        self.adapter_factory = adapter_factory
        self.scheduler = scheduler
        self.alerts = alerts
        self.state_tracker = state_tracker or StateTrackingService()
        self.event_bus = event_bus
        self.error_threshold = error_threshold
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._timer_factory = timer_factory
        self.on_raw_value: Optional[RawValueHandler] = None

        self._lock = threading.Lock()
        self._connections: Dict[str, ISensorAdapter] = {}
        # Pending reconnect and warm-up timers
        self._timers: Dict[str, Any] = {}
        self._connect_failures: Dict[str, int] = {}
        # Operator-requested disconnects suppress automatic reconnection
        self._manual_disconnects: set[str] = set()
        self.retry_counts: Dict[str, int] = {}
        self._closed = False

        self.scheduler.set_tick_handler(self.poll_once)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, device: SensorDevice) -> SensorDevice:
        """Validate and store a device; it starts out disconnected."""
        validate_device(device)
        # Building the adapter (without opening it) type-checks the params
        self.adapter_factory.create(device)
        device.status = SensorStatus.DISCONNECTED
        device.error_count = 0
        self.registry.add(device)
        self.state_tracker.record_status(device.id, SensorStatus.DISCONNECTED)
        self._publish(SensorEvent.SENSOR_REGISTERED, device)
        return device

    def deregister(self, sensor_id: str) -> SensorDevice:
        """Disconnect and remove a device that no group references."""
        groups = sorted(g.id for g in self.registry.groups_containing(sensor_id))
        if groups:
            raise ConflictError(
                f"Sensor {sensor_id} is still a member of groups {groups}; remove it from them first",
                detail={"sensor_id": sensor_id, "groups": groups},
            )
        self.disconnect(sensor_id)
        device = self.registry.remove(sensor_id)
        with self._lock:
            self._manual_disconnects.discard(sensor_id)
            self._connect_failures.pop(sensor_id, None)
            self.retry_counts.pop(sensor_id, None)
        self.state_tracker.forget(sensor_id)
        self._publish(SensorEvent.SENSOR_DEREGISTERED, {"sensor_id": sensor_id})
        return device

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    def connect(self, sensor_id: str) -> bool:
        """
        Open the device's transport.

        Returns True when connected. A failure sets status ``error``,
        schedules a retry and returns False; it never raises transport errors.
        Devices with a warm-up delay connect asynchronously (returns False).
        """
        device = self.registry.get(sensor_id)
        with self._lock:
            if self._closed:
                return False
            self._manual_disconnects.discard(sensor_id)
            if sensor_id in self._connections:
                return True

        if device.warmup_seconds > 0 and device.status == SensorStatus.DISCONNECTED:
            self._set_status(device, SensorStatus.CONNECTING)
            logger.info("Sensor %s warming up for %.0fs before connecting", sensor_id, device.warmup_seconds)
            self._schedule(
                sensor_id, device.warmup_seconds, lambda: self._retry(sensor_id, "Warm-up finished"), count=False
            )
            return False

        return self._connect_now(sensor_id)

    def _connect_now(self, sensor_id: str) -> bool:
        self._cancel_timer(sensor_id)
        with self.registry.locked(sensor_id) as device:
            with self._lock:
                if self._closed or sensor_id in self._manual_disconnects:
                    return False
                if sensor_id in self._connections:
                    return True
            self._set_status(device, SensorStatus.CONNECTING)
            try:
                adapter = self.adapter_factory.create(device)
            except ConfigurationError:
                self._set_status(device, SensorStatus.ERROR)
                raise
            try:
                adapter.open()
                if not device.is_pull:
                    adapter.subscribe(
                        lambda raw: self._on_push_value(sensor_id, raw),
                        lambda exc: self.record_failure(sensor_id, exc),
                    )
            except SensorConnectionError as exc:
                adapter.close()
                self._handle_connect_failure(device, exc)
                return False

            with self._lock:
                # An operator disconnect or shutdown may have landed while open() blocked
                abandoned = self._closed or sensor_id in self._manual_disconnects
                if not abandoned:
                    self._connections[sensor_id] = adapter
                    self._connect_failures.pop(sensor_id, None)
            if abandoned:
                adapter.close()
                self._set_status(device, SensorStatus.DISCONNECTED)
                logger.info("Sensor %s connect abandoned; disconnect requested meanwhile", sensor_id)
                return False
            device.error_count = 0
            self._set_status(device, SensorStatus.CONNECTED)
            if device.is_pull:
                self.scheduler.start(sensor_id, device.polling_interval_seconds)

        logger.info("Sensor %s connected", sensor_id)
        return True

    def _handle_connect_failure(self, device: SensorDevice, exc: Exception) -> None:
        with self._lock:
            failures = self._connect_failures.get(device.id, 0) + 1
            self._connect_failures[device.id] = failures
        self._set_status(device, SensorStatus.ERROR)
        if failures == 1 or failures % _LOG_EVERY_N_FAILURES == 0:
            logger.warning(
                "Sensor %s connect failed (attempt %d): %s; retrying in %.0fs",
                device.id,
                failures,
                exc,
                self.reconnect_delay_seconds,
            )
        if failures >= self.error_threshold:
            self.alerts.raise_sensor_error(device.id, f"Unable to connect after {failures} attempts: {exc}")
        self._schedule_reconnect(device.id)

    def disconnect(self, sensor_id: str) -> None:
        """Close the transport and stop polling; no automatic reconnect follows."""
        device = self.registry.get(sensor_id)
        with self._lock:
            self._manual_disconnects.add(sensor_id)
        self._cancel_timer(sensor_id)
        # Wait out a connect that is mid-open(); it sees the flag and backs off
        with self.registry.locked(sensor_id):
            pass
        self.scheduler.stop(sensor_id)
        self._close_adapter(sensor_id)
        with self.registry.locked(sensor_id):
            self._set_status(device, SensorStatus.DISCONNECTED)
        logger.info("Sensor %s disconnected", sensor_id)

    def status(self, sensor_id: str) -> SensorStatus:
        return self.registry.get(sensor_id).status

    def is_connected(self, sensor_id: str) -> bool:
        with self._lock:
            return sensor_id in self._connections

    def has_pending_reconnect(self, sensor_id: str) -> bool:
        with self._lock:
            return sensor_id in self._timers

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def poll_once(self, sensor_id: str) -> Optional[float]:
        """
        One scheduler tick: read, then hand the raw value to the pipeline.

        Returns the raw value, or None when the device is not connected or
        the read failed.
        """
        with self._lock:
            adapter = self._connections.get(sensor_id)
        if adapter is None:
            return None
        try:
            raw = adapter.read_once()
        except ReadError as exc:
            self.record_failure(sensor_id, exc)
            return None
        self._record_success(sensor_id)
        self._deliver(sensor_id, raw)
        return raw

    def _on_push_value(self, sensor_id: str, raw: float) -> None:
        self._record_success(sensor_id)
        self._deliver(sensor_id, raw)

    def _deliver(self, sensor_id: str, raw: float) -> None:
        device = self.registry.find(sensor_id)
        if device is None or self.on_raw_value is None:
            return
        self.on_raw_value(device, raw)

    def _record_success(self, sensor_id: str) -> None:
        self.state_tracker.record_read(sensor_id, True)
        device = self.registry.find(sensor_id)
        if device is not None and device.error_count:
            with self.registry.locked(sensor_id):
                device.error_count = 0

    def record_failure(self, sensor_id: str, exc: Exception) -> None:
        """
        Count a failed read. At ``error_threshold`` consecutive failures the
        transport is force-closed, the device goes ``disconnected``, one
        ``sensor_error`` alert is raised and a reconnect is scheduled.
        """
        self.state_tracker.record_read(sensor_id, False, error=str(exc))
        device = self.registry.find(sensor_id)
        if device is None:
            return
        with self.registry.locked(sensor_id):
            device.error_count += 1
            count = device.error_count
            if count == 1 or count % _LOG_EVERY_N_FAILURES == 0:
                logger.warning("Sensor %s read failed (%d consecutive): %s", sensor_id, count, exc)
            if count < self.error_threshold or device.status != SensorStatus.CONNECTED:
                return
            self._set_status(device, SensorStatus.DISCONNECTED)

        logger.error(
            "Sensor %s reached %d consecutive read failures; forcing reconnect", sensor_id, count
        )
        self.scheduler.stop(sensor_id)
        self._close_adapter(sensor_id)
        self.alerts.raise_sensor_error(sensor_id, f"{count} consecutive read failures; last error: {exc}")
        self._schedule_reconnect(sensor_id)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, sensor_id: str) -> None:
        self._schedule(sensor_id, self.reconnect_delay_seconds, lambda: self._retry(sensor_id), count=True)

    def _schedule(self, sensor_id: str, delay: float, fn: Callable[[], None], *, count: bool) -> None:
        with self._lock:
            if self._closed or sensor_id in self._manual_disconnects:
                return
            previous = self._timers.pop(sensor_id, None)
            timer = self._timer_factory(delay, fn)
            self._timers[sensor_id] = timer
            if count:
                self.retry_counts[sensor_id] = self.retry_counts.get(sensor_id, 0) + 1
        if previous is not None:
            previous.cancel()
        timer.start()

    def _retry(self, sensor_id: str, reason: str = "Reconnect attempt") -> None:
        with self._lock:
            self._timers.pop(sensor_id, None)
            attempt = self.retry_counts.get(sensor_id, 0)
        if not self.registry.contains(sensor_id):
            return
        logger.info("%s for sensor %s (retries so far: %d)", reason, sensor_id, attempt)
        try:
            self._connect_now(sensor_id)
        except Exception:
            # Timer threads have no caller to report to
            logger.exception("Reconnect of sensor %s failed unexpectedly", sensor_id)

    def _cancel_timer(self, sensor_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(sensor_id, None)
        if timer is not None:
            timer.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _close_adapter(self, sensor_id: str) -> None:
        with self._lock:
            adapter = self._connections.pop(sensor_id, None)
        if adapter is None:
            return
        try:
            adapter.close()
        except Exception:
            logger.exception("Error closing transport for sensor %s", sensor_id)

    def _set_status(self, device: SensorDevice, status: SensorStatus) -> None:
        if device.status == status:
            return
        previous = device.status
        device.status = status
        self.state_tracker.record_status(device.id, status)
        logger.debug("Sensor %s: %s -> %s", device.id, previous.value, status.value)
        self._publish(
            SensorEvent.STATUS_CHANGED,
            {"sensor_id": device.id, "previous": previous.value, "status": status.value},
        )

    def _publish(self, event: SensorEvent, payload: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event, payload)

    def shutdown(self) -> None:
        """Cancel every pending timer, stop polling and close every transport."""
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
            sensor_ids = list(self._connections)
        for timer in timers:
            timer.cancel()
        self.scheduler.stop_all()
        for sensor_id in sensor_ids:
            self._close_adapter(sensor_id)
            device = self.registry.find(sensor_id)
            if device is not None:
                self._set_status(device, SensorStatus.DISCONNECTED)
        logger.info("Connection manager stopped (%d transport(s) closed)", len(sensor_ids))
