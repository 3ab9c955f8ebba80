"""
MQTT Sensor Adapter
===================
Push-based adapter: one broker session and one topic subscription per device.

Incoming payloads are either a bare numeric literal (``"21.4"``) or a JSON
object carrying a ``value`` field (``{"value": 21.4, "unit": "C"}``).
Malformed payloads are logged and dropped; they never reach the reading
pipeline and never stop the network loop.
"""
import logging
import threading
import uuid
from typing import Any, Callable

import paho.mqtt.client as mqtt

from sensorhub.domain.exceptions import ParseError, SensorConnectionError
from sensorhub.enums import Protocol
from sensorhub.hardware.mqtt.client_factory import create_mqtt_client, mqtt_logger

from .base_adapter import ErrorCallback, ISensorAdapter, RawCallback, parse_payload

logger = logging.getLogger(__name__)


class MQTTAdapter(ISensorAdapter):
    """
    connection_params:
        topic: subscription topic (wildcards allowed)
        broker / broker_port: broker endpoint (defaults from configuration)
        username / password: optional credentials
        qos: subscription QoS (default 1)
        value_path: JSON path of the reading inside object payloads
    """

    protocol = Protocol.MQTT

    def __init__(
        self,
        sensor_id: str,
        params: dict[str, Any],
        *,
        timeout: float = 5.0,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        client_factory: Callable[..., Any] = create_mqtt_client,
    ) -> None:
        super().__init__(sensor_id, params, timeout=timeout)
        self.topic = str(self.params["topic"])
        self.broker = str(self.params.get("broker") or broker_host)
        self.broker_port = int(self.params.get("broker_port") or broker_port)
        self.qos = int(self.params.get("qos", 1))
        value_path = self.params.get("value_path")
        self.value_paths: tuple[str, ...] = (str(value_path),) if value_path else ("value",)
        self._client_factory = client_factory
        self._client = None
        self._lock = threading.Lock()
        self._callback: RawCallback | None = None
        self._on_error: ErrorCallback | None = None
        self.dropped_messages = 0

    def open(self) -> None:
        if self._open:
            return
        client = self._client_factory(
            client_id=f"sensorhub-{self.sensor_id}-{uuid.uuid4().hex[:8]}",
            username=self.params.get("username"),
            password=self.params.get("password"),
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._dispatch_message
        try:
            client.connect(self.broker, self.broker_port, 60)
        except (OSError, ValueError) as exc:
            raise SensorConnectionError(
                f"MQTT connect to {self.broker}:{self.broker_port} failed: {exc}",
                detail={"sensor_id": self.sensor_id},
            ) from exc
        client.loop_start()
        self._client = client
        self._open = True
        mqtt_logger.info("Sensor %s connected to MQTT broker %s:%s", self.sensor_id, self.broker, self.broker_port)

    def subscribe(self, callback: RawCallback, on_error: ErrorCallback | None = None) -> None:
        if not self._open or self._client is None:
            raise SensorConnectionError("MQTT adapter is not open", detail={"sensor_id": self.sensor_id})
        with self._lock:
            self._callback = callback
            self._on_error = on_error
        result, _mid = self._client.subscribe(self.topic, qos=self.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SensorConnectionError(
                f"MQTT subscribe to {self.topic} failed (rc={result})",
                detail={"sensor_id": self.sensor_id, "topic": self.topic},
            )
        mqtt_logger.info("Sensor %s subscribed to %s", self.sensor_id, self.topic)

    def _on_connect(self, client, userdata, flags, rc) -> None:
        # Broker-side session state is lost on reconnect; resubscribe
        if rc == 0 and self._callback is not None:
            client.subscribe(self.topic, qos=self.qos)
        elif rc != 0:
            mqtt_logger.warning("Sensor %s: broker refused connection (rc=%s)", self.sensor_id, rc)

    def _on_disconnect(self, client, userdata, rc) -> None:
        if rc != 0:
            mqtt_logger.warning("Sensor %s: unexpected MQTT disconnect (rc=%s); paho will retry", self.sensor_id, rc)

    def _dispatch_message(self, client, userdata, msg) -> None:
        """Parse one message and hand the value to the subscriber."""
        with self._lock:
            callback, on_error = self._callback, self._on_error
        if callback is None:
            return
        if not mqtt.topic_matches_sub(self.topic, msg.topic):
            return
        try:
            value = parse_payload(msg.payload, self.value_paths)
        except ParseError as exc:
            self.dropped_messages += 1
            mqtt_logger.warning("Dropping malformed payload on %s for sensor %s: %s", msg.topic, self.sensor_id, exc)
            if on_error is not None:
                self._safe_call(on_error, exc)
            return
        self._safe_call(callback, value)

    def _safe_call(self, fn: Callable[[Any], None], arg: Any) -> None:
        # Exceptions must not propagate into paho's network thread
        try:
            fn(arg)
        except Exception:
            logger.exception("MQTT subscriber for sensor %s raised", self.sensor_id)

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            self._callback = None
            self._on_error = None
        self._open = False
        if client is None:
            return
        try:
            client.unsubscribe(self.topic)
            client.disconnect()
        finally:
            client.loop_stop()
        mqtt_logger.info("Sensor %s disconnected from MQTT broker", self.sensor_id)
