"""
MQTT client construction for sensor subscriptions.

Every push-based sensor gets its own paho client. Handlers use the
(client, userdata, flags, rc) callback signature, which paho-mqtt 2.x only
accepts when the client is created with ``CallbackAPIVersion.VERSION1``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

# Broker traffic gets its own logger so it can be routed/silenced separately
mqtt_logger = logging.getLogger("sensorhub.mqtt")

# paho's automatic reconnect back-off, in seconds
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60


def _client_kwargs(client_id: str, protocol: Optional[int]) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "client_id": client_id,
        "protocol": protocol if protocol is not None else mqtt.MQTTv311,
    }
    callback_api_version = getattr(mqtt, "CallbackAPIVersion", None)
    if callback_api_version is not None:
        kwargs["callback_api_version"] = callback_api_version.VERSION1
    return kwargs


def create_mqtt_client(
    client_id: str = "",
    *,
    username: Optional[str] = None,
    password: Optional[str] = None,
    protocol: Optional[int] = None,
) -> mqtt.Client:
    """
    Build an unconnected MQTT client for one sensor.

    Args:
        client_id: Broker-side client identifier (unique per sensor)
        username: Optional broker username
        password: Password for ``username``
        protocol: MQTT protocol level; v3.1.1 when omitted
    """
    client = mqtt.Client(**_client_kwargs(client_id, protocol))
    if username:
        client.username_pw_set(username, password)
    client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)
    client.enable_logger(mqtt_logger)
    return client
