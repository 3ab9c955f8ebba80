"""
Transport Adapter Factory
=========================
Maps each protocol to its adapter class and builds one adapter per device.
Protocol branching happens here and nowhere else.
"""

import logging
from typing import Any, Callable

from sensorhub.domain.exceptions import ConfigurationError
from sensorhub.domain.sensors import SensorDevice
from sensorhub.enums import Protocol

from .base_adapter import ISensorAdapter
from .http_adapter import HTTPAdapter
from .modbus_adapter import ModbusAdapter
from .mqtt_adapter import MQTTAdapter
from .serial_adapter import SerialAdapter

logger = logging.getLogger(__name__)

AdapterBuilder = Callable[[SensorDevice], ISensorAdapter]


class AdapterFactory:
    """
    Builds transport adapters for registered devices.

    Builders can be overridden per protocol (simulated adapters for bench
    setups, fakes in tests) without touching the services that use them.
    """

    def __init__(
        self,
        *,
        io_timeout: float = 5.0,
        mqtt_broker_host: str = "localhost",
        mqtt_broker_port: int = 1883,
    ) -> None:
        self.io_timeout = io_timeout
        self.mqtt_broker_host = mqtt_broker_host
        self.mqtt_broker_port = mqtt_broker_port
        self._builders: dict[Protocol, AdapterBuilder] = {
            Protocol.MODBUS: lambda device: ModbusAdapter(
                device.id, device.connection_params, timeout=self.io_timeout
            ),
            Protocol.MQTT: lambda device: MQTTAdapter(
                device.id,
                device.connection_params,
                timeout=self.io_timeout,
                broker_host=self.mqtt_broker_host,
                broker_port=self.mqtt_broker_port,
            ),
            Protocol.SERIAL: lambda device: SerialAdapter(
                device.id, device.connection_params, timeout=self.io_timeout
            ),
            Protocol.HTTP: lambda device: HTTPAdapter(
                device.id, device.connection_params, timeout=self.io_timeout, parameter=device.parameter
            ),
        }

    def register_protocol_adapter(self, protocol: Protocol | str, builder: AdapterBuilder) -> None:
        """Replace the builder used for ``protocol``."""
        protocol = Protocol(protocol)
        self._builders[protocol] = builder
        logger.info("Registered adapter builder for protocol '%s'", protocol.value)

    def create(self, device: SensorDevice) -> ISensorAdapter:
        """
        Build (but do not open) the adapter for ``device``.

        Raises:
            ConfigurationError: connection_params cannot drive this protocol
        """
        builder = self._builders.get(device.protocol)
        if builder is None:
            raise ConfigurationError(f"No adapter for protocol {device.protocol.value}")
        try:
            return builder(device)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid connection parameters for sensor {device.id}: {exc}",
                detail={"sensor_id": device.id, "protocol": device.protocol.value},
            ) from exc

    def __call__(self, device: SensorDevice) -> ISensorAdapter:
        return self.create(device)

    def describe(self) -> dict[str, Any]:
        return {protocol.value: protocol.is_pull for protocol in self._builders}
