"""
Modbus Sensor Adapter
=====================
Adapter for sensors using Modbus TCP or Modbus RTU (RS485).

Common use cases:
- Root-zone EC/pH/moisture probes (RS485)
- Industrial CO2 and PAR transmitters
"""
import logging
import struct
from typing import Any

from pymodbus.client import ModbusSerialClient, ModbusTcpClient
from pymodbus.exceptions import ModbusException, ModbusIOException

from sensorhub.domain.exceptions import ConfigurationError, ReadError, ReadTimeoutError, SensorConnectionError
from sensorhub.enums import Protocol

from .base_adapter import ISensorAdapter

logger = logging.getLogger(__name__)

_REGISTER_COUNTS = {"uint16": 1, "int16": 1, "uint32": 2, "int32": 2, "float32": 2}


class ModbusAdapter(ISensorAdapter):
    """
    Reads one holding or input register block per poll.

    connection_params:
        mode: "tcp" (default) or "rtu"
        host / port: TCP endpoint (port defaults to 502)
        port / baud_rate: serial device for RTU
        address: register address
        unit_id: slave/unit id (default 1)
        register_type: "holding" (default) or "input"
        data_type: uint16, int16, uint32, int32, float32
        scale: multiplier applied to the decoded register value
    """

    protocol = Protocol.MODBUS

    def __init__(self, sensor_id: str, params: dict[str, Any], *, timeout: float = 5.0, client=None) -> None:
        super().__init__(sensor_id, params, timeout=timeout)
        self.mode = str(self.params.get("mode", "tcp")).lower()
        if self.mode not in ("tcp", "rtu"):
            raise ConfigurationError(f"Unsupported Modbus mode: {self.mode}", detail={"sensor_id": sensor_id})
        self.register_address = int(self.params["address"])
        self.unit_id = int(self.params.get("unit_id", 1))
        self.register_type = str(self.params.get("register_type", "holding")).lower()
        self.data_type = str(self.params.get("data_type", "uint16")).lower()
        if self.data_type not in _REGISTER_COUNTS:
            raise ConfigurationError(f"Unsupported Modbus data type: {self.data_type}")
        self.scale_factor = float(self.params.get("scale", 1.0))
        # An injected client is owned by the caller until open() succeeds
        self._client = client

    def _build_client(self):
        if self.mode == "rtu":
            return ModbusSerialClient(
                port=self.params["port"],
                baudrate=int(self.params.get("baud_rate", 9600)),
                timeout=self.timeout,
            )
        return ModbusTcpClient(
            self.params["host"],
            port=int(self.params.get("port", 502)),
            timeout=self.timeout,
        )

    def open(self) -> None:
        if self._open:
            return
        if self._client is None:
            self._client = self._build_client()
        try:
            connected = self._client.connect()
        except (ModbusException, OSError) as exc:
            raise SensorConnectionError(f"Modbus connect failed: {exc}", detail={"sensor_id": self.sensor_id}) from exc
        if not connected:
            raise SensorConnectionError(
                "Modbus connect failed",
                detail={"sensor_id": self.sensor_id, "mode": self.mode},
            )
        self._open = True
        logger.info("Modbus %s session open for sensor %s (unit %s)", self.mode, self.sensor_id, self.unit_id)

    def read_once(self) -> float:
        if not self._open or self._client is None:
            raise ReadError("Modbus session is not open", detail={"sensor_id": self.sensor_id})

        count = _REGISTER_COUNTS[self.data_type]
        reader = (
            self._client.read_input_registers
            if self.register_type == "input"
            else self._client.read_holding_registers
        )
        try:
            result = reader(self.register_address, count=count, slave=self.unit_id)
        except ModbusIOException as exc:
            raise ReadTimeoutError(f"Modbus read timed out: {exc}", detail={"sensor_id": self.sensor_id}) from exc
        except (ModbusException, OSError) as exc:
            raise ReadError(f"Modbus read failed: {exc}", detail={"sensor_id": self.sensor_id}) from exc

        if result.isError():
            raise ReadError(f"Modbus read error: {result}", detail={"sensor_id": self.sensor_id})

        return self._convert_registers(list(result.registers)) * self.scale_factor

    def _convert_registers(self, registers: list) -> float:
        """
        Convert Modbus registers to a value based on data type.

        Multi-register types are big-endian, high word first.
        """
        if len(registers) < _REGISTER_COUNTS[self.data_type]:
            raise ReadError(f"{self.data_type} requires {_REGISTER_COUNTS[self.data_type]} registers")

        if self.data_type == "uint16":
            return float(registers[0])

        if self.data_type == "int16":
            value = registers[0]
            if value > 32767:
                value -= 65536
            return float(value)

        combined = (registers[0] << 16) | registers[1]
        if self.data_type == "uint32":
            return float(combined)
        if self.data_type == "int32":
            if combined > 2147483647:
                combined -= 4294967296
            return float(combined)

        bytes_data = struct.pack(">HH", registers[0], registers[1])
        return struct.unpack(">f", bytes_data)[0]

    def close(self) -> None:
        client, self._client = self._client, None
        was_open, self._open = self._open, False
        if client is None:
            return
        try:
            client.close()
        except (ModbusException, OSError) as exc:
            logger.warning("Error closing Modbus session for sensor %s: %s", self.sensor_id, exc)
        if was_open:
            logger.info("Modbus session closed for sensor %s", self.sensor_id)
