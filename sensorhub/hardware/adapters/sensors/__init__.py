from sensorhub.hardware.adapters.sensors.base_adapter import ISensorAdapter
from sensorhub.hardware.adapters.sensors.factory import AdapterFactory
from sensorhub.hardware.adapters.sensors.http_adapter import HTTPAdapter
from sensorhub.hardware.adapters.sensors.modbus_adapter import ModbusAdapter
from sensorhub.hardware.adapters.sensors.mqtt_adapter import MQTTAdapter
from sensorhub.hardware.adapters.sensors.serial_adapter import SerialAdapter

__all__ = [
    "AdapterFactory",
    "HTTPAdapter",
    "ISensorAdapter",
    "MQTTAdapter",
    "ModbusAdapter",
    "SerialAdapter",
]
