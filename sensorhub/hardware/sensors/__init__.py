from sensorhub.hardware.sensors.registry import DeviceRegistry

__all__ = ["DeviceRegistry"]
