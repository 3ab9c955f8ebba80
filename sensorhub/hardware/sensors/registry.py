"""
Device Registry

Thread-safe ownership of registered SensorDevice and SensorGroup objects.

Locking:
- one registry lock guards the id -> device and id -> group maps and is held
  only for dictionary operations
- every device has its own re-entrant lock; callers mutate a device only
  inside ``locked(sensor_id)`` so work on different devices never contends
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sensorhub.domain.exceptions import ConfigurationError, ConflictError, NotFoundError
from sensorhub.domain.sensors import SensorDevice, SensorGroup

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Registry of devices and the groups that reference them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._devices: dict[str, SensorDevice] = {}
        self._device_locks: dict[str, threading.RLock] = {}
        self._groups: dict[str, SensorGroup] = {}

    # ------------------------------------------------------------------ devices

    def add(self, device: SensorDevice) -> None:
        with self._lock:
            if device.id in self._devices:
                raise ConflictError(f"Sensor {device.id} is already registered", detail={"sensor_id": device.id})
            self._devices[device.id] = device
            self._device_locks[device.id] = threading.RLock()
        logger.info("Registered sensor %s (%s over %s)", device.id, device.kind.value, device.protocol.value)

    def remove(self, sensor_id: str) -> SensorDevice:
        """
        Remove a device.

        Raises:
            NotFoundError: unknown id
            ConflictError: the device is still a member of a group
        """
        with self._lock:
            if sensor_id not in self._devices:
                raise NotFoundError(f"Sensor {sensor_id} not found", detail={"sensor_id": sensor_id})
            referencing = sorted(g.id for g in self._groups.values() if sensor_id in g.member_sensor_ids)
            if referencing:
                raise ConflictError(
                    f"Sensor {sensor_id} is still a member of groups {referencing}",
                    detail={"sensor_id": sensor_id, "groups": referencing},
                )
            device = self._devices.pop(sensor_id)
            self._device_locks.pop(sensor_id, None)
        logger.info("Deregistered sensor %s", sensor_id)
        return device

    def get(self, sensor_id: str) -> SensorDevice:
        with self._lock:
            device = self._devices.get(sensor_id)
        if device is None:
            raise NotFoundError(f"Sensor {sensor_id} not found", detail={"sensor_id": sensor_id})
        return device

    def find(self, sensor_id: str) -> SensorDevice | None:
        with self._lock:
            return self._devices.get(sensor_id)

    def contains(self, sensor_id: str) -> bool:
        with self._lock:
            return sensor_id in self._devices

    def list_devices(self) -> list[SensorDevice]:
        with self._lock:
            return list(self._devices.values())

    @contextmanager
    def locked(self, sensor_id: str) -> Iterator[SensorDevice]:
        """Yield a device while holding its own lock."""
        with self._lock:
            device = self._devices.get(sensor_id)
            device_lock = self._device_locks.get(sensor_id)
        if device is None or device_lock is None:
            raise NotFoundError(f"Sensor {sensor_id} not found", detail={"sensor_id": sensor_id})
        with device_lock:
            yield device

    # ------------------------------------------------------------------- groups

    def save_group(self, group: SensorGroup) -> SensorGroup:
        """Create or replace a group after checking every member is registered."""
        if not group.member_sensor_ids:
            raise ConfigurationError("A group needs at least one member", detail={"group_id": group.id})
        with self._lock:
            missing = [sid for sid in group.member_sensor_ids if sid not in self._devices]
            if missing:
                raise ConfigurationError(
                    f"Unknown group members: {missing}",
                    detail={"group_id": group.id, "missing": missing},
                )
            self._groups[group.id] = group
        return group

    def get_group(self, group_id: str) -> SensorGroup:
        with self._lock:
            group = self._groups.get(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found", detail={"group_id": group_id})
        return group

    def remove_group(self, group_id: str) -> SensorGroup:
        with self._lock:
            group = self._groups.pop(group_id, None)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found", detail={"group_id": group_id})
        return group

    def list_groups(self) -> list[SensorGroup]:
        with self._lock:
            return list(self._groups.values())

    def groups_containing(self, sensor_id: str) -> list[SensorGroup]:
        with self._lock:
            return [g for g in self._groups.values() if sensor_id in g.member_sensor_ids]
