"""
Base Sensor Adapter Interface
==============================
Abstract interface that all transport adapters must implement.

Adapters own exactly one physical connection. They deliver raw numbers only:
calibration, units and quality belong to the services above them.
"""

from __future__ import annotations

import json
import logging
import math
from abc import ABC, abstractmethod
from numbers import Number
from typing import Any, Callable, Iterable

from sensorhub.domain.exceptions import ConfigurationError, ParseError
from sensorhub.enums import Protocol

logger = logging.getLogger(__name__)

RawCallback = Callable[[float], None]
ErrorCallback = Callable[[Exception], None]


class ISensorAdapter(ABC):
    """
    Abstract interface for sensor transport adapters.
    Each protocol (Modbus, MQTT, Serial, HTTP) implements this interface.

    Required Methods (must override):
        - open(): Establish the transport
        - close(): Tear it down (idempotent, safe at any time)

    Protocol-dependent methods:
        - read_once(): Pull one raw value (Modbus, Serial, HTTP)
        - subscribe(): Register a push callback (MQTT)
    """

    protocol: Protocol

    def __init__(self, sensor_id: str, params: dict[str, Any], *, timeout: float = 5.0) -> None:
        self.sensor_id = sensor_id
        self.params = dict(params)
        self.timeout = float(params.get("timeout", timeout))
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @abstractmethod
    def open(self) -> None:
        """
        Establish the physical connection.

        Raises:
            SensorConnectionError: If the transport cannot be opened
        """

    @abstractmethod
    def close(self) -> None:
        """Release the transport. Calling it twice, or before open(), is a no-op."""

    def read_once(self) -> float:
        """
        Read a single raw value.

        Raises:
            ReadError: The device did not produce a value
            ReadTimeoutError: The protocol timeout elapsed
            ParseError: The device answered with something that is not a number
        """
        raise ConfigurationError(
            f"{self.get_protocol_name()} adapter is push-based and cannot be polled",
            detail={"sensor_id": self.sensor_id},
        )

    def subscribe(self, callback: RawCallback, on_error: ErrorCallback | None = None) -> None:
        """
        Register a callback invoked with every raw value pushed by the device.

        ``on_error`` receives payloads that could not be parsed; they are never
        passed to ``callback``.
        """
        raise ConfigurationError(
            f"{self.get_protocol_name()} adapter is pull-based and has no subscription",
            detail={"sensor_id": self.sensor_id},
        )

    def get_protocol_name(self) -> str:
        return self.protocol.value

    def __repr__(self) -> str:
        return f"<{type(self).__name__} sensor={self.sensor_id} open={self._open}>"


def coerce_number(value: Any) -> float:
    """Return ``value`` as a float or raise ParseError."""
    if isinstance(value, bool):
        raise ParseError(f"Boolean is not a numeric reading: {value!r}")
    if isinstance(value, Number):
        number = float(value)
    elif isinstance(value, (str, bytes)):
        try:
            text = value.decode("ascii") if isinstance(value, bytes) else value
            number = float(text.strip())
        except (UnicodeDecodeError, ValueError):
            raise ParseError(f"Not a numeric literal: {value[:40]!r}") from None
    else:
        raise ParseError(f"Unsupported reading type: {type(value).__name__}")
    if not math.isfinite(number):
        raise ParseError(f"Reading is not finite: {number}")
    return number


def extract_path(document: Any, path: str) -> Any:
    """Walk a dotted path (``data.value``) through nested dicts."""
    current = document
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            raise KeyError(path)
        current = current[part]
    return current


def extract_reading(document: Any, paths: Iterable[str]) -> float:
    """
    Pull the first numeric value found at any of ``paths``.

    A bare number is accepted as-is.
    """
    paths = tuple(paths)
    if not isinstance(document, dict):
        return coerce_number(document)
    for path in paths:
        try:
            return coerce_number(extract_path(document, path))
        except KeyError:
            continue
    raise ParseError(f"No reading found at {list(paths)}", detail={"keys": sorted(document)[:10]})


def parse_payload(payload: bytes | str, paths: Iterable[str] = ("value",)) -> float:
    """Parse a numeric literal or a JSON document containing a reading."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    except UnicodeDecodeError:
        raise ParseError("Payload is not valid UTF-8") from None
    text = text.strip()
    if not text:
        raise ParseError("Empty payload")
    try:
        return coerce_number(text)
    except ParseError:
        pass
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        raise ParseError(f"Payload is neither a number nor JSON: {text[:40]!r}") from None
    return extract_reading(document, paths)
