"""
Serial Sensor Adapter
=====================
Adapter for UART sensors that stream newline-delimited ASCII numbers.
"""
import logging
from typing import Any, Callable

import serial

from sensorhub.domain.exceptions import ParseError, ReadError, ReadTimeoutError, SensorConnectionError
from sensorhub.enums import Protocol

from .base_adapter import ISensorAdapter, coerce_number

logger = logging.getLogger(__name__)

# Blank lines (bare CR/LF between frames) tolerated before a read gives up
_MAX_BLANK_LINES = 3


class SerialAdapter(ISensorAdapter):
    """
    connection_params:
        port: device path (``/dev/ttyUSB0``, ``COM3``)
        baud_rate: line speed
        encoding: defaults to ascii
    """

    protocol = Protocol.SERIAL

    def __init__(
        self,
        sensor_id: str,
        params: dict[str, Any],
        *,
        timeout: float = 5.0,
        serial_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(sensor_id, params, timeout=timeout)
        self.port = str(self.params["port"])
        self.baud_rate = int(self.params["baud_rate"])
        self.encoding = str(self.params.get("encoding", "ascii"))
        self._serial_factory = serial_factory or serial.Serial
        self._port = None
        self._pending = b""

    def open(self) -> None:
        if self._open:
            return
        try:
            self._port = self._serial_factory(port=self.port, baudrate=self.baud_rate, timeout=self.timeout)
        except (serial.SerialException, OSError, ValueError) as exc:
            raise SensorConnectionError(
                f"Cannot open serial port {self.port}: {exc}",
                detail={"sensor_id": self.sensor_id, "port": self.port},
            ) from exc
        self._open = True
        logger.info("Serial port %s open at %d baud for sensor %s", self.port, self.baud_rate, self.sensor_id)

    def read_once(self) -> float:
        """
        Return the newest complete reading on the line.

        Sensors usually stream faster than they are polled, so lines already
        buffered by the driver are drained and only the last complete one is
        used. With nothing buffered, block on ``readline()`` up to the timeout.
        """
        if not self._open or self._port is None:
            raise ReadError("Serial port is not open", detail={"sensor_id": self.sensor_id})

        latest = self._drain_backlog()
        if latest is not None:
            return latest

        for _ in range(_MAX_BLANK_LINES + 1):
            line = self._pending + self._call(self._port.readline)
            self._pending = b""
            if not line:
                # readline() returns b"" when the port timeout elapses
                raise ReadTimeoutError(
                    f"No data on {self.port} within {self.timeout}s",
                    detail={"sensor_id": self.sensor_id},
                )
            if not line.endswith(b"\n"):
                self._pending = line
                raise ReadTimeoutError(
                    f"Partial line on {self.port} within {self.timeout}s",
                    detail={"sensor_id": self.sensor_id},
                )
            value = self._parse(line)
            if value is not None:
                return value
        raise ReadError(f"Only blank lines on {self.port}", detail={"sensor_id": self.sensor_id})

    def _drain_backlog(self) -> float | None:
        waiting = self._call(lambda: getattr(self._port, "in_waiting", 0))
        if not waiting:
            return None
        data = self._pending + self._call(lambda: self._port.read(waiting))
        # The trailing fragment is the start of a line still arriving
        *complete, self._pending = data.split(b"\n")
        for line in reversed(complete):
            value = self._parse(line)
            if value is not None:
                if len(complete) > 1:
                    logger.debug("Sensor %s: dropped %d stale line(s)", self.sensor_id, len(complete) - 1)
                return value
        return None

    def _call(self, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except (serial.SerialException, OSError) as exc:
            raise ReadError(f"Serial read failed: {exc}", detail={"sensor_id": self.sensor_id}) from exc

    def _parse(self, line: bytes) -> float | None:
        """Numeric value of one line; None for a blank line."""
        try:
            text = line.decode(self.encoding).strip()
        except UnicodeDecodeError:
            raise ParseError(f"Undecodable line on {self.port}", detail={"sensor_id": self.sensor_id}) from None
        return coerce_number(text) if text else None

    def close(self) -> None:
        port, self._port = self._port, None
        self._pending = b""
        self._open = False
        if port is None:
            return
        try:
            port.close()
        except (serial.SerialException, OSError) as exc:
            logger.warning("Error closing serial port %s: %s", self.port, exc)
        else:
            logger.info("Serial port %s closed for sensor %s", self.port, self.sensor_id)
