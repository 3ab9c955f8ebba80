"""
HTTP Poll Sensor Adapter
========================
Polls a device or gateway HTTP endpoint and extracts one reading from its JSON body.
"""
import logging
from typing import Any

import requests

from sensorhub.domain.exceptions import ConfigurationError, ParseError, ReadError, ReadTimeoutError
from sensorhub.enums import Protocol

from .base_adapter import ISensorAdapter, extract_reading

logger = logging.getLogger(__name__)


class HTTPAdapter(ISensorAdapter):
    """
    connection_params:
        url: endpoint polled every tick
        method: GET (default) or POST
        body: JSON body for POST requests
        headers: extra request headers
        value_path: dotted JSON path; when absent ``value``, ``data.value``
            and the sensor's parameter name are tried in that order
    """

    protocol = Protocol.HTTP

    def __init__(
        self,
        sensor_id: str,
        params: dict[str, Any],
        *,
        timeout: float = 5.0,
        parameter: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(sensor_id, params, timeout=timeout)
        self.url = str(self.params["url"])
        self.method = str(self.params.get("method", "GET")).upper()
        if self.method not in ("GET", "POST"):
            raise ConfigurationError(
                f"Unsupported HTTP method: {self.method}",
                detail={"sensor_id": sensor_id, "method": self.method},
            )
        self.body = self.params.get("body")
        self.headers = dict(self.params.get("headers") or {})
        value_path = self.params.get("value_path")
        if value_path:
            self.value_paths: tuple[str, ...] = (str(value_path),)
        else:
            self.value_paths = ("value", "data.value") + ((parameter,) if parameter else ())
        self._session = session

    def open(self) -> None:
        if self._open:
            return
        if self._session is None:
            self._session = requests.Session()
        self._session.headers.update(self.headers)
        self._open = True
        logger.info("HTTP polling ready for sensor %s: %s %s", self.sensor_id, self.method, self.url)

    def read_once(self) -> float:
        if not self._open or self._session is None:
            raise ReadError("HTTP adapter is not open", detail={"sensor_id": self.sensor_id})

        try:
            response = self._session.request(
                self.method,
                self.url,
                json=self.body if self.method == "POST" else None,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise ReadTimeoutError(f"HTTP poll timed out: {self.url}", detail={"sensor_id": self.sensor_id}) from exc
        except requests.RequestException as exc:
            raise ReadError(f"HTTP poll failed: {exc}", detail={"sensor_id": self.sensor_id}) from exc

        if not 200 <= response.status_code < 300:
            raise ReadError(
                f"HTTP {response.status_code} from {self.url}",
                detail={"sensor_id": self.sensor_id, "status_code": response.status_code},
            )
        try:
            document = response.json()
        except ValueError:
            raise ParseError(f"Response from {self.url} is not JSON", detail={"sensor_id": self.sensor_id}) from None
        return extract_reading(document, self.value_paths)

    def close(self) -> None:
        session, self._session = self._session, None
        self._open = False
        if session is not None:
            session.close()
