"""
State tracking service for sensor connection history.

Features:
    - Status transition history per sensor
    - Read attempt outcomes (for error rate)
    - Downtime over an arbitrary window (for uptime)
    - How far back the bounded history is still complete
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional

from sensorhub.enums import SensorStatus
from sensorhub.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)

DOWN_STATUSES = frozenset({SensorStatus.DISCONNECTED, SensorStatus.ERROR})


@dataclass(frozen=True)
class StatusChange:
    at: datetime
    status: SensorStatus


@dataclass(frozen=True)
class ReadAttempt:
    at: datetime
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ReadCounts:
    attempts: int
    failures: int

    @property
    def error_rate(self) -> float:
        return self.failures / self.attempts if self.attempts else 0.0


class StateTrackingService:
    """
    Bounded per-sensor history of status changes and read attempts.

    Thread-safe: written from polling threads and MQTT callbacks, read by
    the analytics service.
    """

    def __init__(self, max_history_per_sensor: int = 10_000):
        self.max_history_per_sensor = max_history_per_sensor
        self._lock = threading.Lock()
        self._status: Dict[str, Deque[StatusChange]] = defaultdict(
            lambda: deque(maxlen=self.max_history_per_sensor)
        )
        self._reads: Dict[str, Deque[ReadAttempt]] = defaultdict(lambda: deque(maxlen=self.max_history_per_sensor))
        # Newest timestamp evicted from either history, per sensor
        self._truncated: Dict[str, datetime] = {}

    def record_status(self, sensor_id: str, status: SensorStatus, at: datetime | None = None) -> None:
        change = StatusChange(at=ensure_utc(at) if at else utc_now(), status=status)
        with self._lock:
            history = self._status[sensor_id]
            if history and history[-1].status == status:
                return
            self._append(sensor_id, history, change)

    def record_read(
        self, sensor_id: str, success: bool, error: str | None = None, at: datetime | None = None
    ) -> None:
        attempt = ReadAttempt(at=ensure_utc(at) if at else utc_now(), success=success, error=error)
        with self._lock:
            self._append(sensor_id, self._reads[sensor_id], attempt)

    def _append(self, sensor_id: str, history: Deque, entry: StatusChange | ReadAttempt) -> None:
        if len(history) == history.maxlen:
            evicted = history[0].at
            previous = self._truncated.get(sensor_id)
            if previous is None or evicted > previous:
                self._truncated[sensor_id] = evicted
        history.append(entry)

    def forget(self, sensor_id: str) -> None:
        with self._lock:
            self._status.pop(sensor_id, None)
            self._reads.pop(sensor_id, None)
            self._truncated.pop(sensor_id, None)

    def truncated_through(self, sensor_id: str) -> Optional[datetime]:
        """
        Latest instant whose history was evicted to respect
        ``max_history_per_sensor``, or None while nothing has been dropped.
        Figures for time at or before it are incomplete.
        """
        with self._lock:
            return self._truncated.get(sensor_id)

    def status_history(self, sensor_id: str) -> List[StatusChange]:
        with self._lock:
            return list(self._status.get(sensor_id, ()))

    def read_counts(self, sensor_id: str, start: datetime, end: datetime) -> ReadCounts:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            attempts = [a for a in self._reads.get(sensor_id, ()) if start <= a.at <= end]
        return ReadCounts(attempts=len(attempts), failures=sum(1 for a in attempts if not a.success))

    def downtime_seconds(self, sensor_id: str, start: datetime, end: datetime) -> float:
        """
        Seconds within [start, end] spent disconnected or in error.

        Time before the first recorded status counts as disconnected.
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            return 0.0

        current = SensorStatus.DISCONNECTED
        cursor = start
        downtime = 0.0
        for change in self.status_history(sensor_id):
            if change.at <= start:
                current = change.status
                continue
            if change.at >= end:
                break
            if current in DOWN_STATUSES:
                downtime += (change.at - cursor).total_seconds()
            cursor = change.at
            current = change.status
        if current in DOWN_STATUSES:
            downtime += (end - cursor).total_seconds()
        return downtime
