"""
Analytics Service
=================
Statistics, trends, 3-sigma anomalies, uptime/error rate and cross-sensor
comparison over a historical window of one device's readings.

All computations are on demand; readings come from the ``ReadingStore`` and
availability figures from the ``StateTrackingService``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import numpy as np

from sensorhub.domain.exceptions import ConfigurationError, InsufficientDataError
from sensorhub.domain.sensors import SensorReading
from sensorhub.enums import AlertSeverity, AlertType, ComparisonRecommendation, TrendDirection

if TYPE_CHECKING:
    from sensorhub.services.application.alert_service import AlertService
    from sensorhub.services.hardware.state_tracking_service import StateTrackingService
    from sensorhub.services.protocols import ReadingStore

logger = logging.getLogger(__name__)

STABLE_CHANGE_PERCENT = 5.0
ANOMALY_SIGMA = 3.0
ALIGNMENT_TOLERANCE = timedelta(minutes=5)
MIN_COMPARISON_PAIRS = 10


@dataclass(frozen=True)
class ParameterStatistics:
    count: int
    mean: float
    median: float
    min: float
    max: float
    std_dev: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "mean": round(self.mean, 4),
            "median": round(self.median, 4),
            "min": round(self.min, 4),
            "max": round(self.max, 4),
            "std_dev": round(self.std_dev, 4),
        }


@dataclass(frozen=True)
class Trend:
    direction: TrendDirection
    first_mean: float
    last_mean: float
    change_percent: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "first_mean": round(self.first_mean, 4),
            "last_mean": round(self.last_mean, 4),
            "change_percent": round(self.change_percent, 2) if self.change_percent is not None else None,
        }


@dataclass(frozen=True)
class Anomaly:
    parameter: str
    timestamp: datetime
    value: float
    expected_min: float
    expected_max: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameter": self.parameter,
            "timestamp": self.timestamp.isoformat(),
            "value": self.value,
            "expected_range": [round(self.expected_min, 4), round(self.expected_max, 4)],
        }


@dataclass(frozen=True)
class Availability:
    uptime: float
    error_rate: float
    downtime_seconds: float
    read_attempts: int
    read_failures: int
    # Share of the window the retained history still covers; below 1.0 the
    # figures above only describe the newest part of the window
    coverage: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime": round(self.uptime, 4),
            "error_rate": round(self.error_rate, 4),
            "downtime_seconds": round(self.downtime_seconds, 3),
            "read_attempts": self.read_attempts,
            "read_failures": self.read_failures,
            "coverage": round(self.coverage, 4),
        }


@dataclass
class SensorAnalytics:
    sensor_id: str
    start: datetime
    end: datetime
    reading_count: int
    statistics: Dict[str, ParameterStatistics] = field(default_factory=dict)
    trends: Dict[str, Trend] = field(default_factory=dict)
    anomalies: List[Anomaly] = field(default_factory=list)
    availability: Optional[Availability] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "reading_count": self.reading_count,
            "statistics": {p: s.to_dict() for p, s in self.statistics.items()},
            "trends": {p: t.to_dict() for p, t in self.trends.items()},
            "anomalies": [a.to_dict() for a in self.anomalies],
            "availability": self.availability.to_dict() if self.availability else None,
        }


@dataclass(frozen=True)
class SensorComparison:
    sensor_a: str
    sensor_b: str
    parameter: str
    pairs: int
    correlation: float
    bias: float
    rmse: float
    recommendation: ComparisonRecommendation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensor_a": self.sensor_a,
            "sensor_b": self.sensor_b,
            "parameter": self.parameter,
            "pairs": self.pairs,
            "correlation": round(self.correlation, 4),
            "bias": round(self.bias, 4),
            "rmse": round(self.rmse, 4),
            "recommendation": self.recommendation.value,
        }


# ----------------------------------------------------------------------
# Pure computations
# ----------------------------------------------------------------------


def _series(readings: Sequence[SensorReading]) -> Dict[str, List[tuple[datetime, float]]]:
    """Per-parameter (timestamp, value) lists in time order."""
    series: Dict[str, List[tuple[datetime, float]]] = {}
    for reading in sorted(readings, key=lambda r: r.timestamp):
        for parameter, value in reading.values.items():
            series.setdefault(parameter, []).append((reading.timestamp, float(value)))
    return series


def compute_statistics(values: Sequence[float]) -> Optional[ParameterStatistics]:
    if not values:
        return None
    data = np.asarray(values, dtype=float)
    return ParameterStatistics(
        count=len(data),
        mean=float(np.mean(data)),
        median=float(np.median(data)),
        min=float(np.min(data)),
        max=float(np.max(data)),
        std_dev=float(np.std(data)),
    )


def compute_trend(values: Sequence[float]) -> Optional[Trend]:
    """
    Compare the mean of the first and last quartile of a time-ordered series.

    Returns None for fewer than 4 values.
    """
    quartile = len(values) // 4
    if quartile == 0:
        return None
    first_mean = float(np.mean(values[:quartile]))
    last_mean = float(np.mean(values[-quartile:]))

    if first_mean == 0:
        change_percent = None
        if last_mean == 0:
            direction = TrendDirection.STABLE
        else:
            direction = TrendDirection.INCREASING if last_mean > 0 else TrendDirection.DECREASING
    else:
        change_percent = (last_mean - first_mean) / abs(first_mean) * 100.0
        if abs(change_percent) < STABLE_CHANGE_PERCENT:
            direction = TrendDirection.STABLE
        elif change_percent > 0:
            direction = TrendDirection.INCREASING
        else:
            direction = TrendDirection.DECREASING
    return Trend(direction, first_mean, last_mean, change_percent)


def detect_anomalies(parameter: str, points: Sequence[tuple[datetime, float]], sigma: float = ANOMALY_SIGMA) -> List[Anomaly]:
    """Points further than ``sigma`` population standard deviations from the mean."""
    if not points:
        return []
    data = np.asarray([v for _, v in points], dtype=float)
    mean = float(np.mean(data))
    std = float(np.std(data))
    if std == 0:
        return []
    low, high = mean - sigma * std, mean + sigma * std
    return [
        Anomaly(parameter, ts, value, low, high)
        for ts, value in points
        if abs(value - mean) > sigma * std
    ]


def align_series(
    a: Sequence[tuple[datetime, float]],
    b: Sequence[tuple[datetime, float]],
    tolerance: timedelta = ALIGNMENT_TOLERANCE,
) -> List[tuple[float, float]]:
    """
    Pair each point of ``a`` with the nearest point of ``b`` within
    ``tolerance``; ties go to the earlier point. A point of ``b`` may pair
    with several points of ``a`` when ``b`` samples more slowly. ``b`` must
    be time ordered.
    """
    b_times = [ts for ts, _ in b]
    pairs: List[tuple[float, float]] = []
    for ts, value in a:
        i = bisect.bisect_left(b_times, ts)
        candidates = [k for k in (i - 1, i) if 0 <= k < len(b)]
        if not candidates:
            continue
        nearest = min(candidates, key=lambda k: abs((b_times[k] - ts).total_seconds()))
        if abs(b_times[nearest] - ts) <= tolerance:
            pairs.append((value, b[nearest][1]))
    return pairs


def recommend(correlation: float, bias: float, rmse: float) -> ComparisonRecommendation:
    if abs(correlation) < 0.85 or abs(bias) > 5 * rmse:
        return ComparisonRecommendation.RECALIBRATE
    if abs(correlation) < 0.95 or abs(bias) > 2 * rmse:
        return ComparisonRecommendation.INVESTIGATE
    return ComparisonRecommendation.PASS


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------


class AnalyticsService:
    """On-demand analytics over stored readings."""

    def __init__(
        self,
        store: "ReadingStore",
        state_tracker: "StateTrackingService",
        alert_service: "AlertService | None" = None,
    ):
        self.store = store
        self.state_tracker = state_tracker
        self.alert_service = alert_service

    @staticmethod
    def _check_window(start: datetime, end: datetime) -> None:
        if end <= start:
            raise ConfigurationError("Analytics window end must be after start", detail={
                "start": start.isoformat(),
                "end": end.isoformat(),
            })

    def analyze(
        self,
        sensor_id: str,
        start: datetime,
        end: datetime,
        *,
        parameters: Optional[Sequence[str]] = None,
        raise_alerts: bool = False,
    ) -> SensorAnalytics:
        """
        Statistics, trends, anomalies and availability for one sensor.

        With ``raise_alerts`` each parameter that has anomalies produces an
        ``anomaly`` alert (de-duplicated like any other alert).
        """
        self._check_window(start, end)
        readings = self.store.query_range(sensor_id, start, end)
        series = _series(readings)
        if parameters:
            series = {p: pts for p, pts in series.items() if p in set(parameters)}

        result = SensorAnalytics(sensor_id=sensor_id, start=start, end=end, reading_count=len(readings))
        for parameter, points in series.items():
            values = [v for _, v in points]
            stats = compute_statistics(values)
            if stats is not None:
                result.statistics[parameter] = stats
            trend = compute_trend(values)
            if trend is not None:
                result.trends[parameter] = trend
            result.anomalies.extend(detect_anomalies(parameter, points))

        result.availability = self.availability(sensor_id, start, end)

        if result.anomalies:
            logger.info("Sensor %s: %d anomalous points in window", sensor_id, len(result.anomalies))
            if raise_alerts and self.alert_service is not None:
                self._raise_anomaly_alerts(sensor_id, result.anomalies)
        return result

    def availability(self, sensor_id: str, start: datetime, end: datetime) -> Availability:
        self._check_window(start, end)
        window = (end - start).total_seconds()
        downtime = self.state_tracker.downtime_seconds(sensor_id, start, end)
        counts = self.state_tracker.read_counts(sensor_id, start, end)
        coverage = 1.0
        truncated = self.state_tracker.truncated_through(sensor_id)
        if truncated is not None and truncated >= start:
            coverage = max(0.0, (end - truncated).total_seconds() / window)
            logger.warning(
                "Sensor %s: state history only covers %.0f%% of the requested window (complete after %s)",
                sensor_id,
                coverage * 100,
                truncated.isoformat(),
            )
        return Availability(
            uptime=max(0.0, (window - downtime) / window),
            error_rate=counts.error_rate,
            downtime_seconds=downtime,
            read_attempts=counts.attempts,
            read_failures=counts.failures,
            coverage=coverage,
        )

    def compare_sensors(
        self,
        sensor_a: str,
        sensor_b: str,
        parameter: str,
        start: datetime,
        end: datetime,
    ) -> SensorComparison:
        """
        Compare two sensors measuring the same parameter.

        Raises:
            InsufficientDataError: fewer than 10 time-aligned pairs
        """
        self._check_window(start, end)
        series_a = _series(self.store.query_range(sensor_a, start, end)).get(parameter, [])
        series_b = _series(self.store.query_range(sensor_b, start, end)).get(parameter, [])
        pairs = align_series(series_a, series_b)
        if len(pairs) < MIN_COMPARISON_PAIRS:
            raise InsufficientDataError(
                f"Need at least {MIN_COMPARISON_PAIRS} aligned readings, got {len(pairs)}",
                detail={"sensor_a": sensor_a, "sensor_b": sensor_b, "parameter": parameter, "pairs": len(pairs)},
            )

        a = np.asarray([p[0] for p in pairs], dtype=float)
        b = np.asarray([p[1] for p in pairs], dtype=float)
        if np.std(a) == 0 or np.std(b) == 0:
            correlation = 0.0
        else:
            correlation = float(np.corrcoef(a, b)[0, 1])
            if np.isnan(correlation):
                correlation = 0.0
        diff = a - b
        bias = float(np.mean(diff))
        rmse = float(np.sqrt(np.mean(diff**2)))

        comparison = SensorComparison(
            sensor_a=sensor_a,
            sensor_b=sensor_b,
            parameter=parameter,
            pairs=len(pairs),
            correlation=correlation,
            bias=bias,
            rmse=rmse,
            recommendation=recommend(correlation, bias, rmse),
        )
        logger.info(
            "Compared %s vs %s on %s: r=%.3f bias=%.3f rmse=%.3f -> %s",
            sensor_a,
            sensor_b,
            parameter,
            correlation,
            bias,
            rmse,
            comparison.recommendation.value,
        )
        return comparison

    def _raise_anomaly_alerts(self, sensor_id: str, anomalies: List[Anomaly]) -> None:
        by_parameter: Dict[str, List[Anomaly]] = {}
        for anomaly in anomalies:
            by_parameter.setdefault(anomaly.parameter, []).append(anomaly)
        for parameter, items in by_parameter.items():
            latest = max(items, key=lambda a: a.timestamp)
            self.alert_service.raise_alert(
                sensor_id,
                AlertType.ANOMALY,
                AlertSeverity.MEDIUM,
                title=f"Anomalous {parameter} readings",
                description=(
                    f"{len(items)} {parameter} readings outside "
                    f"[{latest.expected_min:.2f}, {latest.expected_max:.2f}]"
                ),
                metadata={"parameter": parameter, "count": len(items)},
            )
