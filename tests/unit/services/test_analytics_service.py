"""Tests for AnalyticsService and its pure helpers."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from sensorhub.domain.exceptions import ConfigurationError, InsufficientDataError
from sensorhub.domain.sensors import SensorReading
from sensorhub.enums import AlertType, ComparisonRecommendation, SensorStatus, TrendDirection
from sensorhub.services.application.analytics_service import (
    AnalyticsService,
    align_series,
    compute_statistics,
    compute_trend,
    detect_anomalies,
    recommend,
)
from sensorhub.services.hardware.state_tracking_service import StateTrackingService

T0 = datetime(2025, 6, 1, 0, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def _store_series(store, sensor_id, values, *, parameter="temperature", step=timedelta(minutes=1), offset=timedelta(0)):
    for i, value in enumerate(values):
        store.save_reading(
            SensorReading(sensor_id=sensor_id, timestamp=T0 + offset + i * step, values={parameter: value})
        )


class TestPureHelpers:
    def test_statistics(self):
        stats = compute_statistics([1.0, 2.0, 3.0, 4.0])

        assert stats.count == 4
        assert stats.mean == pytest.approx(2.5)
        assert stats.median == pytest.approx(2.5)
        assert (stats.min, stats.max) == (1.0, 4.0)
        # population standard deviation
        assert stats.std_dev == pytest.approx(1.118034, rel=1e-6)

    def test_statistics_of_nothing(self):
        assert compute_statistics([]) is None

    def test_increasing_trend(self):
        trend = compute_trend([10, 10, 11, 11, 12, 12, 13, 13])

        assert trend.direction == TrendDirection.INCREASING
        assert trend.first_mean == 10
        assert trend.last_mean == 13
        assert trend.change_percent == pytest.approx(30.0)

    def test_decreasing_trend(self):
        assert compute_trend([20, 18, 15, 10]).direction == TrendDirection.DECREASING

    def test_small_change_is_stable(self):
        trend = compute_trend([10.0, 10.1, 10.0, 10.2])
        assert trend.direction == TrendDirection.STABLE
        assert trend.change_percent == pytest.approx(2.0)

    def test_trend_from_zero_has_no_percentage(self):
        trend = compute_trend([0.0, 0.0, 1.0, 1.0])
        assert trend.direction == TrendDirection.INCREASING
        assert trend.change_percent is None

    def test_too_short_for_a_trend(self):
        assert compute_trend([1.0, 2.0, 3.0]) is None

    def test_three_sigma_outlier(self):
        points = [(T0 + i * timedelta(minutes=1), 20.0) for i in range(20)]
        points.append((T0 + timedelta(minutes=20), 40.0))

        anomalies = detect_anomalies("temperature", points)

        assert len(anomalies) == 1
        assert anomalies[0].value == 40.0
        assert anomalies[0].expected_max < 40.0

    def test_five_sigma_spike_in_noisy_series(self):
        rng = np.random.default_rng(7)
        noise = rng.normal(2.0, 0.1, size=40)
        spike = float(noise.mean() + 5 * noise.std())
        points = [(T0 + i * timedelta(minutes=1), float(v)) for i, v in enumerate(noise)]
        points.append((T0 + timedelta(minutes=40), spike))

        anomalies = detect_anomalies("ec", points)

        flagged = {a.timestamp for a in anomalies}
        assert T0 + timedelta(minutes=40) in flagged
        values = np.asarray([v for _, v in points])
        mean, std = values.mean(), values.std()
        for ts, value in points:
            if abs(value - mean) <= 2 * std:
                assert ts not in flagged

    def test_spike_is_reported_by_analyze(self, analytics_service, store):
        rng = np.random.default_rng(7)
        noise = [float(v) for v in rng.normal(2.0, 0.1, size=40)]
        spike = float(np.mean(noise) + 5 * np.std(noise))
        _store_series(store, "ec-1", noise + [spike], parameter="ec")

        result = analytics_service.analyze("ec-1", T0, T0 + HOUR)

        assert spike in [a.value for a in result.anomalies]
        assert all(a.parameter == "ec" for a in result.anomalies)

    def test_constant_series_has_no_anomalies(self):
        points = [(T0 + i * timedelta(minutes=1), 5.0) for i in range(30)]
        assert detect_anomalies("ec", points) == []

    def test_alignment_picks_nearest_within_tolerance(self):
        a = [(T0, 1.0), (T0 + timedelta(minutes=10), 2.0), (T0 + timedelta(minutes=20), 3.0)]
        b = [
            (T0 - timedelta(minutes=4), 10.0),
            (T0 + timedelta(minutes=1), 11.0),
            (T0 + timedelta(minutes=12), 12.0),
            (T0 + timedelta(minutes=40), 13.0),
        ]

        assert align_series(a, b) == [(1.0, 11.0), (2.0, 12.0)]

    def test_alignment_reuses_a_slower_reference(self):
        a = [(T0 + i * timedelta(minutes=1), float(i)) for i in range(12)]
        b = [(T0 + i * timedelta(minutes=4), 100.0 + i) for i in range(3)]

        pairs = align_series(a, b)

        assert len(pairs) == 12
        assert pairs[1] == (1.0, 100.0)
        # 2 minutes from both neighbours: the earlier one wins
        assert pairs[2] == (2.0, 100.0)
        assert pairs[3] == (3.0, 101.0)
        assert pairs[11] == (11.0, 102.0)

    @pytest.mark.parametrize(
        "correlation, bias, rmse, expected",
        [
            (0.99, 0.01, 0.1, ComparisonRecommendation.PASS),
            (0.90, 0.01, 0.1, ComparisonRecommendation.INVESTIGATE),
            (0.99, 0.3, 0.1, ComparisonRecommendation.INVESTIGATE),
            (0.60, 0.01, 0.1, ComparisonRecommendation.RECALIBRATE),
            (-0.99, 0.01, 0.1, ComparisonRecommendation.PASS),
        ],
    )
    def test_recommendation(self, correlation, bias, rmse, expected):
        assert recommend(correlation, bias, rmse) == expected


class TestAnalyze:
    def test_window_must_be_ordered(self, analytics_service):
        with pytest.raises(ConfigurationError):
            analytics_service.analyze("t-1", T0, T0)

    def test_summary(self, analytics_service, store):
        _store_series(store, "t-1", [20.0, 20.5, 21.0, 21.5, 22.0, 22.5, 23.0, 23.5])

        result = analytics_service.analyze("t-1", T0, T0 + HOUR)

        assert result.reading_count == 8
        assert result.statistics["temperature"].mean == pytest.approx(21.75)
        assert result.trends["temperature"].direction == TrendDirection.INCREASING
        assert result.anomalies == []
        data = result.to_dict()
        assert data["statistics"]["temperature"]["count"] == 8
        assert data["availability"]["uptime"] == 0.0

    def test_parameter_filter(self, analytics_service, store):
        _store_series(store, "t-1", [20.0, 21.0], parameter="temperature")
        _store_series(store, "t-1", [55.0, 56.0], parameter="humidity", offset=timedelta(seconds=30))

        result = analytics_service.analyze("t-1", T0, T0 + HOUR, parameters=["humidity"])

        assert set(result.statistics) == {"humidity"}

    def test_readings_outside_window_are_ignored(self, analytics_service, store):
        _store_series(store, "t-1", [20.0] * 5 + [99.0], step=timedelta(minutes=20))

        result = analytics_service.analyze("t-1", T0, T0 + HOUR)

        assert result.reading_count == 4
        assert result.statistics["temperature"].max == 20.0

    def test_anomaly_alerts_are_optional_and_deduplicated(self, analytics_service, store, alert_service):
        _store_series(store, "t-1", [20.0] * 20 + [40.0])

        analytics_service.analyze("t-1", T0, T0 + HOUR)
        assert alert_service.active_alerts("t-1") == []

        first = analytics_service.analyze("t-1", T0, T0 + HOUR, raise_alerts=True)
        analytics_service.analyze("t-1", T0, T0 + HOUR, raise_alerts=True)

        assert len(first.anomalies) == 1
        alerts = alert_service.active_alerts("t-1", AlertType.ANOMALY)
        assert len(alerts) == 1
        assert alerts[0].metadata["occurrences"] == 2
        assert alerts[0].metadata["parameter"] == "temperature"


class TestAvailability:
    def test_uptime_and_error_rate(self, analytics_service, state_tracker):
        state_tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0)
        state_tracker.record_status("t-1", SensorStatus.ERROR, at=T0 + timedelta(minutes=30))
        state_tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0 + timedelta(minutes=45))
        for minute, ok in ((1, True), (2, True), (3, False), (4, True)):
            state_tracker.record_read("t-1", ok, at=T0 + timedelta(minutes=minute))

        availability = analytics_service.availability("t-1", T0, T0 + HOUR)

        assert availability.uptime == pytest.approx(0.75)
        assert availability.downtime_seconds == pytest.approx(900.0)
        assert availability.error_rate == pytest.approx(0.25)
        assert (availability.read_attempts, availability.read_failures) == (4, 1)

    def test_full_history_covers_the_window(self, analytics_service, state_tracker):
        state_tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0)

        availability = analytics_service.availability("t-1", T0, T0 + HOUR)

        assert availability.coverage == 1.0
        assert availability.to_dict()["coverage"] == 1.0

    def test_truncated_history_reports_partial_coverage(self, store):
        tracker = StateTrackingService(max_history_per_sensor=5)
        service = AnalyticsService(store, tracker)
        tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0)
        for i in range(10):
            tracker.record_read("t-1", True, at=T0 + i * timedelta(minutes=10))

        availability = service.availability("t-1", T0, T0 + 2 * HOUR)

        # Reads up to 40 minutes in were evicted
        assert availability.read_attempts == 5
        assert availability.coverage == pytest.approx(80 / 120)

    def test_truncation_before_the_window_is_full_coverage(self, store):
        tracker = StateTrackingService(max_history_per_sensor=2)
        service = AnalyticsService(store, tracker)
        for i in range(4):
            tracker.record_read("t-1", True, at=T0 + i * timedelta(minutes=1))

        assert service.availability("t-1", T0 + HOUR, T0 + 2 * HOUR).coverage == 1.0

    def test_time_before_first_status_counts_as_down(self, analytics_service, state_tracker):
        state_tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0 + timedelta(minutes=30))

        availability = analytics_service.availability("t-1", T0, T0 + HOUR)

        assert availability.uptime == pytest.approx(0.5)
        assert availability.error_rate == 0.0

    def test_status_before_window_carries_in(self, analytics_service, state_tracker):
        state_tracker.record_status("t-1", SensorStatus.CONNECTED, at=T0 - HOUR)

        assert analytics_service.availability("t-1", T0, T0 + HOUR).uptime == pytest.approx(1.0)


class TestCompareSensors:
    def test_agreeing_sensors_pass(self, analytics_service, store):
        reference = [20.0 + 0.5 * i for i in range(12)]
        _store_series(store, "t-1", reference)
        _store_series(
            store,
            "t-2",
            [v + (0.05 if i % 2 else -0.05) for i, v in enumerate(reference)],
            offset=timedelta(seconds=20),
        )

        result = analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)

        assert result.pairs == 12
        assert result.correlation == pytest.approx(1.0, abs=0.01)
        assert result.bias == pytest.approx(0.0, abs=1e-9)
        assert result.rmse == pytest.approx(0.05)
        assert result.recommendation == ComparisonRecommendation.PASS

    def test_uncorrelated_sensors_need_recalibration(self, analytics_service, store):
        _store_series(store, "t-1", [20.0 + 0.5 * i for i in range(12)])
        _store_series(store, "t-2", [25.0 if i % 2 else 20.0 for i in range(12)])

        result = analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)

        assert abs(result.correlation) < 0.85
        assert result.recommendation == ComparisonRecommendation.RECALIBRATE

    def test_constant_sensor_has_zero_correlation(self, analytics_service, store):
        _store_series(store, "t-1", [20.0 + 0.5 * i for i in range(12)])
        _store_series(store, "t-2", [21.0] * 12)

        result = analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)

        assert result.correlation == 0.0
        assert result.recommendation == ComparisonRecommendation.RECALIBRATE

    def test_slower_sensor_still_yields_enough_pairs(self, analytics_service, store):
        _store_series(store, "t-1", [20.0 + 0.1 * i for i in range(12)])
        _store_series(store, "t-2", [20.0, 20.4, 20.8], step=timedelta(minutes=4))

        result = analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)

        assert result.pairs == 12

    def test_too_few_pairs(self, analytics_service, store):
        _store_series(store, "t-1", [20.0] * 9)
        _store_series(store, "t-2", [20.0] * 9)

        with pytest.raises(InsufficientDataError) as exc_info:
            analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)

        assert exc_info.value.detail["pairs"] == 9

    def test_sensors_too_far_apart_in_time_do_not_pair(self, analytics_service, store):
        _store_series(store, "t-1", [20.0] * 12, step=timedelta(minutes=1))
        _store_series(store, "t-2", [20.0] * 12, offset=timedelta(minutes=30))

        with pytest.raises(InsufficientDataError):
            analytics_service.compare_sensors("t-1", "t-2", "temperature", T0, T0 + HOUR)
