"""
Aggregation Service
===================
Site/zone-level readings reduced from the latest reading of each member of a
sensor group.

Members without a reading inside the freshness window (or whose latest
reading is ``bad``) are excluded from the reduction; they are never counted
as zero or as their last known value.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import numpy as np

from sensorhub.domain.exceptions import ConfigurationError, NotFoundError
from sensorhub.domain.sensors import GroupReading, SensorGroup, SensorReading
from sensorhub.enums import AggregationMethod, ReadingQuality, SensorEvent
from sensorhub.services.application.threshold_service import ThresholdRange, evaluate_ranges
from sensorhub.utils.time import utc_now

if TYPE_CHECKING:
    from sensorhub.hardware.sensors.registry import DeviceRegistry
    from sensorhub.services.protocols import ReadingStore
    from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)


def reduce_values(
    method: AggregationMethod,
    values: List[float],
    weights: Optional[List[float]] = None,
) -> Optional[float]:
    """
    Reduce one parameter's values.

    Returns None when there is nothing to reduce (or, for ``weighted``, when
    every weight is zero).
    """
    if not values:
        return None
    data = np.asarray(values, dtype=float)
    if method == AggregationMethod.AVERAGE:
        return float(np.sum(data) / len(data))
    if method == AggregationMethod.MEDIAN:
        return float(np.median(data))
    if method == AggregationMethod.MIN:
        return float(np.min(data))
    if method == AggregationMethod.MAX:
        return float(np.max(data))
    if method == AggregationMethod.WEIGHTED:
        w = np.asarray(weights if weights is not None else [1.0] * len(values), dtype=float)
        total = float(np.sum(w))
        if total == 0:
            return None
        return float(np.sum(data * w) / total)
    raise ConfigurationError(f"Unsupported aggregation method: {method}")


class AggregationService:
    """Group management and aggregated group readings."""

    def __init__(
        self,
        registry: "DeviceRegistry",
        store: "ReadingStore",
        event_bus: "EventBus | None" = None,
        *,
        default_freshness_seconds: float = 300.0,
    ):
        self.registry = registry
        self.store = store
        self.event_bus = event_bus
        self.default_freshness_seconds = default_freshness_seconds

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def save_group(
        self,
        group_id: str,
        member_sensor_ids: List[str],
        *,
        aggregation_method: AggregationMethod | str = AggregationMethod.AVERAGE,
        weights: Optional[Mapping[str, float]] = None,
        name: str | None = None,
        description: str | None = None,
        freshness_seconds: float | None = None,
        thresholds: Optional[Mapping[str, Mapping[str, float]]] = None,
    ) -> SensorGroup:
        """Create a group, or replace the definition of an existing one."""
        weights = {str(k): float(v) for k, v in (weights or {}).items()}
        if any(w < 0 for w in weights.values()):
            raise ConfigurationError("Group weights must not be negative", detail={"group_id": group_id})
        unknown_weights = sorted(set(weights) - set(member_sensor_ids))
        if unknown_weights:
            raise ConfigurationError(
                f"Weights given for non-members: {unknown_weights}",
                detail={"group_id": group_id},
            )
        if freshness_seconds is not None and freshness_seconds <= 0:
            raise ConfigurationError("freshness_seconds must be positive", detail={"group_id": group_id})
        # Validate the bounds now so a bad group never gets stored
        for bounds in (thresholds or {}).values():
            ThresholdRange.from_dict(bounds)
        try:
            method = AggregationMethod(aggregation_method)
        except ValueError:
            raise ConfigurationError(f"Unknown aggregation method: {aggregation_method}") from None

        now = utc_now()
        try:
            existing = self.registry.get_group(group_id)
            created_at = existing.created_at
        except NotFoundError:
            created_at = now

        group = SensorGroup(
            id=group_id,
            member_sensor_ids=list(dict.fromkeys(member_sensor_ids)),
            aggregation_method=method,
            weights=weights,
            name=name,
            description=description,
            freshness_seconds=freshness_seconds,
            thresholds={p: dict(b) for p, b in (thresholds or {}).items()},
            created_at=created_at,
            updated_at=now,
        )
        self.registry.save_group(group)
        logger.info("Saved group %s (%d members, %s)", group_id, len(group.member_sensor_ids), method.value)
        if self.event_bus is not None:
            self.event_bus.publish(SensorEvent.GROUP_UPDATED, group)
        return group

    def update_group(self, group_id: str, **changes: Any) -> SensorGroup:
        """Apply a partial update to an existing group."""
        current = self.registry.get_group(group_id)
        merged = {
            "member_sensor_ids": current.member_sensor_ids,
            "aggregation_method": current.aggregation_method,
            "weights": current.weights,
            "name": current.name,
            "description": current.description,
            "freshness_seconds": current.freshness_seconds,
            "thresholds": current.thresholds,
        }
        merged.update({k: v for k, v in changes.items() if k in merged and v is not None})
        return self.save_group(group_id, **merged)

    def delete_group(self, group_id: str) -> SensorGroup:
        group = self.registry.remove_group(group_id)
        logger.info("Deleted group %s", group_id)
        return group

    def get_group(self, group_id: str) -> SensorGroup:
        return self.registry.get_group(group_id)

    def list_groups(self) -> List[SensorGroup]:
        return self.registry.list_groups()

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _latest_fresh_reading(self, sensor_id: str, since: datetime, now: datetime) -> Optional[SensorReading]:
        readings = self.store.query_range(sensor_id, since, now)
        for reading in reversed(readings):
            if reading.quality != ReadingQuality.BAD:
                return reading
        return None

    def aggregate(self, group_id: str, now: datetime | None = None) -> GroupReading:
        """Reduce the group's fresh member readings parameter by parameter."""
        group = self.registry.get_group(group_id)
        now = now or utc_now()
        freshness = group.freshness_seconds or self.default_freshness_seconds
        since = now - timedelta(seconds=freshness)

        contributing: List[str] = []
        excluded: List[str] = []
        samples: Dict[str, List[tuple[float, float]]] = {}
        for sensor_id in group.member_sensor_ids:
            reading = self._latest_fresh_reading(sensor_id, since, now)
            if reading is None:
                excluded.append(sensor_id)
                continue
            contributing.append(sensor_id)
            weight = group.weight_for(sensor_id)
            for parameter, value in reading.values.items():
                samples.setdefault(parameter, []).append((float(value), weight))

        values: Dict[str, float] = {}
        for parameter, pairs in samples.items():
            reduced = reduce_values(
                group.aggregation_method,
                [v for v, _ in pairs],
                [w for _, w in pairs],
            )
            if reduced is not None:
                values[parameter] = reduced

        ranges = {p: ThresholdRange.from_dict(b) for p, b in group.thresholds.items()}
        violations = evaluate_ranges(values, ranges)
        if excluded:
            logger.debug("Group %s: no fresh reading from %s", group_id, ", ".join(excluded))

        return GroupReading(
            group_id=group_id,
            timestamp=now,
            method=group.aggregation_method,
            values=values,
            contributing_sensor_ids=tuple(contributing),
            excluded_sensor_ids=tuple(excluded),
            violations=tuple(violations),
        )
