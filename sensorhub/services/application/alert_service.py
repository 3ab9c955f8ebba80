"""Alert service for sensor health and environmental conditions."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sensorhub.domain.exceptions import ConflictError, NotFoundError
from sensorhub.domain.sensors import SensorAlert, ThresholdViolation
from sensorhub.enums import AlertSeverity, AlertStatus, AlertType, SensorEvent, ThresholdCondition
from sensorhub.utils.time import utc_now

if TYPE_CHECKING:
    from sensorhub.services.protocols import ReadingStore
    from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

# Maximum number of alerts kept in memory; oldest resolved alerts go first.
_ALERTS_MAXSIZE = 4096

RECOMMENDED_ACTIONS: Dict[AlertType, List[str]] = {
    AlertType.OUT_OF_RANGE: [
        "Check environmental controls",
        "Verify sensor calibration",
        "Inspect growing conditions",
    ],
    AlertType.SENSOR_ERROR: [
        "Check sensor connections",
        "Restart sensor",
        "Replace sensor if issue persists",
    ],
    AlertType.CALIBRATION_NEEDED: [
        "Prepare calibration standards",
        "Schedule calibration window",
        "Notify maintenance team",
    ],
    AlertType.MAINTENANCE_DUE: [
        "Clean sensor",
        "Check for physical damage",
        "Update firmware if available",
    ],
    AlertType.ANOMALY: [
        "Review recent readings",
        "Compare against a reference sensor",
        "Check for local disturbances near the sensor",
    ],
}
_DEFAULT_ACTIONS = ["Investigate issue", "Contact support if needed"]


def recommended_actions(alert_type: AlertType) -> List[str]:
    return list(RECOMMENDED_ACTIONS.get(alert_type, _DEFAULT_ACTIONS))


class AlertService:
    """
    Creates, de-duplicates and tracks sensor alerts.

    An alert is identified for de-duplication by (sensor, type, parameter,
    condition). While such an alert is open (active or acknowledged) a new
    occurrence only bumps its ``occurrences`` counter; it is not re-emitted.
    """

    def __init__(self, store: "ReadingStore", event_bus: "EventBus | None" = None):
        self.store = store
        self.event_bus = event_bus
        self._lock = threading.Lock()
        self._alerts: OrderedDict[str, SensorAlert] = OrderedDict()
        # dedup_key -> id of the open alert
        self._open_by_dedup: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def raise_alert(
        self,
        sensor_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        description: str,
        *,
        threshold: ThresholdViolation | None = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> tuple[SensorAlert, bool]:
        """
        Emit an alert unless an identical one is still open.

        Returns:
            (alert, created) where ``created`` is False for a de-duplicated hit
        """
        now = utc_now()
        candidate = SensorAlert(
            id=uuid.uuid4().hex,
            sensor_id=sensor_id,
            type=alert_type,
            severity=severity,
            title=title,
            description=description,
            recommended_actions=recommended_actions(alert_type),
            created_at=now,
            updated_at=now,
            threshold=threshold,
            metadata={**(metadata or {}), "occurrences": 1},
        )
        key = candidate.dedup_key

        with self._lock:
            existing_id = self._open_by_dedup.get(key)
            existing = self._alerts.get(existing_id) if existing_id else None
            if existing is not None and existing.is_open:
                existing.metadata["occurrences"] = existing.metadata.get("occurrences", 1) + 1
                existing.updated_at = now
                if threshold is not None:
                    existing.metadata["last_value"] = threshold.actual_value
                return existing, False
            self._alerts[candidate.id] = candidate
            self._open_by_dedup[key] = candidate.id
            self._evict_locked()

        self.store.save_alert(candidate)
        logger.warning(
            "Alert %s [%s/%s] sensor=%s: %s",
            candidate.id,
            alert_type.value,
            severity.value,
            sensor_id,
            description,
        )
        if self.event_bus is not None:
            self.event_bus.publish(SensorEvent.ALERT_RAISED, candidate)
        return candidate, True

    def raise_out_of_range(self, sensor_id: str, violation: ThresholdViolation) -> tuple[SensorAlert, bool]:
        direction = "above" if violation.condition == ThresholdCondition.ABOVE else "below"
        return self.raise_alert(
            sensor_id,
            AlertType.OUT_OF_RANGE,
            AlertSeverity.HIGH,
            title=f"{violation.parameter} out of range",
            description=(
                f"{violation.parameter} is {violation.actual_value:g}, {direction} the "
                f"{'maximum' if direction == 'above' else 'minimum'} of {violation.boundary:g} "
                f"by {violation.deviation:g}"
            ),
            threshold=violation,
        )

    def raise_sensor_error(self, sensor_id: str, reason: str) -> tuple[SensorAlert, bool]:
        return self.raise_alert(
            sensor_id,
            AlertType.SENSOR_ERROR,
            AlertSeverity.HIGH,
            title="Sensor not responding",
            description=reason,
        )

    def raise_calibration_needed(
        self, sensor_id: str, severity: AlertSeverity, *, reason: str
    ) -> tuple[SensorAlert, bool]:
        return self.raise_alert(
            sensor_id,
            AlertType.CALIBRATION_NEEDED,
            severity,
            title="Calibration needed",
            description=reason,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def acknowledge(self, alert_id: str, acknowledged_by: str | None = None) -> SensorAlert:
        with self._lock:
            alert = self._get_locked(alert_id)
            if alert.status == AlertStatus.RESOLVED:
                raise ConflictError(f"Alert {alert_id} is already resolved", detail={"alert_id": alert_id})
            now = utc_now()
            alert.status = AlertStatus.ACKNOWLEDGED
            alert.acknowledged_by = acknowledged_by
            alert.acknowledged_at = now
            alert.updated_at = now
        self._persist_update(alert)
        return alert

    def resolve(self, alert_id: str) -> SensorAlert:
        with self._lock:
            alert = self._get_locked(alert_id)
            if alert.status == AlertStatus.RESOLVED:
                return alert
            now = utc_now()
            alert.status = AlertStatus.RESOLVED
            alert.resolved_at = now
            alert.updated_at = now
            if self._open_by_dedup.get(alert.dedup_key) == alert.id:
                del self._open_by_dedup[alert.dedup_key]
        self._persist_update(alert)
        return alert

    def _persist_update(self, alert: SensorAlert) -> None:
        self.store.save_alert(alert)
        logger.info("Alert %s is now %s", alert.id, alert.status.value)
        if self.event_bus is not None:
            self.event_bus.publish(SensorEvent.ALERT_UPDATED, alert)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, alert_id: str) -> SensorAlert:
        with self._lock:
            return self._get_locked(alert_id)

    def list_alerts(
        self,
        *,
        sensor_id: str | None = None,
        status: AlertStatus | None = None,
        alert_type: AlertType | None = None,
    ) -> List[SensorAlert]:
        with self._lock:
            alerts = list(self._alerts.values())
        return [
            a
            for a in alerts
            if (sensor_id is None or a.sensor_id == sensor_id)
            and (status is None or a.status == status)
            and (alert_type is None or a.type == alert_type)
        ]

    def active_alerts(self, sensor_id: str | None = None, alert_type: AlertType | None = None) -> List[SensorAlert]:
        return self.list_alerts(sensor_id=sensor_id, status=AlertStatus.ACTIVE, alert_type=alert_type)

    def _get_locked(self, alert_id: str) -> SensorAlert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found", detail={"alert_id": alert_id})
        return alert

    def _evict_locked(self) -> None:
        if len(self._alerts) <= _ALERTS_MAXSIZE:
            return
        for alert_id in [a.id for a in self._alerts.values() if not a.is_open]:
            del self._alerts[alert_id]
            if len(self._alerts) <= _ALERTS_MAXSIZE:
                return
