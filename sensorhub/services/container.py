from __future__ import annotations

import logging
from dataclasses import dataclass

from sensorhub.config import AppConfig
from sensorhub.hardware.adapters.sensors import AdapterFactory
from sensorhub.hardware.sensors import DeviceRegistry
from sensorhub.hardware.sensors.processors import QualityProcessor
from sensorhub.infrastructure.memory_store import InMemoryReadingStore
from sensorhub.services.application.aggregation_service import AggregationService
from sensorhub.services.application.alert_service import AlertService
from sensorhub.services.application.analytics_service import AnalyticsService
from sensorhub.services.application.threshold_service import ThresholdService
from sensorhub.services.hardware.connection_manager import ConnectionManager
from sensorhub.services.hardware.sensor_management_service import SensorManagementService
from sensorhub.services.hardware.sensor_polling_service import SensorPollingService
from sensorhub.services.hardware.state_tracking_service import StateTrackingService
from sensorhub.services.protocols import ReadingStore
from sensorhub.services.utilities.calibration_service import CalibrationService
from sensorhub.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

CALIBRATION_SWEEP_JOB = "calibration_due_sweep"


@dataclass
class ServiceContainer:
    """Aggregate and manage the sensor core services."""

    config: AppConfig
    event_bus: EventBus
    store: ReadingStore
    registry: DeviceRegistry
    adapter_factory: AdapterFactory
    scheduler: SensorPollingService
    state_tracker: StateTrackingService
    alert_service: AlertService
    threshold_service: ThresholdService
    calibration_service: CalibrationService
    connection_manager: ConnectionManager
    sensor_management: SensorManagementService
    aggregation_service: AggregationService
    analytics_service: AnalyticsService

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        store: ReadingStore | None = None,
        adapter_factory: AdapterFactory | None = None,
    ) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Args:
            config: Application configuration
            store: Reading store; an in-memory store when omitted
            adapter_factory: Transport adapter factory; built from config when omitted
        """
        logger.info("Building ServiceContainer (%s)", config.environment)
        event_bus = EventBus(queue_size=config.eventbus_queue_size, worker_count=config.eventbus_worker_count)
        store = store if store is not None else InMemoryReadingStore()
        registry = DeviceRegistry()
        if adapter_factory is None:
            adapter_factory = AdapterFactory(
                io_timeout=config.io_timeout_seconds,
                mqtt_broker_host=config.mqtt_broker_host,
                mqtt_broker_port=config.mqtt_broker_port,
            )
        scheduler = SensorPollingService()
        state_tracker = StateTrackingService(max_history_per_sensor=config.activity_history_size)
        alert_service = AlertService(store, event_bus)
        threshold_service = ThresholdService()
        calibration_service = CalibrationService(
            registry,
            store,
            alert_service,
            event_bus,
            min_accuracy=config.calibration_min_accuracy,
            interval_days=config.calibration_interval_days,
        )
        connection_manager = ConnectionManager(
            registry,
            adapter_factory,
            scheduler,
            alert_service,
            state_tracker=state_tracker,
            event_bus=event_bus,
            error_threshold=config.error_threshold,
            reconnect_delay_seconds=config.reconnect_delay_seconds,
        )
        sensor_management = SensorManagementService(
            registry,
            connection_manager,
            calibration_service,
            threshold_service,
            alert_service,
            store,
            quality_processor=QualityProcessor(),
            event_bus=event_bus,
            ambient_max_age_seconds=config.group_freshness_seconds,
        )
        aggregation_service = AggregationService(
            registry,
            store,
            event_bus,
            default_freshness_seconds=config.group_freshness_seconds,
        )
        analytics_service = AnalyticsService(store, state_tracker, alert_service)

        container = cls(
            config=config,
            event_bus=event_bus,
            store=store,
            registry=registry,
            adapter_factory=adapter_factory,
            scheduler=scheduler,
            state_tracker=state_tracker,
            alert_service=alert_service,
            threshold_service=threshold_service,
            calibration_service=calibration_service,
            connection_manager=connection_manager,
            sensor_management=sensor_management,
            aggregation_service=aggregation_service,
            analytics_service=analytics_service,
        )
        logger.info("ServiceContainer built successfully.")
        return container

    def start(self) -> None:
        """Start background jobs (the calibration-due sweep)."""
        self.scheduler.start_job(
            CALIBRATION_SWEEP_JOB,
            self.config.calibration_check_interval_seconds,
            self.calibration_service.check_due_calibrations,
        )

    def shutdown(self) -> None:
        """Stop timers, close transports and drain the event bus."""
        self.connection_manager.shutdown()
        self.scheduler.stop_all()
        self.event_bus.shutdown()
        logger.info("ServiceContainer shutdown complete.")
