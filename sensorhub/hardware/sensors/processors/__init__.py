from sensorhub.hardware.sensors.processors.quality_processor import (
    DEFAULT_PHYSICAL_LIMITS,
    PhysicalLimit,
    QualityAssessment,
    QualityProcessor,
)

__all__ = ["DEFAULT_PHYSICAL_LIMITS", "PhysicalLimit", "QualityAssessment", "QualityProcessor"]
