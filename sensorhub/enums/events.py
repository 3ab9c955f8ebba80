from enum import Enum


class SensorEvent(str, Enum):
    """Topics published on the EventBus by the sensor core."""

    SENSOR_REGISTERED = "sensor_registered"
    SENSOR_DEREGISTERED = "sensor_deregistered"
    STATUS_CHANGED = "sensor_status_changed"
    READING_RECEIVED = "sensor_reading_received"
    ALERT_RAISED = "sensor_alert_raised"
    ALERT_UPDATED = "sensor_alert_updated"
    CALIBRATION_COMPLETED = "sensor_calibration_completed"
    GROUP_UPDATED = "sensor_group_updated"


EventType = SensorEvent
