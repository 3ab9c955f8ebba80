import threading
import unittest
from dataclasses import dataclass

from pydantic import BaseModel

from sensorhub.enums import SensorEvent
from sensorhub.utils.event_bus import EventBus


@dataclass
class _Point:
    x: int
    y: int


class _Model(BaseModel):
    name: str


class TestEventBus(unittest.TestCase):
    """Unit tests for the EventBus module."""

    def setUp(self):
        self.event_bus = EventBus(queue_size=16, worker_count=2)
        self.received = []
        self.done = threading.Event()

    def tearDown(self):
        self.event_bus.shutdown()

    def listener(self, data):
        self.received.append(data)
        self.done.set()

    def test_subscribe_and_publish(self):
        self.event_bus.subscribe("test_event", self.listener)
        self.event_bus.publish("test_event", {"key": "value"})

        self.assertTrue(self.done.wait(2.0))
        self.assertEqual(self.received, [{"key": "value"}])

    def test_enum_and_string_topics_are_the_same(self):
        self.event_bus.subscribe(SensorEvent.READING_RECEIVED, self.listener)
        self.event_bus.publish("sensor_reading_received", {"v": 1})

        self.assertTrue(self.done.wait(2.0))

    def test_payloads_are_normalized_to_dicts(self):
        self.event_bus.subscribe("points", self.listener)
        self.event_bus.publish("points", _Point(1, 2))
        self.event_bus.publish("points", _Model(name="ec-1"))
        self.assertTrue(self.event_bus.wait_idle(2.0))

        self.assertIn({"x": 1, "y": 2}, self.received)
        self.assertIn({"name": "ec-1"}, self.received)

    def test_unsubscribe(self):
        unsubscribe = self.event_bus.subscribe("test_event", self.listener)
        unsubscribe()
        self.event_bus.publish("test_event", {"key": "value"})
        self.assertTrue(self.event_bus.wait_idle(2.0))

        self.assertEqual(self.received, [])

    def test_failing_subscriber_does_not_block_others(self):
        def broken(_data):
            raise RuntimeError("boom")

        self.event_bus.subscribe("test_event", broken)
        self.event_bus.subscribe("test_event", self.listener)
        self.event_bus.publish("test_event", {"key": "value"})

        self.assertTrue(self.done.wait(2.0))

    def test_full_queue_drops_and_counts(self):
        gate = threading.Event()
        bus = EventBus(queue_size=1, worker_count=1)
        try:
            bus.subscribe("slow", lambda _data: gate.wait(2.0))
            for _ in range(10):
                bus.publish("slow", {})
            self.assertGreater(bus.get_metrics()["dropped_events"], 0)
        finally:
            gate.set()
            bus.shutdown()

    def test_shutdown_drains_and_is_idempotent(self):
        self.event_bus.subscribe("test_event", self.listener)
        self.event_bus.publish("test_event", {"key": "value"})

        self.event_bus.shutdown()
        self.event_bus.shutdown()

        self.assertEqual(self.received, [{"key": "value"}])


if __name__ == "__main__":
    unittest.main()
