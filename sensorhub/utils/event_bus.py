"""
EventBus for sensor hub notifications.

Topics are ``SensorEvent`` members (or raw strings). Whatever a publisher
passes (a domain entity with ``to_dict()``, a dataclass, a pydantic model or
a dict) reaches subscribers as a plain dict, so handlers never hold a live
reference to a registry-owned object.
"""
import logging
import threading
import time
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, List

from pydantic import BaseModel

from sensorhub.enums.events import EventType

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]

# Summarize drops after this many, at most once per interval
DROP_WARNING_EVERY = 10
DROP_WARNING_INTERVAL_SECONDS = 60.0

_STOP = object()


def _topic(event_name: EventType | str) -> str:
    return event_name.value if isinstance(event_name, Enum) else str(event_name)


def _normalize(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    to_dict = getattr(data, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    return data


@dataclass
class _DropStats:
    total: int = 0
    by_topic: Counter = field(default_factory=Counter)
    pending_warning: int = 0
    last_warning_at: float = 0.0

    def record(self, topic: str) -> bool:
        """Count one drop; True when a summary warning is due."""
        self.total += 1
        self.by_topic[topic] += 1
        self.pending_warning += 1
        now = time.monotonic()
        if self.pending_warning >= DROP_WARNING_EVERY and now - self.last_warning_at >= DROP_WARNING_INTERVAL_SECONDS:
            self.last_warning_at = now
            return True
        return False


class EventBus:
    """
    Publish/subscribe hub backed by a bounded queue and a fixed worker pool.

    Publishers (poll threads, the MQTT network loop, API requests) only
    enqueue; callbacks run on the workers. When the queue is full the
    delivery is dropped and counted instead of blocking the publisher.
    """

    def __init__(self, queue_size: int = 1024, worker_count: int = 2) -> None:
        self._subscribers: Dict[str, List[Callback]] = defaultdict(list)
        self._lock = threading.Lock()
        self._queue_size = queue_size
        self._queue: Queue = Queue(maxsize=queue_size)
        self._drops = _DropStats()
        self._running = True
        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"eventbus-{i}", daemon=True)
            for i in range(worker_count)
        ]
        for worker in self._workers:
            worker.start()
        logger.info("EventBus workers started (pool=%s queue=%s)", worker_count, queue_size)

    def subscribe(self, event_name: EventType | str, callback: Callback) -> Callable[[], None]:
        """
        Register ``callback`` for a topic.

        Returns:
            A function that removes this subscription (safe to call twice).
        """
        topic = _topic(event_name)
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, event_name: EventType | str, data: Any | None = None) -> None:
        """Queue one delivery of the normalized payload per subscriber."""
        topic = _topic(event_name)
        payload = _normalize(data)
        with self._lock:
            callbacks = list(self._subscribers.get(topic, ()))
        for callback in callbacks:
            try:
                self._queue.put_nowait((topic, callback, payload))
            except Full:
                self._on_drop(topic)
                break

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                topic, callback, payload = item
                try:
                    callback(payload)
                except Exception as exc:
                    logger.error("Error in callback for event %s: %s", topic, exc, exc_info=True)
            finally:
                self._queue.task_done()

    def _on_drop(self, topic: str) -> None:
        with self._lock:
            warn = self._drops.record(topic)
            if not warn:
                return
            recent = self._drops.pending_warning
            self._drops.pending_warning = 0
            top = ", ".join(f"{t}:{n}" for t, n in self._drops.by_topic.most_common(5))
        logger.warning(
            "EventBus queue full (size=%d): %d deliveries dropped recently, %d total [%s]. "
            "Raise SENSORHUB_EVENTBUS_QUEUE_SIZE or slow the publishers.",
            self._queue_size,
            recent,
            self._drops.total,
            top,
        )

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until every queued delivery has run; False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def shutdown(self, timeout: float = 5.0) -> None:
        """Drain pending deliveries, then stop the workers. Idempotent."""
        with self._lock:
            if not self._running:
                return
            self._running = False
        self.wait_idle(timeout)
        for _ in self._workers:
            try:
                self._queue.put(_STOP, timeout=timeout)
            except Full:
                break
        for worker in self._workers:
            worker.join(timeout=timeout)
        # Anything published during the drain is discarded
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                break
            self._queue.task_done()
        logger.info("EventBus stopped (dropped=%d)", self._drops.total)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "queue_depth": self._queue.qsize(),
                "queue_size": self._queue_size,
                "dropped_events": self._drops.total,
                "drops_by_event_top5": dict(self._drops.by_topic.most_common(5)),
                "subscribers": sum(len(cbs) for cbs in self._subscribers.values()),
            }
