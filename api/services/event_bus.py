# SPDX-License-Identifier: Apache-2.0

"""
Outbox-backed event bus.

Events are written to the outbox inside the owning transaction. After
commit, the bus publishes pending outbox records to AMQP, either from a
background dispatcher thread woken through a queue or synchronously via
``dispatch_pending()``.
"""

import os
import queue
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set
from opentelemetry import metrics, trace
import logging

from models.events import DomainEvent, OutboxRecord
from .amqp import AMQPService

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)
meter = metrics.get_meter(__name__)

publish_failures = meter.create_counter(
    "event_bus.publish_failures",
    unit="1",
    description="Outbox records that failed to publish"
)


@dataclass
class EventBusConfig:
    """Dispatcher configuration."""
    batch_size: int = 100
    poll_interval: float = 1.0
    base_backoff: float = 1.0
    max_backoff: float = 300.0
    publish_retries: int = 0


@dataclass
class DispatchReport:
    """Outcome of one dispatch pass."""
    published: int = 0
    failed: int = 0
    deferred: int = 0


class EventBus:
    """
    Publishes outbox records in per-aggregate order.

    A record that fails to publish blocks later records of the same
    aggregate until it is retried successfully. Retries back off
    exponentially with the number of failed attempts.
    """

    def __init__(self, store, publisher: AMQPService, config: Optional[EventBusConfig] = None):
        self.store = store
        self.publisher = publisher
        self.config = config or EventBusConfig()
        self._wakeup: "queue.Queue[int]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dispatch_lock = threading.Lock()
        self._next_attempt_at: Dict[str, float] = {}

    def notify(self, events: List[DomainEvent]) -> None:
        """Signal that a transaction committed new events."""
        if events:
            self._wakeup.put(len(events))

    def _backoff(self, attempts: int) -> float:
        return min(self.config.base_backoff * (2 ** max(attempts - 1, 0)), self.config.max_backoff)

    def _is_due(self, record: OutboxRecord, now: float) -> bool:
        return now >= self._next_attempt_at.get(record.event.event_id, 0.0)

    def dispatch_pending(self) -> DispatchReport:
        """
        Publish every due outbox record once.

        Records are fetched ``batch_size`` at a time. Aggregates blocked by a
        failed or backing-off record are excluded from later fetches, so a
        stuck aggregate never hides the records of others.

        Returns:
            DispatchReport with published, failed and deferred counts
        """
        with self._dispatch_lock, tracer.start_as_current_span("event_bus.dispatch_pending") as span:
            report = DispatchReport()
            blocked: Set[str] = set()
            seen: Set[str] = set()
            now = time.monotonic()

            while True:
                records = [
                    r for r in self.store.pending_events(self.config.batch_size, exclude_aggregates=blocked)
                    if r.event.event_id not in seen
                ]
                if not records:
                    break
                for record in records:
                    seen.add(record.event.event_id)
                    self._dispatch_record(record, now, blocked, report)

            span.set_attributes({
                "event_bus.published": report.published,
                "event_bus.failed": report.failed,
                "event_bus.deferred": report.deferred,
                "event_bus.blocked_aggregates": len(blocked)
            })
            if report.published or report.failed:
                logger.info(
                    "Outbox dispatch pass finished",
                    extra={
                        "published": report.published,
                        "failed": report.failed,
                        "deferred": report.deferred
                    }
                )
            return report

    def _dispatch_record(self, record: OutboxRecord, now: float, blocked: Set[str], report: DispatchReport) -> None:
        event = record.event
        if event.aggregate_id in blocked or not self._is_due(record, now):
            blocked.add(event.aggregate_id)
            report.deferred += 1
            return

        result = self.publisher.publish_event(event, max_retries=self.config.publish_retries)
        if result.success:
            self.store.mark_published(event.event_id)
            self._next_attempt_at.pop(event.event_id, None)
            report.published += 1
            return

        self.store.mark_failed(event.event_id, result.error or "publish failed")
        attempts = record.attempts + 1
        self._next_attempt_at[event.event_id] = now + self._backoff(attempts)
        blocked.add(event.aggregate_id)
        report.failed += 1
        publish_failures.add(1, {"event.type": event.event_type.value})
        logger.warning(
            "Outbox record publish failed, will retry",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type.value,
                "aggregate_id": event.aggregate_id,
                "attempts": attempts,
                "error": result.error
            }
        )

    # Background dispatcher

    def start(self) -> None:
        """Start the dispatcher in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Event bus dispatcher already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="event-bus-dispatcher",
            daemon=True
        )
        self._thread.start()
        logger.info("Event bus dispatcher started")

    def stop(self, timeout: float = 10.0) -> None:
        """Signal stop and wait for the dispatcher to finish its current pass."""
        self._stop_event.set()
        self._wakeup.put(0)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Event bus dispatcher stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        """Block until the dispatcher thread exits."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._wakeup.get(timeout=self.config.poll_interval)
            except queue.Empty:
                pass
            if self._stop_event.is_set():
                break

            try:
                self.dispatch_pending()
            except Exception as e:
                logger.error(f"Event bus dispatch pass failed: {str(e)}", exc_info=True)


def create_event_bus(store, publisher: AMQPService) -> EventBus:
    """Create event bus with configuration from environment."""
    config = EventBusConfig(
        batch_size=int(os.getenv('EVENT_BUS_BATCH_SIZE', '100')),
        poll_interval=float(os.getenv('EVENT_BUS_POLL_INTERVAL', '1.0')),
        base_backoff=float(os.getenv('EVENT_BUS_BASE_BACKOFF', '1.0')),
        max_backoff=float(os.getenv('EVENT_BUS_MAX_BACKOFF', '300.0')),
        publish_retries=int(os.getenv('EVENT_BUS_PUBLISH_RETRIES', '0'))
    )
    return EventBus(store, publisher, config)
