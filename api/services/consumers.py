# SPDX-License-Identifier: Apache-2.0

"""
Idempotent consumer base for downstream event projectors.

Delivery from the event bus is at-least-once; consumers claim each event id
in Redis with ``SET NX`` before handling it so redelivered events are skipped.
"""

import os
from typing import Callable, Dict, Optional, Any
import redis
from opentelemetry import trace
import logging

from models.enums import EventType
from models.events import DomainEvent

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class IdempotentEventConsumer:
    """
    Dispatches events to per-type handlers at most once per event id.

    If a handler raises, the claim is released so a redelivery can retry.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        consumer_name: str,
        handlers: Optional[Dict[EventType, EventHandler]] = None,
        ttl_seconds: int = 7 * 24 * 3600
    ):
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.handlers: Dict[EventType, EventHandler] = dict(handlers or {})
        self.ttl_seconds = ttl_seconds

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Register a handler for an event type."""
        self.handlers[event_type] = handler

    def _dedupe_key(self, event_id: str) -> str:
        return f"events:processed:{self.consumer_name}:{event_id}"

    def handle_message(self, message: Dict[str, Any]) -> bool:
        """
        Handle one message from the topic.

        Args:
            message: Event in topic contract form

        Returns:
            True if the event was processed, False if it was a duplicate
        """
        event = DomainEvent.from_message(message)

        with tracer.start_as_current_span("consumer.handle_message") as span:
            span.set_attributes({
                "consumer.name": self.consumer_name,
                "event.id": event.event_id,
                "event.type": event.event_type.value,
                "event.aggregate_id": event.aggregate_id
            })

            key = self._dedupe_key(event.event_id)
            claimed = self.redis.set(key, "1", nx=True, ex=self.ttl_seconds)
            if not claimed:
                span.set_attribute("consumer.duplicate", True)
                logger.info(
                    "Duplicate event skipped",
                    extra={"consumer": self.consumer_name, "event_id": event.event_id}
                )
                return False

            handler = self.handlers.get(event.event_type)
            if handler is None:
                logger.debug(
                    f"No handler for {event.event_type.value}",
                    extra={"consumer": self.consumer_name, "event_id": event.event_id}
                )
                return True

            try:
                handler(event)
            except Exception as e:
                span.record_exception(e)
                self.redis.delete(key)
                logger.error(
                    "Event handler failed, claim released",
                    extra={
                        "consumer": self.consumer_name,
                        "event_id": event.event_id,
                        "event_type": event.event_type.value,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            return True


def create_redis_client(redis_url: Optional[str] = None) -> redis.Redis:
    """Create redis-py client from environment configuration."""
    return redis.from_url(redis_url or os.getenv("REDIS_URL", "redis://localhost:6379"), decode_responses=True)
