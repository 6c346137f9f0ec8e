# SPDX-License-Identifier: Apache-2.0

"""
Tests for the idempotent event consumer.
"""

import pytest
from unittest.mock import Mock, patch

from models.enums import EventType
from models.events import DomainEvent
from services.consumers import IdempotentEventConsumer, create_redis_client


class TestIdempotentEventConsumer:
    """Test Redis-backed dedupe of redelivered events."""

    def setup_method(self):
        """Set up test fixtures."""
        self.redis = Mock()
        self.handler = Mock()
        self.consumer = IdempotentEventConsumer(
            self.redis,
            "notifications",
            handlers={EventType.REQUEST_APPROVED: self.handler},
            ttl_seconds=3600
        )
        self.event = DomainEvent(
            event_type=EventType.REQUEST_APPROVED,
            aggregate_id="req-1",
            correlation_id="corr-1",
            sequence=3,
            payload={"approvedBy": "user-manager"}
        )
        self.key = f"events:processed:notifications:{self.event.event_id}"

    def test_first_delivery_is_handled(self):
        self.redis.set.return_value = True

        assert self.consumer.handle_message(self.event.to_message()) is True

        self.redis.set.assert_called_once_with(self.key, "1", nx=True, ex=3600)
        handled = self.handler.call_args[0][0]
        assert handled.event_id == self.event.event_id
        assert handled.payload == {"approvedBy": "user-manager"}

    def test_redelivery_is_skipped(self):
        self.redis.set.side_effect = [True, None]

        assert self.consumer.handle_message(self.event.to_message()) is True
        assert self.consumer.handle_message(self.event.to_message()) is False

        assert self.handler.call_count == 1

    def test_handler_failure_releases_claim(self):
        self.redis.set.return_value = True
        self.handler.side_effect = RuntimeError("projection unavailable")

        with pytest.raises(RuntimeError):
            self.consumer.handle_message(self.event.to_message())

        self.redis.delete.assert_called_once_with(self.key)

    def test_unregistered_event_type(self):
        self.redis.set.return_value = True
        other = self.event.model_copy(update={"event_type": EventType.REQUEST_CREATED})

        assert self.consumer.handle_message(other.to_message()) is True
        self.handler.assert_not_called()

    def test_register_handler(self):
        self.redis.set.return_value = True
        cancelled = Mock()
        self.consumer.on(EventType.REQUEST_CANCELLED, cancelled)
        event = self.event.model_copy(update={"event_type": EventType.REQUEST_CANCELLED})

        self.consumer.handle_message(event.to_message())

        cancelled.assert_called_once()

    @patch('services.consumers.redis.from_url')
    def test_create_redis_client(self, mock_from_url):
        with patch.dict('os.environ', {'REDIS_URL': 'redis://cache:6379/2'}):
            create_redis_client()

        mock_from_url.assert_called_once_with('redis://cache:6379/2', decode_responses=True)
