# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Domain event models published on the event bus.
"""

import uuid
from datetime import datetime
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, ConfigDict
from .base import utcnow
from .enums import EventType


class DomainEvent(BaseModel):
    """Asynchronous notification of a request state change."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique event ID for consumer dedupe")
    event_type: EventType = Field(..., description="Event type tag")
    aggregate_id: str = Field(..., description="Source request ID")
    correlation_id: str = Field(..., description="Correlation ID of the producing operation")
    occurred_at: datetime = Field(default_factory=utcnow, description="Emission timestamp")
    sequence: int = Field(..., ge=1, description="Emission order within the aggregate")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event payload")
    schema_version: int = Field(default=1, description="Schema version")

    @property
    def routing_key(self) -> str:
        """AMQP routing key, e.g. ``benefit_request.RequestApproved``."""
        return f"benefit_request.{self.event_type.value}"

    def to_message(self) -> Dict[str, Any]:
        """Topic contract representation."""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type.value,
            "requestId": self.aggregate_id,
            "correlationId": self.correlation_id,
            "occurredAt": self.occurred_at.isoformat(),
            "sequence": self.sequence,
            "payload": self.payload,
            "schemaVersion": self.schema_version
        }

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "DomainEvent":
        return cls(
            event_id=message["eventId"],
            event_type=EventType(message["eventType"]),
            aggregate_id=message["requestId"],
            correlation_id=message["correlationId"],
            occurred_at=message["occurredAt"],
            sequence=message["sequence"],
            payload=message.get("payload") or {},
            schema_version=message.get("schemaVersion", 1)
        )


class OutboxRecord(BaseModel):
    """Durable outbox row wrapping a domain event until it is published."""

    event: DomainEvent
    published: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    published_at: Optional[datetime] = None
