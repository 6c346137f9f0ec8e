# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Wiring for the eventual-benefit request core.

Builds the store, workflow configuration, audit recorder, event bus and
request aggregate from environment configuration.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from observability.config import setup_observability
from services.amqp import AMQPService, create_amqp_service
from services.audit import AuditRecorder
from services.event_bus import EventBus, create_event_bus
from services.memory_store import InMemoryStore
from services.mongodb import MongoDBService, get_mongodb_service
from services.payments import MongoPaymentInfoProvider, PaymentInfoProvider, StaticPaymentInfoProvider
from services.request_aggregate import RequestAggregate
from services.signing import create_audit_signer
from services.workflow_config import (
    ConfiguredDocumentRequirementChecker,
    WorkflowConfigRegistry,
    WorkflowConfigResolver,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config", "benefit_types.yaml")


@dataclass
class Core:
    """Wired collaborators of the request lifecycle core."""
    store: object
    registry: WorkflowConfigRegistry
    audit: AuditRecorder
    amqp: AMQPService
    event_bus: EventBus
    aggregate: RequestAggregate


def build_core(
    store_backend: Optional[str] = None,
    config_path: Optional[str] = None,
    payment_provider: Optional[PaymentInfoProvider] = None,
    start_dispatcher: Optional[bool] = None
) -> Core:
    """
    Build the core from environment configuration.

    Args:
        store_backend: ``memory`` or ``mongodb``, defaults to STORE_BACKEND
        config_path: Benefit type YAML, defaults to BENEFIT_TYPES_CONFIG
        payment_provider: Payment data source override
        start_dispatcher: Start the background event dispatcher, defaults to EVENT_BUS_ENABLED

    Returns:
        Core with every collaborator wired
    """
    backend = (store_backend or os.getenv("STORE_BACKEND", "memory")).lower()
    if backend == "mongodb":
        store = get_mongodb_service()
        store.create_indexes()
        payment_provider = payment_provider or MongoPaymentInfoProvider(store)
    elif backend == "memory":
        store = InMemoryStore()
        payment_provider = payment_provider or StaticPaymentInfoProvider()
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")

    registry = WorkflowConfigRegistry.from_yaml(
        config_path or os.getenv("BENEFIT_TYPES_CONFIG", DEFAULT_CONFIG_PATH)
    )
    audit = AuditRecorder(store, create_audit_signer())
    amqp = create_amqp_service()
    event_bus = create_event_bus(store, amqp)

    aggregate = RequestAggregate(
        store=store,
        resolver=WorkflowConfigResolver(registry),
        document_checker=ConfiguredDocumentRequirementChecker(registry),
        payment_provider=payment_provider,
        audit_recorder=audit,
        event_bus=event_bus
    )

    if start_dispatcher is None:
        start_dispatcher = os.getenv("EVENT_BUS_ENABLED", "true").lower() == "true"
    if start_dispatcher:
        amqp.setup_topology()
        event_bus.start()

    logger.info(
        "Request core initialized",
        extra={"store_backend": backend, "benefit_types": len(registry.list()), "dispatcher": start_dispatcher}
    )
    return Core(store=store, registry=registry, audit=audit, amqp=amqp, event_bus=event_bus, aggregate=aggregate)


def main() -> None:
    """Run the event dispatcher as a standalone worker."""
    setup_observability()
    core = build_core(start_dispatcher=True)
    try:
        core.event_bus.join()
    except KeyboardInterrupt:
        core.event_bus.stop()
        if isinstance(core.store, MongoDBService):
            core.store.close_connection()


if __name__ == "__main__":
    main()
