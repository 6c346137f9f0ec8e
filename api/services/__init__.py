# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Persistence, messaging, signing and request orchestration.
"""

from .mongodb import MongoDBService, get_mongodb_service, close_mongodb_connection
from .memory_store import InMemoryStore
from .amqp import AMQPService, AMQPConfig, PublishResult, create_amqp_service
from .signing import AuditSigner, SigningConfig, create_audit_signer
from .audit import AuditRecorder
from .event_bus import EventBus, EventBusConfig, DispatchReport, create_event_bus
from .workflow_config import WorkflowConfigRegistry, WorkflowConfigResolver, ConfiguredDocumentRequirementChecker
from .payments import PaymentInfoProvider, StaticPaymentInfoProvider, MongoPaymentInfoProvider
from .request_aggregate import RequestAggregate, OperationResult

__all__ = [
    "MongoDBService",
    "get_mongodb_service",
    "close_mongodb_connection",
    "InMemoryStore",
    "AMQPService",
    "AMQPConfig",
    "PublishResult",
    "create_amqp_service",
    "AuditSigner",
    "SigningConfig",
    "create_audit_signer",
    "AuditRecorder",
    "EventBus",
    "EventBusConfig",
    "DispatchReport",
    "create_event_bus",
    "WorkflowConfigRegistry",
    "WorkflowConfigResolver",
    "ConfiguredDocumentRequirementChecker",
    "PaymentInfoProvider",
    "StaticPaymentInfoProvider",
    "MongoPaymentInfoProvider",
    "RequestAggregate",
    "OperationResult"
]
