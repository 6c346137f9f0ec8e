# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas for the eventual-benefit request workflow.
"""

# Base models
from .base import BaseEntity, generate_object_id, utcnow

# Enumerations
from .enums import (
    RequestStatus,
    RequestOrigin,
    Role,
    Operation,
    ReviewOutcome,
    GateAction,
    PendencyStatus,
    Kinship,
    EventType,
    DenialReason,
    SignatureStatus,
    VerificationResult,
    PaymentMethod
)

# Core entities
from .entities import (
    Actor,
    BeneficiaryRef,
    RequesterInfo,
    WorkflowGate,
    WorkflowRoute,
    BenefitTypeConfig,
    StatusHistoryEntry,
    Pendency,
    PaymentChannel,
    PaymentDetails,
    BenefitRequest,
    AuditActor,
    AuditEntry
)

# Events
from .events import DomainEvent, OutboxRecord

# Operation inputs
from .requests import CreateBenefitRequest, PendencyItem, ReviewDecision

__all__ = [
    # Base
    "BaseEntity",
    "generate_object_id",
    "utcnow",

    # Enums
    "RequestStatus",
    "RequestOrigin",
    "Role",
    "Operation",
    "ReviewOutcome",
    "GateAction",
    "PendencyStatus",
    "Kinship",
    "EventType",
    "DenialReason",
    "SignatureStatus",
    "VerificationResult",
    "PaymentMethod",

    # Entities
    "Actor",
    "BeneficiaryRef",
    "RequesterInfo",
    "WorkflowGate",
    "WorkflowRoute",
    "BenefitTypeConfig",
    "StatusHistoryEntry",
    "Pendency",
    "PaymentChannel",
    "PaymentDetails",
    "BenefitRequest",
    "AuditActor",
    "AuditEntry",

    # Events
    "DomainEvent",
    "OutboxRecord",

    # Inputs
    "CreateBenefitRequest",
    "PendencyItem",
    "ReviewDecision"
]
