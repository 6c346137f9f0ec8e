# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the eventual-benefit request workflow.
"""

from enum import Enum


class RequestStatus(str, Enum):
    """Benefit request lifecycle status."""
    DRAFT = "draft"
    OPEN = "open"
    IN_ANALYSIS = "in_analysis"
    PENDING = "pending"
    APPROVED = "approved"
    RELEASED = "released"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestOrigin(str, Enum):
    """Channel through which the request entered the system."""
    IN_PERSON = "in_person"
    MESSAGING_CHANNEL = "messaging_channel"


class Role(str, Enum):
    """Program roles supplied by the identity provider."""
    ADMIN = "admin"
    MANAGER = "manager"
    TECHNICAL_REVIEWER = "technical_reviewer"
    UNIT_TECHNICIAN = "unit_technician"


class Operation(str, Enum):
    """Operations exposed by the request aggregate."""
    CREATE = "create"
    SUBMIT = "submit"
    SEND_TO_ANALYSIS = "send_to_analysis"
    RECORD_OPINION = "record_technical_opinion"
    APPROVE = "approve"
    PEND = "pend"
    REJECT = "reject"
    ATTACH_DOCUMENTS = "attach_documents"
    RESOLVE_PENDENCY = "resolve_pendency"
    RESUBMIT = "resubmit"
    RELEASE = "release"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ReviewOutcome(str, Enum):
    """Possible outcomes of a review decision."""
    APPROVE = "approve"
    PEND = "pend"
    REJECT = "reject"


class GateAction(str, Enum):
    """Kind of approval gate a workflow route can require."""
    INTAKE_REVIEW = "intake_review"
    TECHNICAL_OPINION = "technical_opinion"
    APPROVAL = "approval"
    RELEASE = "release"
    DELIVERY = "delivery"


class PendencyStatus(str, Enum):
    """Pendency sub-lifecycle."""
    OPEN = "open"
    RESOLVED = "resolved"


class Kinship(str, Enum):
    """Kinship between requester and beneficiary."""
    SELF = "self"
    FATHER = "father"
    MOTHER = "mother"
    GRANDPARENT = "grandparent"
    SIBLING = "sibling"
    LEGAL_GUARDIAN = "legal_guardian"
    OTHER = "other"


class EventType(str, Enum):
    """Domain event topic contract."""
    REQUEST_CREATED = "RequestCreated"
    REQUEST_SUBMITTED = "RequestSubmitted"
    REQUEST_PENDED = "RequestPended"
    REQUEST_APPROVED = "RequestApproved"
    REQUEST_REJECTED = "RequestRejected"
    REQUEST_RESUBMITTED = "RequestResubmitted"
    REQUEST_RELEASED = "RequestReleased"
    REQUEST_COMPLETED = "RequestCompleted"
    REQUEST_CANCELLED = "RequestCancelled"


class DenialReason(str, Enum):
    """Typed reasons a transition guard can deny an operation."""
    ROLE_NOT_PERMITTED = "role_not_permitted"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    INVALID_TRANSITION = "invalid_transition"


class SignatureStatus(str, Enum):
    """Whether an audit entry carries a cryptographic signature."""
    SIGNED = "signed"
    UNSIGNED = "unsigned"


class VerificationResult(str, Enum):
    """Outcome of audit entry verification."""
    VALID = "valid"
    INVALID = "invalid"
    UNSIGNED = "unsigned"


class PaymentMethod(str, Enum):
    """Payment channels available for benefit release."""
    PIX = "pix"
    BANK_DEPOSIT = "bank_deposit"
    IN_KIND = "in_kind"
