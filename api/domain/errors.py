# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Typed errors raised by the request lifecycle core.

Each error carries an HTTP-like status code and an error type slug so an
outer surface can render it without knowing the domain.
"""

from typing import Any, Dict, List, Optional


class CustomException(Exception):
    """Base class for custom application exceptions."""

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "status": self.status_code,
            "detail": self.message
        }


class InvalidTransition(CustomException):
    """Operation is not an edge of the state table for the current status."""

    def __init__(self, message: str, current_status: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, 409, "invalid-transition")
        self.current_status = current_status
        self.operation = operation


class RoleNotPermitted(InvalidTransition):
    """Actor does not hold a role permitted for the operation."""

    def __init__(self, message: str, current_status: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, current_status, operation)
        self.status_code = 403
        self.error_type = "role-not-permitted"


class BusinessRuleViolation(CustomException):
    """A business rule predicate rejected the operation."""

    def __init__(self, message: str, rule: str = "business_rule", details: Optional[List[str]] = None):
        super().__init__(message, 422, "business-rule-violation")
        self.rule = rule
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["rule"] = self.rule
        if self.details:
            data["details"] = self.details
        return data


class MissingDocuments(BusinessRuleViolation):
    """Mandatory documents for the benefit type are not attached."""

    def __init__(self, missing: List[str]):
        super().__init__(
            f"Missing mandatory documents: {', '.join(missing)}",
            rule="missing_documents",
            details=list(missing)
        )
        self.error_type = "missing-documents"
        self.missing = list(missing)


class InvalidRepresentative(BusinessRuleViolation):
    """Minor beneficiary without a first-degree legal representative."""

    def __init__(self, message: str = "Minor beneficiary requires a first-degree legal representative"):
        super().__init__(message, rule="invalid_representative")
        self.error_type = "invalid-representative"


class PaymentInfoMissing(BusinessRuleViolation):
    """Beneficiary has no usable payment channel."""

    def __init__(self, message: str = "Beneficiary has no payment channel registered"):
        super().__init__(message, rule="payment_info_missing")
        self.error_type = "payment-info-missing"


class ConfigurationMissing(CustomException):
    """No active workflow configuration exists for a benefit type."""

    def __init__(self, benefit_type: str):
        super().__init__(f"No workflow configuration for benefit type '{benefit_type}'", 422, "configuration-missing")
        self.benefit_type = benefit_type


class ConcurrentModification(CustomException):
    """Request version changed since the caller last read it."""

    def __init__(self, request_id: str, expected_version: int, actual_version: Optional[int] = None):
        detail = f"Request {request_id} was modified concurrently (expected version {expected_version}"
        if actual_version is not None:
            detail += f", found {actual_version}"
        super().__init__(detail + ")", 409, "concurrent-modification")
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class NotFoundException(CustomException):
    """Exception for resource not found errors."""

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class RequestNotFound(NotFoundException):
    def __init__(self, request_id: str):
        super().__init__(f"Benefit request {request_id} not found")
        self.request_id = request_id


class PendencyNotFound(NotFoundException):
    def __init__(self, pendency_id: str):
        super().__init__(f"Pendency {pendency_id} not found")
        self.pendency_id = pendency_id


class AuditEntryNotFound(NotFoundException):
    def __init__(self, entry_id: str):
        super().__init__(f"Audit entry {entry_id} not found")
        self.entry_id = entry_id


class SignatureFailure(CustomException):
    """Audit signing failed. Logged and counted, never raised to callers."""

    def __init__(self, message: str):
        super().__init__(message, 500, "signature-failure")
