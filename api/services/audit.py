# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit recorder for signed, tamper-evident action logging with OpenTelemetry correlation.
"""

import hmac
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

from models.base import utcnow
from models.entities import Actor, AuditActor, AuditEntry
from models.enums import SignatureStatus, VerificationResult
from domain.errors import AuditEntryNotFound
from .signing import AuditSigner, content_digest

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)

signature_failures = meter.create_counter(
    "audit.signature_failures",
    unit="1",
    description="Audit entries persisted with the unsigned fallback hash"
)

FALLBACK_ALGORITHM = "sha256"

# Fields that change on every write and carry no audit meaning
IGNORED_DIFF_FIELDS = ("updated_at", "updated_by", "_id", "id")


class AuditRecorder:
    """
    Builds, signs and persists audit entries.

    Entries are written through the caller's unit of work when one is given,
    so they commit or roll back together with the audited mutation.
    """

    def __init__(self, store, signer: AuditSigner):
        """Initialize audit recorder with store and signer dependencies."""
        self.store = store
        self.signer = signer
        logger.info("Audit recorder initialized", extra={"signing_algorithm": signer.algorithm})

    def record(
        self,
        entity: str,
        entity_id: str,
        action: str,
        actor: Actor,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        uow=None,
        timestamp: Optional[datetime] = None
    ) -> AuditEntry:
        """
        Record a signed audit trail entry.

        Signing failures never propagate: the entry is persisted with a
        content hash, marked unsigned, and the failure is logged and counted.

        Args:
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            actor: Full actor context
            before: JSON-compatible state before the action
            after: JSON-compatible state after the action
            correlation_id: Correlation ID of the operation
            uow: Unit of work of the owning transaction
            timestamp: Entry timestamp, defaults to now

        Returns:
            AuditEntry: the persisted entry
        """
        with tracer.start_as_current_span("audit.record") as span:
            span_context = span.get_span_context()
            trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None
            span_id = format(span_context.span_id, "016x") if span_context.is_valid else None

            span.set_attributes({
                "audit.entity": entity,
                "audit.action": action,
                "audit.user_id": actor.user_id,
                "audit.entity_id": entity_id
            })

            entry = AuditEntry(
                timestamp=timestamp or utcnow(),
                entity=entity,
                entity_id=entity_id,
                action=action,
                actor=AuditActor.from_actor(actor),
                correlation_id=correlation_id or actor.correlation_id,
                before=before,
                after=after,
                changes=self._calculate_changes(before, after) if before and after else [],
                trace_id=trace_id,
                span_id=span_id
            )
            entry = self._sign(entry, span)

            try:
                if uow is not None:
                    uow.add_audit_entry(entry)
                else:
                    self.store.insert_audit_entry(entry)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to persist audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": actor.user_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            logger.info(
                "Audit trail entry created",
                extra={
                    "audit_id": entry.id,
                    "entity": entity,
                    "entity_id": entity_id,
                    "action": action,
                    "user_id": actor.user_id,
                    "trace_id": trace_id,
                    "changes_count": len(entry.changes),
                    "signature_status": entry.signature_status.value,
                    "audit_category": "business_action"
                }
            )
            return entry

    def _sign(self, entry: AuditEntry, span) -> AuditEntry:
        canonical = entry.canonical_bytes()
        try:
            token = self.signer.sign(canonical, entry.timestamp)
        except Exception as e:
            signature_failures.add(1, {"audit.entity": entry.entity, "audit.action": entry.action})
            span.record_exception(e)
            span.set_attribute("audit.signature_status", SignatureStatus.UNSIGNED.value)
            logger.critical(
                "SignatureFailure: audit entry persisted with fallback hash",
                extra={
                    "audit_id": entry.id,
                    "entity": entry.entity,
                    "entity_id": entry.entity_id,
                    "action": entry.action,
                    "error": str(e),
                    "audit_category": "signature_failure"
                }
            )
            return entry.model_copy(update={
                "signature": content_digest(canonical),
                "signature_algorithm": FALLBACK_ALGORITHM,
                "signature_status": SignatureStatus.UNSIGNED
            })

        span.set_attribute("audit.signature_status", SignatureStatus.SIGNED.value)
        return entry.model_copy(update={
            "signature": token,
            "signature_algorithm": self.signer.algorithm,
            "signature_status": SignatureStatus.SIGNED,
            "key_id": self.signer.key_id
        })

    def verify(self, entry_id: str) -> VerificationResult:
        """
        Verify a stored entry against its signature.

        Returns:
            ``valid`` or ``invalid`` for signed entries. Entries recorded under
            signature failure are ``unsigned`` while their content hash matches
            and ``invalid`` once it does not

        Raises:
            AuditEntryNotFound: if the entry does not exist
        """
        with tracer.start_as_current_span("audit.verify") as span:
            span.set_attribute("audit.entry_id", entry_id)
            entry = self.store.get_audit_entry(entry_id)
            if entry is None:
                raise AuditEntryNotFound(entry_id)

            if not entry.signature:
                result = VerificationResult.INVALID
            elif entry.signature_status == SignatureStatus.UNSIGNED:
                # Fallback entries still carry the content hash of their canonical bytes
                expected = content_digest(entry.canonical_bytes())
                if hmac.compare_digest(entry.signature.encode("utf-8"), expected.encode("utf-8")):
                    result = VerificationResult.UNSIGNED
                else:
                    result = VerificationResult.INVALID
            elif entry.signature_algorithm == FALLBACK_ALGORITHM:
                result = VerificationResult.INVALID
            elif self.signer.verify(entry.signature, entry.canonical_bytes(), entry.timestamp):
                result = VerificationResult.VALID
            else:
                result = VerificationResult.INVALID

            span.set_attribute("audit.verification_result", result.value)
            if result == VerificationResult.INVALID:
                logger.warning(
                    "Audit entry failed verification",
                    extra={"audit_id": entry_id, "entity": entry.entity, "entity_id": entry.entity_id}
                )
            return result

    def get_entry(self, entry_id: str) -> AuditEntry:
        entry = self.store.get_audit_entry(entry_id)
        if entry is None:
            raise AuditEntryNotFound(entry_id)
        return entry

    def list_entries(self, entity: str, entity_id: str) -> List[AuditEntry]:
        """Audit entries of one entity in chronological order."""
        with tracer.start_as_current_span("audit.list_entries") as span:
            span.set_attributes({"audit.entity": entity, "audit.entity_id": entity_id})
            entries = self.store.list_audit_entries(entity, entity_id)
            span.set_attribute("audit.entries_count", len(entries))
            return entries

    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Calculate field-level changes for detailed audit trail.

        Args:
            before: State before the change
            after: State after the change

        Returns:
            List[Dict]: List of field changes
        """
        changes = []

        for key in sorted(set(before.keys()) | set(after.keys())):
            if key in IGNORED_DIFF_FIELDS:
                continue

            old_value = before.get(key)
            new_value = after.get(key)
            if old_value != new_value:
                changes.append({
                    "field": key,
                    "old_value": old_value,
                    "new_value": new_value
                })

        return changes
