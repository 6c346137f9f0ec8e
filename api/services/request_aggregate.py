# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Benefit request aggregate.

The only component allowed to mutate request state. Every operation loads
the request, checks the caller's expected version, asks the transition
guard, builds the new state, then persists the request, its audit entries
and its outbox events in one transaction.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from models.base import utcnow
from models.entities import (
    Actor,
    AuditEntry,
    BenefitRequest,
    PaymentDetails,
    Pendency,
    StatusHistoryEntry,
)
from models.enums import DenialReason, EventType, Operation, RequestStatus, ReviewOutcome
from models.events import DomainEvent
from models.requests import CreateBenefitRequest, ReviewDecision
from domain import pendencies as pendency_rules
from domain.errors import (
    BusinessRuleViolation,
    CustomException,
    InvalidRepresentative,
    InvalidTransition,
    MissingDocuments,
    PaymentInfoMissing,
    RequestNotFound,
    RoleNotPermitted,
    ConcurrentModification,
)
from domain.transitions import (
    Deny,
    GuardContext,
    OPERATION_ROLES,
    available_operations as guard_available_operations,
    decide,
    is_role_permitted,
    should_stop_at_open,
)
from .audit import AuditRecorder

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

AUDIT_ENTITY = "benefit_request"

REVIEW_OPERATIONS = {
    ReviewOutcome.APPROVE: Operation.APPROVE,
    ReviewOutcome.PEND: Operation.PEND,
    ReviewOutcome.REJECT: Operation.REJECT,
}

# Fields left out of audit snapshots; status carries the history and the route never changes
SNAPSHOT_EXCLUDE = {"history", "route", "event_sequence"}


@dataclass
class OperationResult:
    """New request state plus the events the operation emitted."""
    request: BenefitRequest
    events: List[DomainEvent]
    audit_entries: List[AuditEntry] = field(default_factory=list)


EventSpec = Tuple[EventType, Dict[str, Any]]


def generate_protocol(now: datetime) -> str:
    """Human facing protocol number, e.g. SOL-20261018-3F9A1C."""
    return f"SOL-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def snapshot(request: BenefitRequest) -> Dict[str, Any]:
    return request.model_dump(mode="json", exclude=SNAPSHOT_EXCLUDE)


def denial_to_error(denial: Deny, request: BenefitRequest, operation: Operation) -> CustomException:
    """Convert a guard denial into the matching typed error."""
    if denial.reason == DenialReason.ROLE_NOT_PERMITTED:
        return RoleNotPermitted(denial.message, request.status.value, operation.value)
    if denial.reason == DenialReason.INVALID_TRANSITION:
        return InvalidTransition(denial.message, request.status.value, operation.value)
    if denial.rule == "missing_documents":
        return MissingDocuments(list(denial.details))
    if denial.rule == "invalid_representative":
        return InvalidRepresentative(denial.message)
    if denial.rule == "payment_info_missing":
        return PaymentInfoMissing(denial.message)
    return BusinessRuleViolation(denial.message, rule=denial.rule or "business_rule", details=list(denial.details))


class RequestAggregate:
    """
    Operations on benefit requests.

    Collaborators are passed in explicitly; the audit recorder writes through
    the same unit of work as the request so both commit together.
    """

    def __init__(
        self,
        store,
        resolver,
        document_checker,
        payment_provider,
        audit_recorder: AuditRecorder,
        event_bus=None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.resolver = resolver
        self.document_checker = document_checker
        self.payment_provider = payment_provider
        self.audit = audit_recorder
        self.event_bus = event_bus
        self.clock = clock

    # Reads

    def get(self, request_id: str) -> BenefitRequest:
        request = self.store.get_request(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    def get_history(self, request_id: str) -> List[StatusHistoryEntry]:
        """Ordered status history of a request."""
        return list(self.get(request_id).history)

    def available_operations(self, request_id: str, actor: Actor) -> List[Operation]:
        """Operations the actor could attempt now, for UI affordances."""
        return guard_available_operations(self.get(request_id), actor)

    def overdue_pendencies(self, request_id: str, now: Optional[datetime] = None) -> List[Pendency]:
        return pendency_rules.overdue_pendencies(self.get(request_id), now or self.clock())

    # Internals

    def _load(self, request_id: str, expected_version: int) -> BenefitRequest:
        request = self.get(request_id)
        if request.version != expected_version:
            raise ConcurrentModification(request_id, expected_version, request.version)
        return request

    def _guard(
        self,
        request: BenefitRequest,
        operation: Operation,
        actor: Actor,
        context: Optional[GuardContext] = None
    ) -> RequestStatus:
        decision = decide(request.status, operation, actor, request, context)
        if isinstance(decision, Deny):
            logger.warning(
                "Benefit request operation denied",
                extra={
                    "request_id": request.id,
                    "operation": operation.value,
                    "status": request.status.value,
                    "user_id": actor.user_id,
                    "reason": decision.reason.value,
                    "rule": decision.rule
                }
            )
            raise denial_to_error(decision, request, operation)
        return decision.target

    def _step(
        self,
        request: BenefitRequest,
        actor: Actor,
        now: datetime,
        correlation_id: str,
        target: Optional[RequestStatus] = None,
        justification: Optional[str] = None,
        **changes
    ) -> BenefitRequest:
        """Build the next state; a target status appends one history entry."""
        data = request.model_dump()
        if target is not None:
            entry = StatusHistoryEntry(
                from_status=request.status,
                to_status=target,
                actor_id=actor.user_id,
                actor_roles=list(actor.roles),
                occurred_at=now,
                justification=justification,
                correlation_id=correlation_id
            )
            data["history"] = [*request.history, entry]
            data["status"] = target
        data.update(changes)
        data["version"] = request.version + 1
        data["updated_at"] = now
        data["updated_by"] = actor.user_id
        return BenefitRequest.model_validate(data)

    def _event_payload(self, request: BenefitRequest, **extra) -> Dict[str, Any]:
        payload = {
            "protocol": request.protocol,
            "benefitType": request.benefit_type,
            "beneficiaryId": request.beneficiary.id,
            "unitId": request.unit_id,
            "status": request.status.value
        }
        payload.update(extra)
        return payload

    def _persist(
        self,
        operation: Operation,
        actor: Actor,
        original: Optional[BenefitRequest],
        states: List[BenefitRequest],
        event_specs: List[EventSpec],
        correlation_id: str,
        now: datetime
    ) -> OperationResult:
        """Write the final state, one audit entry per step and the events in one transaction."""
        final = states[-1]
        sequence = original.event_sequence if original is not None else 0
        events = []
        for event_type, payload in event_specs:
            sequence += 1
            events.append(DomainEvent(
                event_type=event_type,
                aggregate_id=final.id,
                correlation_id=correlation_id,
                occurred_at=now,
                sequence=sequence,
                payload=payload
            ))
        final = final.model_copy(update={"event_sequence": sequence})
        states = [*states[:-1], final]

        audit_entries = []
        with self.store.transaction() as uow:
            uow.save_request(final, expected_version=original.version if original is not None else None)

            previous = original
            for state in states:
                audit_entries.append(self.audit.record(
                    entity=AUDIT_ENTITY,
                    entity_id=final.id,
                    action=operation.value,
                    actor=actor,
                    before=snapshot(previous) if previous is not None else None,
                    after=snapshot(state),
                    correlation_id=correlation_id,
                    uow=uow,
                    timestamp=now
                ))
                previous = state

            uow.add_events(events)

        if self.event_bus is not None:
            self.event_bus.notify(events)

        logger.info(
            "Benefit request operation committed",
            extra={
                "request_id": final.id,
                "operation": operation.value,
                "from_status": original.status.value if original is not None else None,
                "to_status": final.status.value,
                "version": final.version,
                "events": [e.event_type.value for e in events],
                "correlation_id": correlation_id,
                "user_id": actor.user_id
            }
        )
        return OperationResult(request=final, events=events, audit_entries=audit_entries)

    def _run(
        self,
        operation: Operation,
        request_id: str,
        expected_version: int,
        actor: Actor,
        correlation_id: Optional[str],
        build: Callable[[BenefitRequest, datetime, str], Tuple[List[BenefitRequest], List[EventSpec]]]
    ) -> OperationResult:
        with tracer.start_as_current_span(f"request_aggregate.{operation.value}") as span:
            span.set_attributes({
                "request.id": request_id,
                "request.expected_version": expected_version,
                "request.operation": operation.value,
                "user.id": actor.user_id
            })
            correlation_id = correlation_id or actor.correlation_id or str(uuid.uuid4())
            try:
                request = self._load(request_id, expected_version)
                now = self.clock()
                states, event_specs = build(request, now, correlation_id)
                result = self._persist(operation, actor, request, states, event_specs, correlation_id, now)
            except CustomException as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.error_type))
                raise

            span.set_attributes({
                "request.status": result.request.status.value,
                "request.version": result.request.version,
                "request.events": len(result.events)
            })
            return result

    # Operations

    def create(
        self,
        actor: Actor,
        data: CreateBenefitRequest,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """
        Open a new request in Draft with its workflow route pinned.

        Raises:
            RoleNotPermitted: if the actor cannot create requests
            ConfigurationMissing: if the benefit type has no active route
        """
        with tracer.start_as_current_span("request_aggregate.create") as span:
            span.set_attributes({
                "request.benefit_type": data.benefit_type,
                "request.origin": data.origin.value,
                "user.id": actor.user_id
            })
            correlation_id = correlation_id or actor.correlation_id or str(uuid.uuid4())

            if not actor.has_any_role(OPERATION_ROLES[Operation.CREATE]):
                error = RoleNotPermitted(
                    f"Roles {sorted(r.value for r in actor.roles)} cannot perform 'create'",
                    operation=Operation.CREATE.value
                )
                span.record_exception(error)
                raise error

            now = self.clock()
            route = self.resolver.resolve(data.benefit_type, now)
            request = BenefitRequest(
                protocol=generate_protocol(now),
                beneficiary=data.beneficiary,
                requester=data.requester,
                benefit_type=data.benefit_type,
                origin=data.origin,
                unit_id=data.unit_id or actor.unit_id,
                route=route,
                attached_documents=list(dict.fromkeys(data.attached_documents)),
                created_at=now,
                updated_at=now,
                created_by=actor.user_id,
                updated_by=actor.user_id
            )
            span.set_attribute("request.id", request.id)

            event_specs = [(
                EventType.REQUEST_CREATED,
                self._event_payload(request, origin=request.origin.value, configVersion=route.config_version)
            )]
            return self._persist(Operation.CREATE, actor, None, [request], event_specs, correlation_id, now)

    def submit(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """
        Submit a draft.

        Stops at Open when the route has an intake review gate or the request
        came through the messaging channel; otherwise continues to InAnalysis.

        Raises:
            MissingDocuments: if mandatory documents are not attached
            InvalidRepresentative: if a minor lacks a first-degree legal representative
        """
        def build(request: BenefitRequest, now: datetime, cid: str):
            context = GuardContext(
                missing_documents=self.document_checker.missing_documents(
                    request.benefit_type, request.attached_documents
                ),
                now=now
            )
            target = self._guard(request, Operation.SUBMIT, actor, context)
            states = [self._step(request, actor, now, cid, target=target)]

            if not should_stop_at_open(request):
                opened = states[-1]
                target = self._guard(opened, Operation.SEND_TO_ANALYSIS, actor)
                states.append(self._step(opened, actor, now, cid, target=target))

            final = states[-1]
            stage = "analysis" if final.status == RequestStatus.IN_ANALYSIS else "intake"
            return states, [(EventType.REQUEST_SUBMITTED, self._event_payload(final, stage=stage))]

        return self._run(Operation.SUBMIT, request_id, expected_version, actor, correlation_id, build)

    def send_to_analysis(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Move an Open request into analysis after intake review."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            target = self._guard(request, Operation.SEND_TO_ANALYSIS, actor, GuardContext(now=now))
            state = self._step(request, actor, now, cid, target=target)
            return [state], [(EventType.REQUEST_SUBMITTED, self._event_payload(state, stage="analysis"))]

        return self._run(Operation.SEND_TO_ANALYSIS, request_id, expected_version, actor, correlation_id, build)

    def record_technical_opinion(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        opinion: str,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Record the technical opinion required before approval. Emits no event."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            self._guard(request, Operation.RECORD_OPINION, actor, GuardContext(now=now))
            if not opinion or not opinion.strip():
                raise BusinessRuleViolation("Technical opinion cannot be empty", rule="technical_opinion_required")
            state = self._step(
                request, actor, now, cid,
                technical_opinion=opinion.strip(),
                opinion_by=actor.user_id,
                opinion_at=now
            )
            return [state], []

        return self._run(Operation.RECORD_OPINION, request_id, expected_version, actor, correlation_id, build)

    def review(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        decision: ReviewDecision,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """
        Apply a reviewer decision.

        approve needs a technical opinion and no open pendencies, pend raises
        one or more pendencies for a new analysis cycle, reject cancels.
        """
        operation = REVIEW_OPERATIONS[decision.outcome]

        def build(request: BenefitRequest, now: datetime, cid: str):
            context = GuardContext(technical_opinion=decision.technical_opinion, now=now)
            target = self._guard(request, operation, actor, context)

            if operation == Operation.APPROVE:
                changes = {}
                if decision.technical_opinion:
                    if not is_role_permitted(Operation.RECORD_OPINION, actor, request):
                        raise RoleNotPermitted(
                            "Actor cannot record the technical opinion for this route",
                            request.status.value,
                            Operation.RECORD_OPINION.value
                        )
                    changes = {
                        "technical_opinion": decision.technical_opinion.strip(),
                        "opinion_by": actor.user_id,
                        "opinion_at": now
                    }
                state = self._step(request, actor, now, cid, target=target, justification=decision.justification, **changes)
                return [state], [(EventType.REQUEST_APPROVED, self._event_payload(state, approvedBy=actor.user_id))]

            if operation == Operation.PEND:
                cycle = request.analysis_cycle + 1
                raised = pendency_rules.raise_pendencies(decision.items, actor, cycle, now)
                state = self._step(
                    request, actor, now, cid,
                    target=target,
                    justification=decision.justification,
                    pendencies=[*request.pendencies, *raised],
                    analysis_cycle=cycle
                )
                payload = self._event_payload(
                    state,
                    justification=decision.justification,
                    cycle=cycle,
                    pendencies=[
                        {
                            "id": p.id,
                            "description": p.description,
                            "dueAt": p.due_at.isoformat() if p.due_at else None
                        }
                        for p in raised
                    ]
                )
                return [state], [(EventType.REQUEST_PENDED, payload)]

            state = self._step(
                request, actor, now, cid,
                target=target,
                justification=decision.justification,
                closing_reason=decision.justification
            )
            return [state], [(EventType.REQUEST_REJECTED, self._event_payload(state, justification=decision.justification))]

        return self._run(operation, request_id, expected_version, actor, correlation_id, build)

    def resolve_pendency(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        pendency_id: str,
        resolution_note: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Resolve one pendency. Not a transition; emits no event."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            self._guard(request, Operation.RESOLVE_PENDENCY, actor, GuardContext(now=now))
            updated = pendency_rules.resolve_pendency(request.pendencies, pendency_id, actor, resolution_note, now)
            return [self._step(request, actor, now, cid, pendencies=updated)], []

        return self._run(Operation.RESOLVE_PENDENCY, request_id, expected_version, actor, correlation_id, build)

    def resubmit(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Return a Pending request to analysis once every pendency is resolved."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            target = self._guard(request, Operation.RESUBMIT, actor, GuardContext(now=now))
            state = self._step(request, actor, now, cid, target=target)
            resolved = [p.id for p in pendency_rules.pendencies_for_cycle(request)]
            payload = self._event_payload(state, cycle=request.analysis_cycle, resolvedPendencies=resolved)
            return [state], [(EventType.REQUEST_RESUBMITTED, payload)]

        return self._run(Operation.RESUBMIT, request_id, expected_version, actor, correlation_id, build)

    def attach_documents(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        document_types: List[str],
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Register attached document types on a non-terminal request. Emits no event."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            self._guard(request, Operation.ATTACH_DOCUMENTS, actor, GuardContext(now=now))
            cleaned = [doc.strip() for doc in document_types if doc and doc.strip()]
            if not cleaned:
                raise BusinessRuleViolation("At least one document type is required", rule="documents_required")
            merged = list(dict.fromkeys([*request.attached_documents, *cleaned]))
            return [self._step(request, actor, now, cid, attached_documents=merged)], []

        return self._run(Operation.ATTACH_DOCUMENTS, request_id, expected_version, actor, correlation_id, build)

    def release(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        payment_details: PaymentDetails,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """
        Register the benefit hand-over.

        Raises:
            PaymentInfoMissing: if the beneficiary has no usable payment channel
        """
        def build(request: BenefitRequest, now: datetime, cid: str):
            channel = self.payment_provider.get_payment_channel(request.beneficiary.id)
            target = self._guard(request, Operation.RELEASE, actor, GuardContext(payment_channel=channel, now=now))

            payment = {
                "amount": str(payment_details.amount),
                "method": payment_details.method.value,
                "installment": payment_details.installment,
                "reference": payment_details.reference,
                "channelMethod": channel.method.value,
                "maskedKey": channel.masked_key(),
                "releasedBy": actor.user_id,
                "releasedAt": now.isoformat()
            }
            state = self._step(request, actor, now, cid, target=target, payment=payment)
            return [state], [(EventType.REQUEST_RELEASED, self._event_payload(state, payment=payment))]

        return self._run(Operation.RELEASE, request_id, expected_version, actor, correlation_id, build)

    def complete(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        delivery_note: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Confirm delivery of a released benefit."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            target = self._guard(request, Operation.COMPLETE, actor, GuardContext(now=now))
            state = self._step(
                request, actor, now, cid,
                target=target,
                justification=delivery_note,
                delivery_note=delivery_note
            )
            return [state], [(EventType.REQUEST_COMPLETED, self._event_payload(state, deliveryNote=delivery_note))]

        return self._run(Operation.COMPLETE, request_id, expected_version, actor, correlation_id, build)

    def cancel(
        self,
        request_id: str,
        expected_version: int,
        actor: Actor,
        reason: str,
        correlation_id: Optional[str] = None
    ) -> OperationResult:
        """Cancel a request from any non-terminal status."""
        def build(request: BenefitRequest, now: datetime, cid: str):
            target = self._guard(request, Operation.CANCEL, actor, GuardContext(now=now))
            if not reason or not reason.strip():
                raise BusinessRuleViolation("Cancellation requires a reason", rule="justification_required")
            state = self._step(
                request, actor, now, cid,
                target=target,
                justification=reason.strip(),
                closing_reason=reason.strip()
            )
            payload = self._event_payload(state, reason=reason.strip(), previousStatus=request.status.value)
            return [state], [(EventType.REQUEST_CANCELLED, payload)]

        return self._run(Operation.CANCEL, request_id, expected_version, actor, correlation_id, build)
