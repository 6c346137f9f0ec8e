# SPDX-License-Identifier: Apache-2.0

"""
Transition guard for the benefit request state machine.

This module contains pure functions: the static state table, the role matrix,
the business rule predicates and the ``decide`` function combining them.
Nothing here touches storage or raises; denials are returned as values.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

from models.base import utcnow
from models.entities import Actor, BenefitRequest, PaymentChannel, TERMINAL_STATUSES
from models.enums import (
    DenialReason,
    GateAction,
    Kinship,
    Operation,
    RequestOrigin,
    RequestStatus,
    Role,
)


NON_TERMINAL_STATUSES = frozenset(s for s in RequestStatus if s not in TERMINAL_STATUSES)

# operation -> {from status: to status}
TRANSITIONS: Dict[Operation, Dict[RequestStatus, RequestStatus]] = {
    Operation.SUBMIT: {RequestStatus.DRAFT: RequestStatus.OPEN},
    Operation.SEND_TO_ANALYSIS: {RequestStatus.OPEN: RequestStatus.IN_ANALYSIS},
    Operation.PEND: {RequestStatus.IN_ANALYSIS: RequestStatus.PENDING},
    Operation.APPROVE: {RequestStatus.IN_ANALYSIS: RequestStatus.APPROVED},
    Operation.REJECT: {RequestStatus.IN_ANALYSIS: RequestStatus.CANCELLED},
    Operation.RESUBMIT: {RequestStatus.PENDING: RequestStatus.IN_ANALYSIS},
    Operation.RELEASE: {RequestStatus.APPROVED: RequestStatus.RELEASED},
    Operation.COMPLETE: {RequestStatus.RELEASED: RequestStatus.COMPLETED},
    Operation.CANCEL: {status: RequestStatus.CANCELLED for status in NON_TERMINAL_STATUSES},
}

# Operations that mutate the request without changing its status
IN_PLACE_OPERATIONS: Dict[Operation, FrozenSet[RequestStatus]] = {
    Operation.RECORD_OPINION: frozenset({RequestStatus.IN_ANALYSIS}),
    Operation.RESOLVE_PENDENCY: frozenset({RequestStatus.PENDING}),
    Operation.ATTACH_DOCUMENTS: NON_TERMINAL_STATUSES,
}

ALLOWED_EDGES: FrozenSet[Tuple[RequestStatus, RequestStatus]] = frozenset(
    (source, target)
    for edges in TRANSITIONS.values()
    for source, target in edges.items()
)

OPERATION_ROLES: Dict[Operation, FrozenSet[Role]] = {
    Operation.CREATE: frozenset({Role.UNIT_TECHNICIAN, Role.MANAGER, Role.ADMIN}),
    Operation.SUBMIT: frozenset({Role.UNIT_TECHNICIAN, Role.ADMIN}),
    Operation.SEND_TO_ANALYSIS: frozenset({Role.UNIT_TECHNICIAN, Role.ADMIN}),
    Operation.RECORD_OPINION: frozenset({Role.TECHNICAL_REVIEWER, Role.MANAGER, Role.ADMIN}),
    Operation.APPROVE: frozenset({Role.MANAGER, Role.TECHNICAL_REVIEWER, Role.ADMIN}),
    Operation.PEND: frozenset({Role.MANAGER, Role.TECHNICAL_REVIEWER, Role.ADMIN}),
    Operation.REJECT: frozenset({Role.MANAGER, Role.TECHNICAL_REVIEWER, Role.ADMIN}),
    Operation.RESOLVE_PENDENCY: frozenset({Role.UNIT_TECHNICIAN, Role.ADMIN}),
    Operation.RESUBMIT: frozenset({Role.UNIT_TECHNICIAN, Role.ADMIN}),
    Operation.ATTACH_DOCUMENTS: frozenset({Role.UNIT_TECHNICIAN, Role.ADMIN}),
    Operation.RELEASE: frozenset({Role.UNIT_TECHNICIAN, Role.MANAGER, Role.ADMIN}),
    Operation.COMPLETE: frozenset({Role.UNIT_TECHNICIAN, Role.MANAGER, Role.ADMIN}),
    Operation.CANCEL: frozenset({Role.MANAGER, Role.ADMIN}),
}

# Route gate that narrows who may perform an operation
OPERATION_GATES: Dict[Operation, GateAction] = {
    Operation.SEND_TO_ANALYSIS: GateAction.INTAKE_REVIEW,
    Operation.RECORD_OPINION: GateAction.TECHNICAL_OPINION,
    Operation.APPROVE: GateAction.APPROVAL,
    Operation.PEND: GateAction.APPROVAL,
    Operation.REJECT: GateAction.APPROVAL,
    Operation.RELEASE: GateAction.RELEASE,
    Operation.COMPLETE: GateAction.DELIVERY,
}

FIRST_DEGREE_KINSHIPS = frozenset({Kinship.FATHER, Kinship.MOTHER, Kinship.LEGAL_GUARDIAN})


@dataclass(frozen=True)
class Allow:
    """Guard accepted the operation."""
    target: RequestStatus


@dataclass(frozen=True)
class Deny:
    """Guard rejected the operation with a typed reason."""
    reason: DenialReason
    message: str
    rule: Optional[str] = None
    details: Tuple[str, ...] = ()


Decision = Union[Allow, Deny]


@dataclass
class GuardContext:
    """Facts gathered from collaborators before asking the guard."""
    missing_documents: List[str] = field(default_factory=list)
    payment_channel: Optional[PaymentChannel] = None
    technical_opinion: Optional[str] = None
    now: datetime = field(default_factory=utcnow)


def roles_for(operation: Operation, request: Optional[BenefitRequest] = None) -> Set[Role]:
    """
    Roles allowed to perform an operation on a request.

    When the pinned route carries a gate for the operation, only the gate's
    role or Admin may perform it.

    Args:
        operation: Requested operation
        request: Request snapshot whose route may narrow the matrix

    Returns:
        Set of permitted roles
    """
    allowed = set(OPERATION_ROLES.get(operation, frozenset()))
    gate_action = OPERATION_GATES.get(operation)
    if request is not None and gate_action is not None:
        gate = request.route.gate_for(gate_action)
        if gate is not None:
            allowed = {gate.role, Role.ADMIN}
    return allowed


def is_role_permitted(operation: Operation, actor: Actor, request: Optional[BenefitRequest] = None) -> bool:
    """Check the role matrix plus ownership rules for cancel."""
    if actor.has_any_role(roles_for(operation, request)):
        return True

    if operation == Operation.CANCEL and request is not None:
        if request.created_by == actor.user_id:
            return True
        owns_unit = request.unit_id is not None and request.unit_id == actor.unit_id
        if owns_unit and actor.has_role(Role.UNIT_TECHNICIAN):
            return True

    return False


def target_status(current: RequestStatus, operation: Operation) -> Optional[RequestStatus]:
    """Status an operation leads to from ``current``, or None if not permitted."""
    if operation in IN_PLACE_OPERATIONS:
        return current if current in IN_PLACE_OPERATIONS[operation] else None
    return TRANSITIONS.get(operation, {}).get(current)


def has_legal_representative(request: BenefitRequest, on: datetime) -> bool:
    """Minors need a first-degree requester recorded as legal representative."""
    if not request.beneficiary.is_minor(on.date()):
        return True
    requester = request.requester
    if requester is None:
        return False
    return requester.is_legal_representative and requester.kinship in FIRST_DEGREE_KINSHIPS


def should_stop_at_open(request: BenefitRequest) -> bool:
    """Submitted requests wait for intake review unless the route skips it."""
    return (
        request.route.has_gate(GateAction.INTAKE_REVIEW)
        or request.origin == RequestOrigin.MESSAGING_CHANNEL
    )


def check_business_rules(
    operation: Operation,
    request: BenefitRequest,
    context: GuardContext
) -> Optional[Deny]:
    """
    Evaluate the rule predicates attached to an operation.

    Args:
        operation: Requested operation
        request: Current request snapshot
        context: Facts from the document checker and payment source

    Returns:
        Deny for the first failing rule, or None when all rules pass
    """
    if operation == Operation.SUBMIT:
        if context.missing_documents:
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                f"Missing mandatory documents: {', '.join(context.missing_documents)}",
                rule="missing_documents",
                details=tuple(context.missing_documents)
            )
        if not has_legal_representative(request, context.now):
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                "Minor beneficiary requires a first-degree legal representative",
                rule="invalid_representative"
            )

    elif operation == Operation.APPROVE:
        opinion = context.technical_opinion or request.technical_opinion
        if not opinion or not opinion.strip():
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                "Approval requires a recorded technical opinion",
                rule="technical_opinion_required"
            )
        if request.open_pendencies():
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                "Request still has open pendencies",
                rule="open_pendencies",
                details=tuple(p.id for p in request.open_pendencies())
            )

    elif operation == Operation.RESUBMIT:
        open_items = request.open_pendencies()
        if open_items:
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                f"{len(open_items)} pendencies must be resolved before resubmitting",
                rule="open_pendencies",
                details=tuple(p.id for p in open_items)
            )

    elif operation == Operation.RELEASE:
        channel = context.payment_channel
        if channel is None or not channel.is_usable():
            return Deny(
                DenialReason.BUSINESS_RULE_VIOLATION,
                "Beneficiary has no payment channel registered",
                rule="payment_info_missing"
            )

    return None


def decide(
    current: RequestStatus,
    operation: Operation,
    actor: Actor,
    request: BenefitRequest,
    context: Optional[GuardContext] = None
) -> Decision:
    """
    Decide whether an actor may perform an operation on a request.

    The state table is checked first, then the role matrix (narrowed by the
    pinned route), then the business rules.

    Args:
        current: Current request status
        operation: Requested operation
        actor: Authenticated actor
        request: Request snapshot
        context: Facts from collaborators; rules are skipped when omitted

    Returns:
        Allow with the target status, or Deny with a typed reason
    """
    target = target_status(current, operation)
    if target is None:
        return Deny(
            DenialReason.INVALID_TRANSITION,
            f"Operation '{operation.value}' is not allowed from status '{current.value}'"
        )

    if not is_role_permitted(operation, actor, request):
        return Deny(
            DenialReason.ROLE_NOT_PERMITTED,
            f"Roles {sorted(r.value for r in actor.roles)} cannot perform '{operation.value}'"
        )

    if context is not None:
        denial = check_business_rules(operation, request, context)
        if denial is not None:
            return denial

    return Allow(target=target)


def available_operations(request: BenefitRequest, actor: Actor) -> List[Operation]:
    """
    Operations the actor could currently attempt on the request.

    Only the state table and role matrix are consulted; business rules are
    reported when the operation is attempted.
    """
    return [
        operation
        for operation in Operation
        if operation != Operation.CREATE
        and isinstance(decide(request.status, operation, actor, request), Allow)
    ]


def is_valid_walk(pairs: List[Tuple[RequestStatus, RequestStatus]]) -> bool:
    """Check a sequence of (from, to) pairs is a connected walk of the state table."""
    previous_to = RequestStatus.DRAFT
    for source, target in pairs:
        if source != previous_to or (source, target) not in ALLOWED_EDGES:
            return False
        previous_to = target
    return True
