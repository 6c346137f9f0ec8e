# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the transition guard.
"""

import pytest
from datetime import date, datetime, timezone
from bson import ObjectId

from models.entities import (
    Actor,
    BeneficiaryRef,
    BenefitRequest,
    PaymentChannel,
    Pendency,
    RequesterInfo,
    WorkflowGate,
    WorkflowRoute,
)
from models.enums import (
    DenialReason,
    GateAction,
    Kinship,
    Operation,
    PaymentMethod,
    RequestOrigin,
    RequestStatus,
    Role,
)
from domain.transitions import (
    ALLOWED_EDGES,
    Allow,
    Deny,
    GuardContext,
    NON_TERMINAL_STATUSES,
    available_operations,
    decide,
    has_legal_representative,
    is_role_permitted,
    is_valid_walk,
    roles_for,
    should_stop_at_open,
    target_status,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

DEFAULT_GATES = [
    WorkflowGate(order=1, action=GateAction.TECHNICAL_OPINION, role=Role.TECHNICAL_REVIEWER),
    WorkflowGate(order=2, action=GateAction.APPROVAL, role=Role.MANAGER),
]


def make_request(status=RequestStatus.DRAFT, gates=None, **overrides):
    data = {
        "protocol": "SOL-20261018-ABC123",
        "beneficiary": BeneficiaryRef(id=str(ObjectId()), name="Maria", birth_date=date(1985, 3, 2)),
        "benefit_type": "birth_allowance",
        "origin": RequestOrigin.IN_PERSON,
        "unit_id": "cras-centro",
        "status": status,
        "route": WorkflowRoute(benefit_type="birth_allowance", gates=gates or DEFAULT_GATES, config_version=1),
        "created_by": "user-creator",
        "updated_by": "user-creator",
    }
    data.update(overrides)
    return BenefitRequest(**data)


def actor(*roles, user_id="user-x", unit_id=None):
    return Actor(user_id=user_id, roles=list(roles), unit_id=unit_id)


class TestStateTable:
    """Test the static transition table."""

    def test_terminal_statuses_have_no_edges(self):
        for operation in Operation:
            assert target_status(RequestStatus.COMPLETED, operation) is None
            assert target_status(RequestStatus.CANCELLED, operation) is None

    def test_cancel_from_every_non_terminal_status(self):
        for status in NON_TERMINAL_STATUSES:
            assert target_status(status, Operation.CANCEL) == RequestStatus.CANCELLED

    def test_in_place_operations_keep_status(self):
        assert target_status(RequestStatus.IN_ANALYSIS, Operation.RECORD_OPINION) == RequestStatus.IN_ANALYSIS
        assert target_status(RequestStatus.PENDING, Operation.RESOLVE_PENDENCY) == RequestStatus.PENDING
        assert target_status(RequestStatus.APPROVED, Operation.ATTACH_DOCUMENTS) == RequestStatus.APPROVED
        assert target_status(RequestStatus.DRAFT, Operation.RECORD_OPINION) is None

    def test_no_skipping_forward(self):
        assert target_status(RequestStatus.DRAFT, Operation.APPROVE) is None
        assert target_status(RequestStatus.IN_ANALYSIS, Operation.RELEASE) is None
        assert (RequestStatus.DRAFT, RequestStatus.IN_ANALYSIS) not in ALLOWED_EDGES

    def test_valid_walk(self):
        walk = [
            (RequestStatus.DRAFT, RequestStatus.OPEN),
            (RequestStatus.OPEN, RequestStatus.IN_ANALYSIS),
            (RequestStatus.IN_ANALYSIS, RequestStatus.PENDING),
            (RequestStatus.PENDING, RequestStatus.IN_ANALYSIS),
            (RequestStatus.IN_ANALYSIS, RequestStatus.APPROVED),
            (RequestStatus.APPROVED, RequestStatus.RELEASED),
            (RequestStatus.RELEASED, RequestStatus.COMPLETED),
        ]
        assert is_valid_walk(walk)
        assert is_valid_walk([])

    def test_invalid_walks(self):
        assert not is_valid_walk([(RequestStatus.OPEN, RequestStatus.IN_ANALYSIS)])
        assert not is_valid_walk([
            (RequestStatus.DRAFT, RequestStatus.OPEN),
            (RequestStatus.IN_ANALYSIS, RequestStatus.APPROVED),
        ])
        assert not is_valid_walk([
            (RequestStatus.DRAFT, RequestStatus.CANCELLED),
            (RequestStatus.CANCELLED, RequestStatus.OPEN),
        ])


class TestRoleMatrix:
    """Test role resolution and route narrowing."""

    @pytest.mark.parametrize("operation,role,expected", [
        (Operation.SUBMIT, Role.UNIT_TECHNICIAN, True),
        (Operation.SUBMIT, Role.MANAGER, False),
        (Operation.RECORD_OPINION, Role.UNIT_TECHNICIAN, False),
        (Operation.RESOLVE_PENDENCY, Role.UNIT_TECHNICIAN, True),
        (Operation.RESOLVE_PENDENCY, Role.TECHNICAL_REVIEWER, False),
        (Operation.RELEASE, Role.TECHNICAL_REVIEWER, False),
        (Operation.CANCEL, Role.MANAGER, True),
        (Operation.CANCEL, Role.TECHNICAL_REVIEWER, False),
    ])
    def test_static_matrix(self, operation, role, expected):
        assert (role in roles_for(operation)) is expected

    def test_gate_narrows_roles(self):
        request = make_request(RequestStatus.IN_ANALYSIS)

        assert roles_for(Operation.APPROVE, request) == {Role.MANAGER, Role.ADMIN}
        assert roles_for(Operation.RECORD_OPINION, request) == {Role.TECHNICAL_REVIEWER, Role.ADMIN}

    def test_without_gate_matrix_applies(self):
        request = make_request(RequestStatus.IN_ANALYSIS)

        assert Role.MANAGER in roles_for(Operation.RELEASE, request)
        assert Role.UNIT_TECHNICIAN in roles_for(Operation.RELEASE, request)

    def test_admin_always_permitted(self):
        request = make_request(RequestStatus.IN_ANALYSIS)

        for operation in Operation:
            assert is_role_permitted(operation, actor(Role.ADMIN), request)

    def test_cancel_ownership(self):
        request = make_request()

        assert is_role_permitted(Operation.CANCEL, actor(user_id="user-creator"), request)
        assert is_role_permitted(Operation.CANCEL, actor(Role.UNIT_TECHNICIAN, unit_id="cras-centro"), request)
        assert not is_role_permitted(Operation.CANCEL, actor(Role.UNIT_TECHNICIAN, unit_id="cras-sul"), request)
        assert not is_role_permitted(Operation.CANCEL, actor(Role.TECHNICAL_REVIEWER, unit_id="cras-centro"), request)


class TestDecide:
    """Test the combined decision function."""

    def test_invalid_transition_checked_first(self):
        decision = decide(RequestStatus.DRAFT, Operation.APPROVE, actor(Role.TECHNICAL_REVIEWER), make_request())

        assert isinstance(decision, Deny)
        assert decision.reason == DenialReason.INVALID_TRANSITION

    def test_role_denial(self):
        decision = decide(RequestStatus.DRAFT, Operation.SUBMIT, actor(Role.MANAGER), make_request())

        assert isinstance(decision, Deny)
        assert decision.reason == DenialReason.ROLE_NOT_PERMITTED

    def test_missing_documents(self):
        context = GuardContext(missing_documents=["birth_certificate"], now=NOW)

        decision = decide(RequestStatus.DRAFT, Operation.SUBMIT, actor(Role.UNIT_TECHNICIAN), make_request(), context)

        assert isinstance(decision, Deny)
        assert decision.reason == DenialReason.BUSINESS_RULE_VIOLATION
        assert decision.rule == "missing_documents"
        assert decision.details == ("birth_certificate",)

    def test_rules_skipped_without_context(self):
        decision = decide(RequestStatus.IN_ANALYSIS, Operation.APPROVE, actor(Role.MANAGER),
                          make_request(RequestStatus.IN_ANALYSIS))

        assert decision == Allow(target=RequestStatus.APPROVED)

    def test_approve_needs_opinion_and_closed_pendencies(self):
        pendency = Pendency(description="Falta CPF", raised_by="user-manager")
        request = make_request(RequestStatus.IN_ANALYSIS, technical_opinion="Favorável", pendencies=[pendency])

        decision = decide(request.status, Operation.APPROVE, actor(Role.MANAGER), request, GuardContext(now=NOW))
        assert decision.rule == "open_pendencies"

        request = make_request(RequestStatus.IN_ANALYSIS)
        decision = decide(request.status, Operation.APPROVE, actor(Role.MANAGER), request, GuardContext(now=NOW))
        assert decision.rule == "technical_opinion_required"

        context = GuardContext(technical_opinion="Favorável", now=NOW)
        decision = decide(request.status, Operation.APPROVE, actor(Role.MANAGER), request, context)
        assert decision == Allow(target=RequestStatus.APPROVED)

    def test_release_needs_usable_channel(self):
        request = make_request(RequestStatus.APPROVED)
        technician = actor(Role.UNIT_TECHNICIAN)

        empty = GuardContext(payment_channel=PaymentChannel(method=PaymentMethod.PIX), now=NOW)
        assert decide(request.status, Operation.RELEASE, technician, request, empty).rule == "payment_info_missing"

        missing = GuardContext(now=NOW)
        assert decide(request.status, Operation.RELEASE, technician, request, missing).rule == "payment_info_missing"

        usable = GuardContext(payment_channel=PaymentChannel(method=PaymentMethod.IN_KIND), now=NOW)
        assert decide(request.status, Operation.RELEASE, technician, request, usable) == Allow(RequestStatus.RELEASED)

    def test_available_operations(self):
        request = make_request(RequestStatus.IN_ANALYSIS)

        assert set(available_operations(request, actor(Role.MANAGER))) == {
            Operation.APPROVE, Operation.PEND, Operation.REJECT, Operation.CANCEL
        }
        assert set(available_operations(request, actor(Role.TECHNICAL_REVIEWER))) == {Operation.RECORD_OPINION}


class TestRepresentation:
    """Test representation and intake routing helpers."""

    def test_adult_needs_no_representative(self):
        assert has_legal_representative(make_request(), NOW)

    @pytest.mark.parametrize("kinship,flag,expected", [
        (Kinship.MOTHER, True, True),
        (Kinship.FATHER, True, True),
        (Kinship.LEGAL_GUARDIAN, True, True),
        (Kinship.MOTHER, False, False),
        (Kinship.GRANDPARENT, True, False),
        (Kinship.SIBLING, True, False),
    ])
    def test_minor_representative(self, kinship, flag, expected):
        child = BeneficiaryRef(id=str(ObjectId()), name="Pedro", birth_date=date(2020, 11, 1))
        requester = RequesterInfo(person_id=str(ObjectId()), name="Resp", kinship=kinship,
                                  is_legal_representative=flag)

        request = make_request(beneficiary=child, requester=requester)

        assert has_legal_representative(request, NOW) is expected

    def test_minor_without_requester(self):
        child = BeneficiaryRef(id=str(ObjectId()), name="Pedro", birth_date=date(2020, 11, 1))

        assert not has_legal_representative(make_request(beneficiary=child), NOW)

    def test_turns_adult_on_birthday(self):
        beneficiary = BeneficiaryRef(id=str(ObjectId()), name="Lia", birth_date=date(2008, 10, 18))

        assert not beneficiary.is_minor(date(2026, 10, 18))
        assert beneficiary.is_minor(date(2026, 10, 17))

    def test_stop_at_open(self):
        intake = DEFAULT_GATES + [WorkflowGate(order=3, action=GateAction.INTAKE_REVIEW, role=Role.UNIT_TECHNICIAN)]

        assert should_stop_at_open(make_request(gates=intake))
        assert should_stop_at_open(make_request(origin=RequestOrigin.MESSAGING_CHANNEL))
        assert not should_stop_at_open(make_request())
