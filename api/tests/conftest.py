# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import pytest
from datetime import date
from unittest.mock import Mock
from bson import ObjectId

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['MONGODB_DATABASE'] = 'beneficios_test'

from models.entities import Actor, BeneficiaryRef, PaymentChannel, RequesterInfo
from models.enums import Kinship, PaymentMethod, RequestOrigin, Role
from models.requests import CreateBenefitRequest
from services.audit import AuditRecorder
from services.memory_store import InMemoryStore
from services.payments import StaticPaymentInfoProvider
from services.request_aggregate import RequestAggregate
from services.signing import AuditSigner, SigningConfig
from services.workflow_config import (
    ConfiguredDocumentRequirementChecker,
    WorkflowConfigRegistry,
    WorkflowConfigResolver,
)

CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "config", "benefit_types.yaml")

TEST_SECRET = "test-audit-secret-0123456789abcdef-0123456789"

BIRTH_ALLOWANCE_DOCS = ["identity_document", "birth_certificate", "responsibility_term"]


@pytest.fixture
def admin():
    return Actor(user_id="user-admin", roles=[Role.ADMIN], name="Admin")


@pytest.fixture
def manager():
    return Actor(user_id="user-manager", roles=[Role.MANAGER], unit_id="cras-centro", name="Gestora")


@pytest.fixture
def reviewer():
    return Actor(user_id="user-reviewer", roles=[Role.TECHNICAL_REVIEWER], name="Assistente Social")


@pytest.fixture
def technician():
    return Actor(
        user_id="user-technician",
        roles=[Role.UNIT_TECHNICIAN],
        unit_id="cras-centro",
        name="Técnico CRAS",
        ip_address="10.0.0.15",
        user_agent="pytest"
    )


@pytest.fixture
def other_technician():
    return Actor(user_id="user-technician-2", roles=[Role.UNIT_TECHNICIAN], unit_id="cras-norte")


@pytest.fixture
def registry():
    """Registry loaded from the shipped benefit type configuration."""
    return WorkflowConfigRegistry.from_yaml(CONFIG_PATH)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def signer():
    """HS256 signer; fast enough for per-test use."""
    return AuditSigner(SigningConfig(algorithm="HS256", secret=TEST_SECRET, key_id="audit-test"))


@pytest.fixture
def audit_recorder(store, signer):
    return AuditRecorder(store, signer)


@pytest.fixture
def beneficiary():
    return BeneficiaryRef(id=str(ObjectId()), name="Maria da Silva", birth_date=date(1990, 5, 10))


@pytest.fixture
def payment_provider(beneficiary):
    provider = StaticPaymentInfoProvider()
    provider.register(beneficiary.id, PaymentChannel(method=PaymentMethod.PIX, pix_key="maria@example.com"))
    return provider


@pytest.fixture
def event_bus():
    return Mock()


@pytest.fixture
def aggregate(store, registry, payment_provider, audit_recorder, event_bus):
    return RequestAggregate(
        store=store,
        resolver=WorkflowConfigResolver(registry),
        document_checker=ConfiguredDocumentRequirementChecker(registry),
        payment_provider=payment_provider,
        audit_recorder=audit_recorder,
        event_bus=event_bus
    )


@pytest.fixture
def birth_allowance_input(beneficiary):
    """Birth allowance request with every mandatory document attached."""
    return CreateBenefitRequest(
        beneficiary=beneficiary,
        requester=RequesterInfo(person_id=beneficiary.id, name=beneficiary.name, kinship=Kinship.SELF),
        benefit_type="birth_allowance",
        origin=RequestOrigin.IN_PERSON,
        unit_id="cras-centro",
        attached_documents=list(BIRTH_ALLOWANCE_DOCS)
    )
