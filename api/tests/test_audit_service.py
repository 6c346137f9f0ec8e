# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for audit signing, the audit recorder and verification.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

from models.entities import Actor
from models.enums import Role, SignatureStatus, VerificationResult
from domain.errors import AuditEntryNotFound, SignatureFailure
from services.audit import AuditRecorder, FALLBACK_ALGORITHM
from services.memory_store import InMemoryStore
from services.signing import (
    AuditSigner,
    SigningConfig,
    content_digest,
    create_audit_signer,
    generate_dev_key_pair,
)


@pytest.fixture(scope="module")
def rsa_keys():
    return generate_dev_key_pair()


class TestAuditSigner:
    """Test JWT signing of canonical bytes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.timestamp = datetime(2026, 10, 18, 14, 30, tzinfo=timezone.utc)
        self.canonical = b'{"action":"approve","entity":"benefit_request"}'

    def test_rs256_round_trip(self, rsa_keys):
        private_key, public_key = rsa_keys
        signer = AuditSigner(SigningConfig(algorithm="RS256", private_key=private_key, public_key=public_key))

        token = signer.sign(self.canonical, self.timestamp)

        assert signer.verify(token, self.canonical, self.timestamp)

    def test_hs256_round_trip(self, signer):
        token = signer.sign(self.canonical, self.timestamp)

        assert signer.verify(token, self.canonical, self.timestamp)

    def test_tampered_content_or_timestamp(self, signer):
        token = signer.sign(self.canonical, self.timestamp)

        assert not signer.verify(token, self.canonical + b" ", self.timestamp)
        assert not signer.verify(token, self.canonical, self.timestamp + timedelta(seconds=1))

    def test_token_from_other_key(self, rsa_keys):
        private_key, public_key = rsa_keys
        other_private, other_public = generate_dev_key_pair()
        signer = AuditSigner(SigningConfig(algorithm="RS256", private_key=private_key, public_key=public_key))
        forger = AuditSigner(SigningConfig(algorithm="RS256", private_key=other_private, public_key=other_public))

        token = forger.sign(self.canonical, self.timestamp)

        assert not signer.verify(token, self.canonical, self.timestamp)
        assert not signer.verify("not-a-jwt", self.canonical, self.timestamp)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            AuditSigner(SigningConfig(algorithm="none"))
        with pytest.raises(ValueError):
            AuditSigner(SigningConfig(algorithm="HS256"))
        with pytest.raises(ValueError):
            AuditSigner(SigningConfig(algorithm="RS256", private_key="only-private"))

    def test_sign_failure_is_typed(self):
        signer = AuditSigner(SigningConfig(algorithm="RS256", private_key="not a pem", public_key="not a pem"))

        with pytest.raises(SignatureFailure):
            signer.sign(self.canonical, self.timestamp)

    @patch.dict('os.environ', {'AUDIT_SIGNING_ALGORITHM': 'HS256', 'AUDIT_SIGNING_SECRET': 'x' * 48})
    def test_factory_hs256(self):
        signer = create_audit_signer()

        assert signer.algorithm == "HS256"
        assert signer.key_id == "audit-1"

    @patch.dict('os.environ', {'AUDIT_SIGNING_ALGORITHM': 'RS256'}, clear=True)
    def test_factory_generates_dev_keys(self):
        signer = create_audit_signer()

        assert signer.algorithm == "RS256"
        assert signer.key_id == "audit-1-dev"
        token = signer.sign(self.canonical, self.timestamp)
        assert signer.verify(token, self.canonical, self.timestamp)


class TestAuditRecorder:
    """Test audit entry recording and verification."""

    def setup_method(self):
        """Set up test fixtures."""
        self.actor = Actor(
            user_id="user-manager",
            roles=[Role.MANAGER],
            unit_id="cras-centro",
            ip_address="10.0.0.2",
            user_agent="pytest",
            session_id="session-1"
        )
        self.before = {"status": "in_analysis", "version": 4, "updated_at": "2026-10-18T10:00:00+00:00"}
        self.after = {"status": "approved", "version": 5, "updated_at": "2026-10-18T11:00:00+00:00"}

    def test_signed_entry_verifies(self, store, audit_recorder):
        entry = audit_recorder.record(
            entity="benefit_request",
            entity_id="req-1",
            action="approve",
            actor=self.actor,
            before=self.before,
            after=self.after,
            correlation_id="corr-1"
        )

        assert entry.signature_status == SignatureStatus.SIGNED
        assert entry.signature_algorithm == "HS256"
        assert entry.key_id == "audit-test"
        assert entry.actor.ip_address == "10.0.0.2"
        assert entry.correlation_id == "corr-1"
        assert store.get_audit_entry(entry.id) == entry
        assert audit_recorder.verify(entry.id) == VerificationResult.VALID

    def test_changes_skip_bookkeeping_fields(self, audit_recorder):
        entry = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="approve",
            actor=self.actor, before=self.before, after=self.after
        )

        assert [change["field"] for change in entry.changes] == ["status", "version"]

    def test_signing_failure_persists_unsigned_entry(self, store):
        failing_signer = Mock(spec=AuditSigner)
        failing_signer.algorithm = "RS256"
        failing_signer.key_id = "audit-1"
        failing_signer.sign.side_effect = SignatureFailure("HSM unavailable")
        recorder = AuditRecorder(store, failing_signer)

        with patch('services.audit.signature_failures') as counter, \
                patch('services.audit.logger') as mock_logger:
            entry = recorder.record(
                entity="benefit_request", entity_id="req-1", action="approve",
                actor=self.actor, before=self.before, after=self.after
            )

        assert entry.signature_status == SignatureStatus.UNSIGNED
        assert entry.signature_algorithm == FALLBACK_ALGORITHM
        assert entry.signature == content_digest(entry.canonical_bytes())
        assert entry.key_id is None
        counter.add.assert_called_once()
        assert "SignatureFailure" in mock_logger.critical.call_args[0][0]

        assert store.get_audit_entry(entry.id) is not None
        assert recorder.verify(entry.id) == VerificationResult.UNSIGNED
        failing_signer.verify.assert_not_called()

    def test_tampered_unsigned_entry_is_invalid(self, store):
        failing_signer = Mock(spec=AuditSigner)
        failing_signer.algorithm = "RS256"
        failing_signer.key_id = "audit-1"
        failing_signer.sign.side_effect = SignatureFailure("HSM unavailable")
        recorder = AuditRecorder(store, failing_signer)

        with patch('services.audit.signature_failures'):
            entry = recorder.record(
                entity="benefit_request", entity_id="req-1", action="approve",
                actor=self.actor, before=self.before, after=self.after
            )

        tampered = entry.model_copy(update={"after": {"status": "released", "version": 5}})
        store.insert_audit_entry(tampered)

        assert recorder.verify(entry.id) == VerificationResult.INVALID

    def test_unsigned_status_on_signed_entry_is_invalid(self, store, audit_recorder):
        entry = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="approve",
            actor=self.actor, before=self.before, after=self.after
        )

        downgraded = entry.model_copy(update={"signature_status": SignatureStatus.UNSIGNED})
        store.insert_audit_entry(downgraded)

        assert audit_recorder.verify(entry.id) == VerificationResult.INVALID

    def test_tampered_entry_is_invalid(self, store, audit_recorder):
        entry = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="approve",
            actor=self.actor, before=self.before, after=self.after
        )

        tampered = entry.model_copy(update={"after": {"status": "released"}})
        store.insert_audit_entry(tampered)

        assert audit_recorder.verify(entry.id) == VerificationResult.INVALID

    def test_verify_unknown_entry(self, audit_recorder):
        with pytest.raises(AuditEntryNotFound):
            audit_recorder.verify("missing")

    def test_writes_through_unit_of_work(self, store, audit_recorder):
        uow = Mock()

        entry = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="cancel", actor=self.actor, uow=uow
        )

        uow.add_audit_entry.assert_called_once_with(entry)
        assert store.get_audit_entry(entry.id) is None

    def test_persistence_failure_propagates(self, signer):
        broken_store = Mock(spec=InMemoryStore)
        broken_store.insert_audit_entry.side_effect = RuntimeError("disk full")
        recorder = AuditRecorder(broken_store, signer)

        with pytest.raises(RuntimeError):
            recorder.record(entity="benefit_request", entity_id="req-1", action="cancel", actor=self.actor)

    def test_list_entries_in_order(self, audit_recorder):
        first = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="create", actor=self.actor,
            timestamp=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        )
        second = audit_recorder.record(
            entity="benefit_request", entity_id="req-1", action="submit", actor=self.actor,
            timestamp=datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc)
        )
        audit_recorder.record(entity="benefit_request", entity_id="req-2", action="create", actor=self.actor)

        entries = audit_recorder.list_entries("benefit_request", "req-1")

        assert [e.id for e in entries] == [first.id, second.id]
