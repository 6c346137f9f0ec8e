# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for pendency rules.
"""

import pytest
from datetime import datetime, timedelta, timezone

from models.entities import Actor, Pendency
from models.enums import PendencyStatus, Role
from models.requests import PendencyItem
from domain.errors import BusinessRuleViolation, PendencyNotFound
from domain.pendencies import raise_pendencies, resolve_pendency


class TestPendencyRules:
    """Test raising and resolving pendencies."""

    def setup_method(self):
        """Set up test fixtures."""
        self.now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        self.reviewer = Actor(user_id="user-reviewer", roles=[Role.TECHNICAL_REVIEWER])
        self.technician = Actor(user_id="user-technician", roles=[Role.UNIT_TECHNICIAN])

    def test_raise_pendencies(self):
        items = [
            PendencyItem(description="Certidão ilegível", due_at=self.now + timedelta(days=5)),
            PendencyItem(description="  Falta comprovante de residência  "),
        ]

        pendencies = raise_pendencies(items, self.reviewer, 2, self.now)

        assert len(pendencies) == 2
        assert all(p.status == PendencyStatus.OPEN for p in pendencies)
        assert all(p.cycle == 2 and p.raised_at == self.now for p in pendencies)
        assert pendencies[1].description == "Falta comprovante de residência"
        assert pendencies[0].id != pendencies[1].id

    def test_raise_requires_items(self):
        with pytest.raises(BusinessRuleViolation) as exc_info:
            raise_pendencies([], self.reviewer, 1, self.now)

        assert exc_info.value.rule == "pendency_required"

    def test_due_date_must_be_future(self):
        items = [PendencyItem(description="RG", due_at=self.now)]

        with pytest.raises(BusinessRuleViolation) as exc_info:
            raise_pendencies(items, self.reviewer, 1, self.now)

        assert exc_info.value.rule == "due_date_in_past"
        assert exc_info.value.details == ["RG"]

    def test_naive_due_date_taken_as_utc(self):
        item = PendencyItem(description="RG", due_at=datetime(2026, 10, 20, 12, 0))

        assert item.due_at.tzinfo == timezone.utc

    def test_resolve_returns_new_list(self):
        pendencies = raise_pendencies(
            [PendencyItem(description="A"), PendencyItem(description="B")], self.reviewer, 1, self.now
        )

        updated = resolve_pendency(pendencies, pendencies[0].id, self.technician, "Anexado", self.now)

        assert updated[0].status == PendencyStatus.RESOLVED
        assert updated[0].resolved_by == self.technician.user_id
        assert updated[0].resolution_note == "Anexado"
        assert updated[1].is_open()
        assert pendencies[0].is_open()

    def test_resolve_unknown(self):
        pendencies = raise_pendencies([PendencyItem(description="A")], self.reviewer, 1, self.now)

        with pytest.raises(PendencyNotFound):
            resolve_pendency(pendencies, "missing", self.technician, None, self.now)

    def test_resolved_pendency_needs_resolver(self):
        with pytest.raises(ValueError):
            Pendency(description="A", raised_by="user-reviewer", status=PendencyStatus.RESOLVED)

    def test_overdue(self):
        pendency = Pendency(description="A", raised_by="u", due_at=self.now - timedelta(hours=1))

        assert pendency.is_overdue(self.now)
        assert not Pendency(description="B", raised_by="u").is_overdue(self.now)
