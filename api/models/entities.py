# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the eventual-benefit request workflow.
"""

import json
import re
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, generate_object_id, utcnow
from .enums import (
    RequestStatus,
    RequestOrigin,
    Role,
    Operation,
    GateAction,
    PendencyStatus,
    Kinship,
    PaymentMethod,
    SignatureStatus,
)


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


class Actor(BaseModel):
    """Authenticated actor context supplied by the identity provider on every call."""

    user_id: str = Field(..., min_length=1, description="Authenticated user ID")
    roles: List[Role] = Field(default_factory=list, description="Program roles held by the user")
    unit_id: Optional[str] = Field(None, description="Unit (CRAS/CREAS) the user works at")
    name: Optional[str] = Field(None, description="User display name")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")

    def has_role(self, role: Role) -> bool:
        """Check if actor holds a specific role."""
        return role in self.roles

    def has_any_role(self, roles) -> bool:
        """Check if actor holds any of the given roles."""
        return any(role in self.roles for role in roles)


class BeneficiaryRef(BaseModel):
    """Reference to the citizen who receives the benefit."""

    id: str = Field(..., min_length=1, description="Citizen ID")
    name: str = Field(..., min_length=1, max_length=200, description="Citizen full name")
    birth_date: Optional[date] = Field(None, description="Birth date, used for minor checks")

    def age_on(self, on: date) -> Optional[int]:
        """Age in full years on the given date."""
        if self.birth_date is None:
            return None
        years = on.year - self.birth_date.year
        if (on.month, on.day) < (self.birth_date.month, self.birth_date.day):
            years -= 1
        return years

    def is_minor(self, on: date) -> bool:
        age = self.age_on(on)
        return age is not None and age < 18


class RequesterInfo(BaseModel):
    """Person filing the request, possibly on behalf of the beneficiary."""

    person_id: str = Field(..., min_length=1, description="Citizen ID of the requester")
    name: str = Field(..., min_length=1, max_length=200, description="Requester full name")
    kinship: Kinship = Field(default=Kinship.SELF, description="Kinship to the beneficiary")
    is_legal_representative: bool = Field(default=False, description="Recorded as legal representative")


class WorkflowGate(BaseModel):
    """Single role/sector gate of a workflow route."""

    model_config = ConfigDict(frozen=True)

    order: int = Field(..., ge=1, description="Position of the gate in the route")
    action: GateAction = Field(..., description="What the gate authorises")
    role: Role = Field(..., description="Role required to clear the gate")
    sector: Optional[str] = Field(None, max_length=100, description="Sector responsible for the gate")
    sla_hours: Optional[int] = Field(None, ge=0, description="Service level for the gate in hours")


class WorkflowRoute(BaseModel):
    """Immutable snapshot of the gates a benefit type required at submission time."""

    model_config = ConfigDict(frozen=True)

    benefit_type: str = Field(..., description="Benefit type code the route was resolved for")
    gates: List[WorkflowGate] = Field(..., min_length=1, description="Ordered gates")
    config_version: int = Field(..., ge=1, description="Configuration version the snapshot came from")
    resolved_at: datetime = Field(default_factory=utcnow, description="When the route was pinned")

    def gate_for(self, action: GateAction) -> Optional[WorkflowGate]:
        """First gate for a given action, if the route has one."""
        for gate in self.gates:
            if gate.action == action:
                return gate
        return None

    def has_gate(self, action: GateAction) -> bool:
        return self.gate_for(action) is not None

    @property
    def total_sla_hours(self) -> int:
        return sum(gate.sla_hours or 0 for gate in self.gates)


class BenefitTypeConfig(BaseModel):
    """Editable workflow configuration for a benefit type."""

    code: str = Field(..., min_length=1, max_length=100, description="Benefit type code")
    name: str = Field(..., min_length=1, max_length=200, description="Human readable name")
    gates: List[WorkflowGate] = Field(default_factory=list, description="Ordered approval gates")
    mandatory_documents: List[str] = Field(default_factory=list, description="Mandatory document types")
    active: bool = Field(default=True, description="Whether new requests can use this type")
    version: int = Field(default=1, ge=1, description="Configuration version")
    updated_at: datetime = Field(default_factory=utcnow, description="Last edit timestamp")

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        """Validate code format."""
        if not re.match(r'^[a-z0-9_]+$', v):
            raise ValueError('Benefit type code must contain only lowercase letters, numbers, and underscores')
        return v

    @field_validator('gates')
    @classmethod
    def sort_gates(cls, v):
        """Keep gates ordered by position."""
        return sorted(v, key=lambda gate: gate.order)


class StatusHistoryEntry(BaseModel):
    """Single status transition. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    from_status: RequestStatus = Field(..., description="Status before the transition")
    to_status: RequestStatus = Field(..., description="Status after the transition")
    actor_id: str = Field(..., description="User who performed the transition")
    actor_roles: List[Role] = Field(default_factory=list, description="Roles held by the actor")
    occurred_at: datetime = Field(default_factory=utcnow, description="Transition timestamp")
    justification: Optional[str] = Field(None, max_length=2000, description="Optional justification")
    correlation_id: Optional[str] = Field(None, description="Correlation ID of the operation")


class Pendency(BaseModel):
    """Outstanding issue raised during analysis."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    description: str = Field(..., min_length=1, max_length=1000, description="What must be fixed")
    raised_by: str = Field(..., description="User who raised the pendency")
    raised_at: datetime = Field(default_factory=utcnow, description="When the pendency was raised")
    due_at: Optional[datetime] = Field(None, description="Resolution deadline")
    cycle: int = Field(default=1, ge=1, description="Analysis cycle the pendency belongs to")
    status: PendencyStatus = Field(default=PendencyStatus.OPEN, description="Pendency status")
    resolved_by: Optional[str] = Field(None, description="User who resolved the pendency")
    resolved_at: Optional[datetime] = Field(None, description="Resolution timestamp")
    resolution_note: Optional[str] = Field(None, max_length=2000, description="How it was resolved")

    @model_validator(mode='after')
    def validate_resolution_fields(self):
        """Resolved pendencies must say who resolved them and when."""
        if self.status == PendencyStatus.RESOLVED and (not self.resolved_by or not self.resolved_at):
            raise ValueError('resolved_by and resolved_at are required when status is resolved')
        return self

    def is_open(self) -> bool:
        return self.status == PendencyStatus.OPEN

    def is_overdue(self, now: datetime) -> bool:
        return self.is_open() and self.due_at is not None and self.due_at < now


class PaymentChannel(BaseModel):
    """Payment data held for a beneficiary by the payment data source."""

    method: PaymentMethod = Field(default=PaymentMethod.PIX, description="Channel type")
    pix_key: Optional[str] = Field(None, description="PIX key")
    bank_account: Optional[str] = Field(None, description="Bank account in agency/account form")

    def is_usable(self) -> bool:
        """Whether the channel carries the data its method needs."""
        if self.method == PaymentMethod.PIX:
            return bool(self.pix_key and self.pix_key.strip())
        if self.method == PaymentMethod.BANK_DEPOSIT:
            return bool(self.bank_account and self.bank_account.strip())
        return True

    def masked_key(self) -> Optional[str]:
        """Payment key with all but the last four characters hidden."""
        key = self.pix_key if self.method == PaymentMethod.PIX else self.bank_account
        if not key:
            return None
        visible = key[-4:]
        return "*" * max(len(key) - 4, 0) + visible


class PaymentDetails(BaseModel):
    """Payment information registered when the unit hands the benefit over."""

    amount: Decimal = Field(..., gt=0, description="Amount released")
    method: PaymentMethod = Field(default=PaymentMethod.PIX, description="Payment method")
    installment: int = Field(default=1, ge=1, description="Installment number")
    reference: Optional[str] = Field(None, max_length=100, description="External payment reference")


class BenefitRequest(BaseEntity):
    """Eventual-benefit request ("solicitação")."""

    protocol: str = Field(..., description="Human facing protocol number")
    beneficiary: BeneficiaryRef = Field(..., description="Citizen receiving the benefit")
    requester: Optional[RequesterInfo] = Field(None, description="Person filing the request")
    benefit_type: str = Field(..., description="Benefit type code")
    origin: RequestOrigin = Field(..., description="Intake channel")
    unit_id: Optional[str] = Field(None, description="Unit that owns the request")
    status: RequestStatus = Field(default=RequestStatus.DRAFT, description="Current status")
    route: WorkflowRoute = Field(..., description="Pinned workflow route")
    history: List[StatusHistoryEntry] = Field(default_factory=list, description="Append-only status history")
    pendencies: List[Pendency] = Field(default_factory=list, description="Pendencies raised during analysis")
    attached_documents: List[str] = Field(default_factory=list, description="Attached document types")
    technical_opinion: Optional[str] = Field(None, max_length=5000, description="Recorded technical opinion")
    opinion_by: Optional[str] = Field(None, description="User who recorded the opinion")
    opinion_at: Optional[datetime] = Field(None, description="When the opinion was recorded")
    analysis_cycle: int = Field(default=0, ge=0, description="Number of pend decisions so far")
    payment: Optional[Dict[str, Any]] = Field(None, description="Payment details registered on release")
    delivery_note: Optional[str] = Field(None, max_length=2000, description="Delivery confirmation note")
    closing_reason: Optional[str] = Field(None, max_length=2000, description="Rejection or cancellation reason")
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    event_sequence: int = Field(default=0, ge=0, description="Sequence of the last emitted domain event")

    @model_validator(mode='after')
    def validate_history_tail(self):
        """Final history entry must match the current status."""
        if self.history and self.history[-1].to_status != self.status:
            raise ValueError('Last history entry must end in the current status')
        return self

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def open_pendencies(self) -> List[Pendency]:
        return [pendency for pendency in self.pendencies if pendency.is_open()]

    def find_pendency(self, pendency_id: str) -> Optional[Pendency]:
        for pendency in self.pendencies:
            if pendency.id == pendency_id:
                return pendency
        return None


class AuditActor(BaseModel):
    """Actor context frozen into an audit entry."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    roles: List[Role] = Field(default_factory=list)
    unit_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_actor(cls, actor: Actor) -> "AuditActor":
        return cls(
            user_id=actor.user_id,
            roles=list(actor.roles),
            unit_id=actor.unit_id,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            session_id=actor.session_id
        )


VALID_AUDIT_ENTITIES = (
    'benefit_request', 'pendency', 'citizen', 'unit', 'user',
    'document', 'benefit_type', 'workflow_config'
)

VALID_AUDIT_ACTIONS = tuple(op.value for op in Operation) + (
    'update', 'delete', 'login', 'logout', 'export', 'import'
)

SIGNATURE_FIELDS = ('signature', 'signature_algorithm', 'signature_status', 'key_id')


class AuditEntry(BaseModel):
    """Immutable, signed record of a state-affecting action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=utcnow, description="Action timestamp")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: str = Field(..., description="Action performed")
    actor: AuditActor = Field(..., description="Full actor context")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    changes: List[Dict[str, Any]] = Field(default_factory=list, description="Field-level diff")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    signature: Optional[str] = Field(None, description="JWT signature or fallback content hash")
    signature_algorithm: Optional[str] = Field(None, description="JWT algorithm or 'sha256'")
    signature_status: SignatureStatus = Field(default=SignatureStatus.UNSIGNED, description="Signature status")
    key_id: Optional[str] = Field(None, description="Signing key identifier")
    schema_version: int = Field(default=1, description="Schema version")

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        if v not in VALID_AUDIT_ENTITIES:
            raise ValueError(f'Invalid entity type: {v}')
        return v

    @field_validator('action')
    @classmethod
    def validate_action(cls, v):
        """Validate action type."""
        if v not in VALID_AUDIT_ACTIONS:
            raise ValueError(f'Invalid action type: {v}')
        return v

    def canonical_bytes(self) -> bytes:
        """Canonical byte form covered by the signature."""
        content = self.model_dump(mode='json', exclude=set(SIGNATURE_FIELDS))
        return json.dumps(
            content, sort_keys=True, separators=(',', ':'), ensure_ascii=False
        ).encode('utf-8')
