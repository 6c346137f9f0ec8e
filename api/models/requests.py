# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Input models for request aggregate operations.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from .entities import BeneficiaryRef, RequesterInfo
from .enums import ReviewOutcome, RequestOrigin


class CreateBenefitRequest(BaseModel):
    """Input for opening a new benefit request in Draft."""

    beneficiary: BeneficiaryRef = Field(..., description="Citizen receiving the benefit")
    requester: Optional[RequesterInfo] = Field(None, description="Person filing the request")
    benefit_type: str = Field(..., min_length=1, description="Benefit type code")
    origin: RequestOrigin = Field(default=RequestOrigin.IN_PERSON, description="Intake channel")
    unit_id: Optional[str] = Field(None, description="Owning unit, defaults to the actor's unit")
    attached_documents: List[str] = Field(default_factory=list, description="Document types already attached")


class PendencyItem(BaseModel):
    """Single pendency raised by a pend decision."""

    description: str = Field(..., min_length=1, max_length=1000, description="What must be fixed")
    due_at: Optional[datetime] = Field(None, description="Resolution deadline")

    @field_validator('description')
    @classmethod
    def validate_description(cls, v):
        """Reject whitespace-only descriptions."""
        if not v.strip():
            raise ValueError('Pendency description cannot be empty')
        return v.strip()

    @field_validator('due_at')
    @classmethod
    def assume_utc(cls, v):
        """Naive due dates are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ReviewDecision(BaseModel):
    """Outcome of a reviewer's analysis."""

    outcome: ReviewOutcome = Field(..., description="approve, pend or reject")
    justification: Optional[str] = Field(None, max_length=2000, description="Justification for pend/reject")
    items: List[PendencyItem] = Field(default_factory=list, description="Pendencies raised by a pend decision")
    technical_opinion: Optional[str] = Field(None, max_length=5000, description="Opinion supplied with approval")

    @model_validator(mode='after')
    def validate_outcome_fields(self):
        """Pend and reject decisions must be justified; pend needs items."""
        has_justification = bool(self.justification and self.justification.strip())
        if self.outcome in (ReviewOutcome.PEND, ReviewOutcome.REJECT) and not has_justification:
            raise ValueError(f'Justification is required for {self.outcome.value} decisions')
        if self.outcome == ReviewOutcome.PEND and not self.items:
            raise ValueError('A pend decision must raise at least one pendency')
        if self.outcome != ReviewOutcome.PEND and self.items:
            raise ValueError('Pendency items are only allowed on pend decisions')
        return self

    @classmethod
    def approve(cls, technical_opinion: Optional[str] = None) -> "ReviewDecision":
        return cls(outcome=ReviewOutcome.APPROVE, technical_opinion=technical_opinion)

    @classmethod
    def pend(cls, justification: str, items: List[PendencyItem]) -> "ReviewDecision":
        return cls(outcome=ReviewOutcome.PEND, justification=justification, items=items)

    @classmethod
    def reject(cls, justification: str) -> "ReviewDecision":
        return cls(outcome=ReviewOutcome.REJECT, justification=justification)
