# SPDX-License-Identifier: Apache-2.0

"""
Pendency sub-lifecycle.

Pure functions over the pendency list of a request: raising a batch of
pendencies for an analysis cycle, resolving one, and the queries the
aggregate and reporting need.
"""

from datetime import datetime
from typing import List, Optional

from models.entities import Actor, BenefitRequest, Pendency
from models.enums import PendencyStatus
from models.requests import PendencyItem
from domain.errors import BusinessRuleViolation, PendencyNotFound


def raise_pendencies(
    items: List[PendencyItem],
    actor: Actor,
    cycle: int,
    now: datetime
) -> List[Pendency]:
    """
    Build open pendencies for a pend decision.

    Args:
        items: Pendency items from the review decision
        actor: Reviewer raising the pendencies
        cycle: Analysis cycle number the pendencies belong to
        now: Current timestamp

    Returns:
        List of new open Pendency entities

    Raises:
        BusinessRuleViolation: if no items are given or a due date is not in the future
    """
    if not items:
        raise BusinessRuleViolation("At least one pendency is required", rule="pendency_required")

    past_due = [item.description for item in items if item.due_at is not None and item.due_at <= now]
    if past_due:
        raise BusinessRuleViolation(
            "Pendency due date must be in the future",
            rule="due_date_in_past",
            details=past_due
        )

    return [
        Pendency(
            description=item.description,
            raised_by=actor.user_id,
            raised_at=now,
            due_at=item.due_at,
            cycle=cycle
        )
        for item in items
    ]


def resolve_pendency(
    pendencies: List[Pendency],
    pendency_id: str,
    actor: Actor,
    resolution_note: Optional[str],
    now: datetime
) -> List[Pendency]:
    """
    Return a new pendency list with one pendency resolved.

    Raises:
        PendencyNotFound: if the id is unknown
        BusinessRuleViolation: if the pendency is already resolved
    """
    updated = []
    found = False
    for pendency in pendencies:
        if pendency.id != pendency_id:
            updated.append(pendency)
            continue
        found = True
        if not pendency.is_open():
            raise BusinessRuleViolation(
                f"Pendency {pendency_id} is already resolved",
                rule="pendency_already_resolved"
            )
        updated.append(pendency.model_copy(update={
            "status": PendencyStatus.RESOLVED,
            "resolved_by": actor.user_id,
            "resolved_at": now,
            "resolution_note": resolution_note
        }))

    if not found:
        raise PendencyNotFound(pendency_id)
    return updated


def pendencies_for_cycle(request: BenefitRequest, cycle: Optional[int] = None) -> List[Pendency]:
    """Pendencies of one analysis cycle, the current one by default."""
    wanted = request.analysis_cycle if cycle is None else cycle
    return [p for p in request.pendencies if p.cycle == wanted]


def all_resolved(request: BenefitRequest) -> bool:
    return not request.open_pendencies()


def overdue_pendencies(request: BenefitRequest, now: datetime) -> List[Pendency]:
    """Open pendencies past their due date; none once the request is closed."""
    if request.is_terminal():
        return []
    return [p for p in request.pendencies if p.is_overdue(now)]
