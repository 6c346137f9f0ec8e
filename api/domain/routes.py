# SPDX-License-Identifier: Apache-2.0

"""
Workflow route domain logic.

Pure functions for validating benefit-type workflow configuration and
pinning it into an immutable route snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Set

from models.entities import BenefitTypeConfig, WorkflowRoute
from models.enums import GateAction, Role
from domain.transitions import OPERATION_GATES, OPERATION_ROLES


@dataclass
class ValidationResult:
    """Result of workflow configuration validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str] = field(default_factory=list)


def roles_for_gate(action: GateAction) -> Set[Role]:
    """Roles the static matrix allows for the operations a gate controls."""
    roles: Set[Role] = set()
    for operation, gate_action in OPERATION_GATES.items():
        if gate_action == action:
            roles.update(OPERATION_ROLES[operation])
    return roles


def validate_config(config: BenefitTypeConfig) -> ValidationResult:
    """
    Validate consistency of a benefit type workflow configuration.

    Args:
        config: Configuration to validate

    Returns:
        ValidationResult with validation status and errors
    """
    errors = []
    warnings = []

    if not config.gates:
        errors.append(f"Benefit type '{config.code}' must define at least one gate")

    orders = [gate.order for gate in config.gates]
    duplicated = sorted({order for order in orders if orders.count(order) > 1})
    if duplicated:
        errors.append(f"Gate order must be unique, duplicated: {duplicated}")

    actions = [gate.action for gate in config.gates]
    repeated_actions = sorted({a.value for a in actions if actions.count(a) > 1})
    if repeated_actions:
        errors.append(f"Gate actions must be unique, repeated: {repeated_actions}")

    for gate in config.gates:
        permitted = roles_for_gate(gate.action)
        if gate.role not in permitted:
            errors.append(
                f"Role '{gate.role.value}' cannot clear a '{gate.action.value}' gate"
            )

    if GateAction.APPROVAL not in actions:
        warnings.append("Route has no approval gate; any reviewer role may approve")

    if len(set(config.mandatory_documents)) != len(config.mandatory_documents):
        errors.append("Mandatory documents must not repeat")

    if any(not doc.strip() for doc in config.mandatory_documents):
        errors.append("Mandatory document types cannot be empty")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def pin_route(config: BenefitTypeConfig, now: datetime) -> WorkflowRoute:
    """Deep copy the configured gates into an immutable route snapshot."""
    return WorkflowRoute(
        benefit_type=config.code,
        gates=[gate.model_copy(deep=True) for gate in config.gates],
        config_version=config.version,
        resolved_at=now
    )
