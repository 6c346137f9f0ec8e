# SPDX-License-Identifier: Apache-2.0

"""
Benefit-type workflow configuration.

The registry holds the editable configuration of each benefit type, loaded
from YAML and versioned on every edit. The resolver pins a deep copy of the
configured gates into each new request; later edits never reach routes that
were already pinned.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
import yaml
from opentelemetry import trace
import logging

from models.base import utcnow
from models.entities import BenefitTypeConfig, WorkflowGate, WorkflowRoute
from domain.errors import BusinessRuleViolation, ConfigurationMissing
from domain.routes import pin_route, validate_config

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class WorkflowConfigRegistry:
    """Thread-safe, versioned store of benefit type configurations."""

    def __init__(self, configs: Optional[List[BenefitTypeConfig]] = None):
        self._configs: Dict[str, BenefitTypeConfig] = {}
        self._lock = threading.Lock()
        for config in configs or []:
            self.register(config)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowConfigRegistry":
        """Build a registry from a ``{"benefit_types": [...]}`` mapping."""
        entries = (data or {}).get("benefit_types", [])
        return cls([BenefitTypeConfig.model_validate(entry) for entry in entries])

    @classmethod
    def from_yaml(cls, path: str) -> "WorkflowConfigRegistry":
        """Load benefit type configurations from a YAML file."""
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
        registry = cls.from_dict(data)
        logger.info(f"Loaded {len(registry.list())} benefit type configurations from {path}")
        return registry

    def register(self, config: BenefitTypeConfig) -> BenefitTypeConfig:
        """
        Add or replace a benefit type configuration.

        Replacing an existing configuration bumps its version.

        Raises:
            BusinessRuleViolation: if the configuration is inconsistent
        """
        with tracer.start_as_current_span("workflow_config.register") as span:
            span.set_attribute("benefit_type.code", config.code)

            validation = validate_config(config)
            if not validation.is_valid:
                raise BusinessRuleViolation(
                    f"Invalid workflow configuration for '{config.code}'",
                    rule="invalid_workflow_config",
                    details=validation.errors
                )
            for warning in validation.warnings:
                logger.warning(warning, extra={"benefit_type": config.code})

            with self._lock:
                existing = self._configs.get(config.code)
                version = existing.version + 1 if existing is not None else config.version
                stored = config.model_copy(deep=True, update={"version": version, "updated_at": utcnow()})
                self._configs[config.code] = stored

            span.set_attribute("benefit_type.version", stored.version)
            logger.info(
                "Benefit type configuration registered",
                extra={"benefit_type": stored.code, "version": stored.version, "gates": len(stored.gates)}
            )
            return stored.model_copy(deep=True)

    def update_gates(self, code: str, gates: List[WorkflowGate]) -> BenefitTypeConfig:
        current = self._require(code)
        return self.register(current.model_copy(update={"gates": sorted(gates, key=lambda g: g.order)}))

    def update_documents(self, code: str, mandatory_documents: List[str]) -> BenefitTypeConfig:
        current = self._require(code)
        return self.register(current.model_copy(update={"mandatory_documents": list(mandatory_documents)}))

    def set_active(self, code: str, active: bool) -> BenefitTypeConfig:
        current = self._require(code)
        return self.register(current.model_copy(update={"active": active}))

    def get(self, code: str) -> Optional[BenefitTypeConfig]:
        with self._lock:
            config = self._configs.get(code)
        return config.model_copy(deep=True) if config is not None else None

    def list(self) -> List[BenefitTypeConfig]:
        with self._lock:
            return [config.model_copy(deep=True) for config in self._configs.values()]

    def total_sla_hours(self, code: str) -> int:
        return sum(gate.sla_hours or 0 for gate in self._require(code).gates)

    def _require(self, code: str) -> BenefitTypeConfig:
        config = self.get(code)
        if config is None:
            raise ConfigurationMissing(code)
        return config


class WorkflowConfigResolver:
    """Resolves the route a new request must follow."""

    def __init__(self, registry: WorkflowConfigRegistry):
        self.registry = registry

    def resolve(self, benefit_type: str, now: Optional[datetime] = None) -> WorkflowRoute:
        """
        Pin the current configuration of a benefit type.

        Raises:
            ConfigurationMissing: if the type is unknown or inactive
        """
        with tracer.start_as_current_span("workflow_config.resolve") as span:
            span.set_attribute("benefit_type.code", benefit_type)
            config = self.registry.get(benefit_type)
            if config is None or not config.active:
                span.set_attribute("workflow_config.missing", True)
                raise ConfigurationMissing(benefit_type)

            route = pin_route(config, now or utcnow())
            span.set_attributes({
                "workflow_route.config_version": route.config_version,
                "workflow_route.gates": len(route.gates)
            })
            return route


class ConfiguredDocumentRequirementChecker:
    """Reports mandatory documents missing for a benefit type."""

    def __init__(self, registry: WorkflowConfigRegistry):
        self.registry = registry

    def missing_documents(self, benefit_type: str, attached_docs: List[str]) -> List[str]:
        config = self.registry.get(benefit_type)
        if config is None:
            raise ConfigurationMissing(benefit_type)
        attached = set(attached_docs)
        return [doc for doc in config.mandatory_documents if doc not in attached]
