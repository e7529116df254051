"""
ZK-PRET Composed Proofs - Template Registry
Version: 1.0
Purpose: Versioned registry of composition templates plus the built-in set

Templates are immutable once registered; a new version must be registered
under a new version string.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from .aggregator import Aggregator
from .errors import TemplateNotFoundError, ValidationError
from .models import (
    AggregationLogic,
    AggregationType,
    CompositionTemplate,
    ProofComponent,
    TemplateCategory,
    TemplateMetadata,
)
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)

NESTED_COMPOSITION_TOOL = "composed-proof-execution"
BUILTIN_AUTHOR = "ZK-PRET System"


def _version_key(version: str) -> Tuple[Tuple[int, str], ...]:
    return tuple((int(part), "") if part.isdigit() else (-1, part) for part in version.split("."))


class TemplateRegistry:
    """
    Thread-safe registry keyed by (template_id, version).

    Usage:
        registry = TemplateRegistry()
        registry.register(template)
        latest = registry.get("full-kyc-compliance")
    """

    def __init__(
        self,
        resolver: Optional[DependencyResolver] = None,
        aggregator: Optional[Aggregator] = None,
    ):
        self.resolver = resolver or DependencyResolver()
        self.aggregator = aggregator or Aggregator()
        self._templates: Dict[str, Dict[str, CompositionTemplate]] = {}
        self._lock = threading.RLock()

    def validate(self, template: CompositionTemplate) -> None:
        """Raise ValidationError / DependencyError if the template cannot run."""
        if not template.id.strip():
            raise ValidationError("Template id must not be blank", field="id")
        if not template.name.strip():
            raise ValidationError("Template name must not be blank", field="name")
        self.resolver.resolve(template.components)
        self.aggregator.validate_logic(template.aggregation_logic)

    def register(self, template: CompositionTemplate) -> CompositionTemplate:
        self.validate(template)
        with self._lock:
            versions = self._templates.setdefault(template.id, {})
            if template.version in versions:
                raise ValidationError(
                    f"Template {template.id}@{template.version} is already registered",
                    field="version",
                    details={"template_id": template.id, "version": template.version},
                )
            versions[template.version] = template
        logger.info(f"Registered template {template.id}@{template.version}")
        return template

    def get(self, template_id: str, version: Optional[str] = None) -> CompositionTemplate:
        with self._lock:
            versions = self._templates.get(template_id)
            if not versions:
                raise TemplateNotFoundError(template_id, version)
            if version is None:
                return versions[max(versions, key=_version_key)]
            if version not in versions:
                raise TemplateNotFoundError(template_id, version)
            return versions[version]

    def __contains__(self, template_id: object) -> bool:
        with self._lock:
            return template_id in self._templates

    def list(self, category: Optional[str] = None) -> List[CompositionTemplate]:
        """Latest version of every template, optionally filtered by category."""
        with self._lock:
            latest = [self.get(template_id) for template_id in self._templates]
        if category is None:
            return latest
        return [t for t in latest if t.metadata and t.metadata.category == category]

    def versions(self, template_id: str) -> List[str]:
        with self._lock:
            return sorted(self._templates.get(template_id, {}), key=_version_key)

    def categories(self) -> List[str]:
        return sorted({t.metadata.category for t in self.list() if t.metadata})

    def __len__(self) -> int:
        with self._lock:
            return len(self._templates)


# ============================================================================
# BUILT-IN TEMPLATES
# ============================================================================


def builtin_templates() -> List[CompositionTemplate]:
    full_kyc = CompositionTemplate(
        id="full-kyc-compliance",
        name="Full KYC Compliance",
        description="Comprehensive KYC verification including GLEIF, Corporate Registration, and EXIM checks",
        components=[
            ProofComponent(
                id="gleif-verification",
                tool_name="get-GLEIF-verification-with-sign",
                timeout_seconds=60,
                cache_key="gleif-{companyName}",
            ),
            ProofComponent(
                id="corporate-registration",
                tool_name="get-Corporate-Registration-verification-with-sign",
                dependencies=["gleif-verification"],
                timeout_seconds=60,
                cache_key="corp-reg-{cin}",
            ),
            ProofComponent(
                id="exim-verification",
                tool_name="get-EXIM-verification-with-sign",
                dependencies=["gleif-verification"],
                optional=True,
                timeout_seconds=60,
                cache_key="exim-{companyName}",
            ),
        ],
        aggregation_logic=AggregationLogic(type=AggregationType.ALL_REQUIRED),
        metadata=TemplateMetadata(
            category=TemplateCategory.KYC_COMPLIANCE.value,
            tags=["kyc", "compliance", "identity", "verification"],
            author=BUILTIN_AUTHOR,
        ),
    )

    financial_risk = CompositionTemplate(
        id="financial-risk-assessment",
        name="Financial Risk Assessment",
        description="Comprehensive financial risk evaluation using Basel3 and ACTUS protocols",
        components=[
            ProofComponent(
                id="basel3-verification",
                tool_name="get-RiskLiquidityACTUS-Verifier-Test_Basel3_Withsign",
                timeout_seconds=120,
                cache_key="basel3-{threshold}-{actusUrl}",
            ),
            ProofComponent(
                id="advanced-risk-verification",
                tool_name="get-RiskLiquidityACTUS-Verifier-Test_adv_zk",
                timeout_seconds=120,
                cache_key="adv-risk-{threshold}-{actusUrl}",
            ),
        ],
        aggregation_logic=AggregationLogic(
            type=AggregationType.WEIGHTED,
            weights={"basel3-verification": 0.6, "advanced-risk-verification": 0.4},
            threshold=0.7,
        ),
        metadata=TemplateMetadata(
            category=TemplateCategory.FINANCIAL_RISK.value,
            tags=["risk", "basel3", "actus", "financial"],
            author=BUILTIN_AUTHOR,
        ),
    )

    business_integrity = CompositionTemplate(
        id="business-integrity-check",
        name="Business Integrity Check",
        description="Comprehensive business integrity verification including data and process integrity",
        components=[
            ProofComponent(
                id="bsdi-verification",
                tool_name="get-BSDI-compliance-verification",
                timeout_seconds=90,
                cache_key="bsdi-{filePath}",
            ),
            ProofComponent(
                id="bpi-verification",
                tool_name="get-BPI-compliance-verification",
                timeout_seconds=90,
                cache_key="bpi-{processId}",
            ),
        ],
        aggregation_logic=AggregationLogic(type=AggregationType.ALL_REQUIRED),
        metadata=TemplateMetadata(
            category=TemplateCategory.BUSINESS_INTEGRITY.value,
            tags=["integrity", "data", "process", "compliance"],
            author=BUILTIN_AUTHOR,
        ),
    )

    comprehensive = CompositionTemplate(
        id="comprehensive-compliance",
        name="Comprehensive Compliance",
        description="Full spectrum compliance check combining KYC, financial risk, and business integrity",
        components=[
            ProofComponent(
                id="kyc-phase",
                tool_name=NESTED_COMPOSITION_TOOL,
                parameters={"template_id": "full-kyc-compliance"},
                timeout_seconds=180,
            ),
            ProofComponent(
                id="risk-phase",
                tool_name=NESTED_COMPOSITION_TOOL,
                parameters={"template_id": "financial-risk-assessment"},
                dependencies=["kyc-phase"],
                timeout_seconds=240,
            ),
            ProofComponent(
                id="integrity-phase",
                tool_name=NESTED_COMPOSITION_TOOL,
                parameters={"template_id": "business-integrity-check"},
                timeout_seconds=180,
            ),
        ],
        aggregation_logic=AggregationLogic(
            type=AggregationType.WEIGHTED,
            weights={"kyc-phase": 0.4, "risk-phase": 0.35, "integrity-phase": 0.25},
            threshold=0.8,
        ),
        metadata=TemplateMetadata(
            category=TemplateCategory.REGULATORY_COMPLIANCE.value,
            tags=["comprehensive", "compliance", "kyc", "risk", "integrity"],
            author=BUILTIN_AUTHOR,
        ),
    )

    return [full_kyc, financial_risk, business_integrity, comprehensive]


def register_builtin_templates(registry: TemplateRegistry) -> None:
    for template in builtin_templates():
        registry.register(template)
    logger.info(f"Initialized built-in composition templates: {[t.id for t in registry.list()]}")
