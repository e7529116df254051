"""
Shared fixtures for composed proof engine tests.

Provides:
- Component / template / result factories
- run_template: resolve + execute a template through a scheduler
"""

from typing import Any, Dict, Optional

import pytest

from src.composed_proofs.models import (
    AggregationLogic,
    AggregationType,
    ComponentResult,
    ComponentStatus,
    ComposedProofExecution,
    CompositionTemplate,
    ExecutionOptions,
    ProofComponent,
    RetryPolicy,
)
from src.composed_proofs.resolver import DependencyResolver


@pytest.fixture
def component():
    """Factory for ProofComponent (tool name defaults to 'tool-<id>')."""

    def _make(component_id: str, **overrides) -> ProofComponent:
        fields: Dict[str, Any] = {"id": component_id, "tool_name": f"tool-{component_id}"}
        fields.update(overrides)
        return ProofComponent(**fields)

    return _make


@pytest.fixture
def template():
    """Factory for CompositionTemplate with ALL_REQUIRED by default."""

    def _make(components, logic: Optional[AggregationLogic] = None, **overrides) -> CompositionTemplate:
        fields: Dict[str, Any] = {
            "id": "test-template",
            "name": "Test Template",
            "components": components,
            "aggregation_logic": logic or AggregationLogic(type=AggregationType.ALL_REQUIRED),
        }
        fields.update(overrides)
        return CompositionTemplate(**fields)

    return _make


@pytest.fixture
def result():
    """Factory for ComponentResult."""

    def _make(component_id: str, status: ComponentStatus, optional: bool = False, **overrides):
        return ComponentResult(
            component_id=component_id,
            tool_name=f"tool-{component_id}",
            status=status,
            optional=optional,
            **overrides,
        )

    return _make


@pytest.fixture
def no_retry():
    return RetryPolicy(max_retries=0, backoff_delay_seconds=0)


@pytest.fixture
def run_template():
    """Resolve a template and run it through the given scheduler."""

    async def _run(
        scheduler,
        tmpl: CompositionTemplate,
        global_parameters: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        execution: Optional[ComposedProofExecution] = None,
    ):
        graph = DependencyResolver().resolve(tmpl.components)
        execution = execution or ComposedProofExecution.for_components(
            request_id="req-test", component_count=len(tmpl.components), template_id=tmpl.id
        )
        return await scheduler.run(
            execution, tmpl, graph, global_parameters=global_parameters, options=options
        )

    return _run
