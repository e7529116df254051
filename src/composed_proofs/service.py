"""
ZK-PRET Composed Proofs - Service
Version: 1.0
Purpose: Facade that accepts composed proof requests and owns the engine parts

Responsibilities:
- Resolve a request to a template (registered or inline) and validate it
  before any execution record exists
- Run executions synchronously or as background tasks
- Expose progress, results, cancellation, templates and cache maintenance
- Execute nested compositions (tool ``composed-proof-execution``)
"""

from __future__ import annotations

import asyncio
import logging
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from src.utils.logging_config import bind_log_context, request_id_var, timed_operation

from .adapter import ComponentExecutorAdapter, HTTPExecutorAdapter, RoutingExecutorAdapter
from .aggregator import Aggregator, DecisionFunction, DecisionFunctionRegistry
from .audit import AuditRecorder
from .cache import ProofCache
from .config import ComposedProofConfig, get_composed_proof_config
from .errors import ComposedProofError, ExecutionStateError, ValidationError
from .models import (
    ComposedProofExecution,
    ComposedProofRequest,
    ComposedProofResult,
    CompositionTemplate,
    ExecutionOptions,
    OverallVerdict,
    ProgressReport,
    TemplateCategory,
    TemplateMetadata,
    ToolExecutionOutcome,
    ToolStatus,
)
from .resolver import DependencyResolver, ResolvedGraph
from .scheduler import ExecutionScheduler
from .store import ExecutionStore
from .templates import NESTED_COMPOSITION_TOOL, TemplateRegistry, register_builtin_templates

logger = logging.getLogger(__name__)

INVALID_PARAMETERS = "INVALID_PARAMETERS"
NESTING_DEPTH_EXCEEDED = "NESTING_DEPTH_EXCEEDED"

_nesting_depth: ContextVar[int] = ContextVar("composed_proof_nesting_depth", default=0)

_VERDICT_TO_TOOL_STATUS = {
    OverallVerdict.PASS: ToolStatus.PASS,
    OverallVerdict.FAIL: ToolStatus.FAIL,
    OverallVerdict.PARTIAL: ToolStatus.FAIL,
    OverallVerdict.ERROR: ToolStatus.ERROR,
}


# ============================================================================
# NESTED COMPOSITION ADAPTER
# ============================================================================


class ComposedProofAdapter:
    """Runs a registered template as a single component of another composition."""

    def __init__(self, service: "ComposedProofService", max_depth: int = 3):
        self.service = service
        self.max_depth = max_depth

    async def execute(self, tool_name: str, parameters: Dict[str, Any]) -> ToolExecutionOutcome:
        template_id = parameters.get("template_id")
        if not template_id:
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR,
                error=f"Tool '{tool_name}' requires a template_id parameter",
                error_kind=INVALID_PARAMETERS,
            )

        depth = _nesting_depth.get()
        if depth >= self.max_depth:
            return ToolExecutionOutcome(
                status=ToolStatus.ERROR,
                error=f"Maximum nesting depth {self.max_depth} exceeded at template {template_id}",
                error_kind=NESTING_DEPTH_EXCEEDED,
            )

        request = ComposedProofRequest(
            template_id=template_id,
            template_version=parameters.get("template_version"),
            global_parameters={
                k: v for k, v in parameters.items() if k not in ("template_id", "template_version")
            },
            request_id=request_id_var.get(),
        )

        token = _nesting_depth.set(depth + 1)
        try:
            result = await self.service.execute(request)
        except ComposedProofError as e:
            return ToolExecutionOutcome(status=ToolStatus.ERROR, error=e.message, error_kind=e.code)
        finally:
            _nesting_depth.reset(token)

        status = _VERDICT_TO_TOOL_STATUS[result.overall_verdict]
        return ToolExecutionOutcome(
            status=status,
            zk_proof_generated=result.success,
            output={
                "execution_id": result.execution_id,
                "template_id": result.template_id,
                "overall_verdict": result.overall_verdict.value,
                "aggregation_score": result.aggregated_result.aggregation_score,
                "components": {r.component_id: r.status.value for r in result.component_results},
            },
            error=None
            if status == ToolStatus.PASS
            else f"Nested template {template_id} returned {result.overall_verdict.value}",
        )


# ============================================================================
# SERVICE
# ============================================================================


class ComposedProofService:
    """
    Entry point for composed proof executions.

    Example:
        service = ComposedProofService(adapter=CallableExecutorAdapter(tools))
        result = await service.execute(
            ComposedProofRequest(template_id="full-kyc-compliance",
                                 global_parameters={"companyName": "ACME CORP"})
        )
    """

    def __init__(
        self,
        adapter: Optional[ComponentExecutorAdapter] = None,
        config: Optional[ComposedProofConfig] = None,
        registry: Optional[TemplateRegistry] = None,
        cache: Optional[ProofCache] = None,
        store: Optional[ExecutionStore] = None,
        decision_functions: Optional[DecisionFunctionRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or get_composed_proof_config()
        engine = self.config.engine

        self.decision_functions = decision_functions or DecisionFunctionRegistry()
        self.aggregator = Aggregator(self.decision_functions)
        self.resolver = DependencyResolver()

        if registry is None:
            registry = TemplateRegistry(self.resolver, self.aggregator)
            if engine.register_builtin_templates:
                register_builtin_templates(registry)
        self.registry = registry

        self.cache = (
            cache
            if cache is not None
            else ProofCache(
                default_ttl_seconds=self.config.cache.ttl_seconds,
                stripes=self.config.cache.lock_stripes,
            )
        )
        self.store = (
            store
            if store is not None
            else ExecutionStore(
                retention_seconds=self.config.retention.retention_seconds,
                max_executions=self.config.retention.max_executions,
            )
        )

        backend = self.config.backend
        self.backend_adapter = adapter or HTTPExecutorAdapter(
            base_url=backend.url,
            timeout=backend.timeout_seconds,
            execute_path=backend.execute_path,
        )
        self.adapter = RoutingExecutorAdapter(
            self.backend_adapter,
            {NESTED_COMPOSITION_TOOL: ComposedProofAdapter(self, max_depth=engine.max_nesting_depth)},
        )

        self.scheduler = ExecutionScheduler(
            self.adapter,
            cache=self.cache,
            aggregator=self.aggregator,
            default_timeout_seconds=engine.default_component_timeout_seconds,
            default_retry_policy=self.config.retry.to_policy(),
            default_max_parallelism=engine.default_max_parallelism,
            cache_ttl_seconds=self.config.cache.ttl_seconds,
            sleep=sleep,
        )
        self._tasks: Dict[str, asyncio.Task] = {}

        logger.info(
            f"ComposedProofService initialized with {len(self.registry)} templates "
            f"(max_parallelism={engine.default_max_parallelism}, "
            f"cache_ttl={self.config.cache.ttl_seconds}s)"
        )

    # ------------------------------------------------------------------
    # Request preparation
    # ------------------------------------------------------------------

    def _prepare(
        self, request: ComposedProofRequest
    ) -> Tuple[ComposedProofExecution, CompositionTemplate, ResolvedGraph, ExecutionOptions]:
        """Validate a request and create its run record. Nothing is stored on failure."""
        has_template = bool(request.template_id)
        has_custom = request.custom_composition is not None
        if has_template == has_custom:
            raise ValidationError(
                "Exactly one of template_id or custom_composition must be provided",
                field="template_id",
            )

        execution_id = str(uuid4())
        with timed_operation("template_resolution", logger):
            if has_template:
                template = self.registry.get(request.template_id, request.template_version)
            else:
                custom = request.custom_composition
                self.aggregator.validate_logic(custom.aggregation_logic)
                template = CompositionTemplate(
                    id=f"custom-{execution_id}",
                    name="Custom Composition",
                    description="Inline composition supplied with the request",
                    components=custom.components,
                    aggregation_logic=custom.aggregation_logic,
                    metadata=TemplateMetadata(category=TemplateCategory.CUSTOM.value),
                )
            graph = self.resolver.resolve(template.components)

        options = request.execution_options
        if not self.config.engine.enable_caching and options.enable_caching:
            options = options.model_copy(update={"enable_caching": False})

        execution = ComposedProofExecution.for_components(
            request_id=request.request_id or request_id_var.get() or str(uuid4()),
            component_count=len(template.components),
            template_id=template.id,
            execution_id=execution_id,
        )
        return execution, template, graph, options

    async def _run(
        self,
        execution: ComposedProofExecution,
        template: CompositionTemplate,
        graph: ResolvedGraph,
        global_parameters: Dict[str, Any],
        options: ExecutionOptions,
    ) -> ComposedProofResult:
        with bind_log_context(request_id=execution.request_id):
            logger.info(
                f"Starting composed proof execution {execution.id} "
                f"(template={template.id}, request={execution.request_id})"
            )
            result = await self.scheduler.run(
                execution,
                template,
                graph,
                global_parameters=global_parameters,
                options=options,
                audit=AuditRecorder(execution_id=execution.id),
            )
            self.store.set_result(execution.id, result)
            return result

    # ------------------------------------------------------------------
    # Execution API
    # ------------------------------------------------------------------

    async def execute(self, request: ComposedProofRequest) -> ComposedProofResult:
        """Run a composed proof to completion and return its result."""
        execution, template, graph, options = self._prepare(request)
        self.store.add(execution)
        return await self._run(execution, template, graph, request.global_parameters, options)

    async def start_execution(self, request: ComposedProofRequest) -> str:
        """Validate, then run in a background task. Returns the execution ID."""
        execution, template, graph, options = self._prepare(request)
        self.store.add(execution)

        task = asyncio.create_task(
            self._run(execution, template, graph, request.global_parameters, options),
            name=f"composed-proof-{execution.id}",
        )
        self._tasks[execution.id] = task
        task.add_done_callback(lambda t, eid=execution.id: self._on_task_done(eid, t))
        return execution.id

    def _on_task_done(self, execution_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(execution_id, None)
        if task.cancelled():
            logger.warning(f"Background execution {execution_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background execution {execution_id} failed: {exc}", exc_info=exc)

    async def wait_for_result(
        self, execution_id: str, timeout: Optional[float] = None
    ) -> ComposedProofResult:
        execution = self.store.require(execution_id)
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)

        result = self.store.get_result(execution_id)
        if result is None:
            raise ExecutionStateError(
                f"Execution {execution_id} has no result (status {execution.status.value})",
                details={"execution_id": execution_id, "status": execution.status.value},
            )
        return result

    def get_progress(self, execution_id: str, include_partial: bool = True) -> ProgressReport:
        return ProgressReport.from_execution(
            self.store.require(execution_id), include_partial=include_partial
        )

    def get_execution(self, execution_id: str) -> ComposedProofExecution:
        return self.store.require(execution_id)

    def get_result(self, execution_id: str) -> Optional[ComposedProofResult]:
        """Final result, or None while the execution is still running."""
        return self.store.get_result(execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        execution = self.store.require(execution_id)
        return self.scheduler.cancel(execution)

    def purge_executions(self) -> int:
        removed = self.store.purge()
        if removed:
            logger.info(f"Purged {removed} expired execution records")
        return removed

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get_templates(self, category: Optional[str] = None) -> List[CompositionTemplate]:
        return self.registry.list(category)

    def get_template(self, template_id: str, version: Optional[str] = None) -> CompositionTemplate:
        return self.registry.get(template_id, version)

    def add_template(self, template: CompositionTemplate) -> CompositionTemplate:
        return self.registry.register(template)

    def register_decision_function(self, name: str, func: DecisionFunction) -> None:
        self.decision_functions.register(name, func)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup_expired()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel outstanding background runs and release the backend client."""
        for execution_id in list(self._tasks):
            execution = self.store.get(execution_id)
            if execution is not None:
                self.scheduler.cancel(execution)
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        close = getattr(self.backend_adapter, "close", None)
        if close is not None:
            await close()


# ============================================================================
# SINGLETON ACCESS
# ============================================================================

_composed_proof_service: Optional[ComposedProofService] = None


def get_composed_proof_service() -> ComposedProofService:
    """Get singleton ComposedProofService instance."""
    global _composed_proof_service
    if _composed_proof_service is None:
        _composed_proof_service = ComposedProofService()
    return _composed_proof_service


def set_composed_proof_service(service: Optional[ComposedProofService]) -> None:
    """Replace the singleton (used by the API lifespan and tests)."""
    global _composed_proof_service
    _composed_proof_service = service


def reset_composed_proof_service() -> None:
    """Reset singleton instance (for testing)."""
    set_composed_proof_service(None)
