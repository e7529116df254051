"""
ZK-PRET Composed Proofs - Execution Scheduler
Version: 1.0
Purpose: Execute a resolved component graph layer by layer and finalize the run
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from src.utils.logging_config import bind_log_context, execution_id_var

from .adapter import ComponentExecutorAdapter
from .aggregator import AggregationOutcome, Aggregator
from .audit import AuditActions, AuditRecorder
from .cache import ProofCache, interpolate_cache_key
from .errors import ComponentExecutionError
from .models import (
    AuditLevel,
    ComponentResult,
    ComponentStatus,
    ComposedProofExecution,
    ComposedProofResult,
    CompositionTemplate,
    ExecutionMetrics,
    ExecutionOptions,
    ExecutionStatus,
    OverallVerdict,
    ProofComponent,
    RetryPolicy,
)
from .resolver import ResolvedGraph
from .retry import RetryController

logger = logging.getLogger(__name__)

SKIP_DEPENDENCY_FAILED = "dependency_failed"
SKIP_CANCELLED = "cancelled"


@dataclass
class _RunContext:
    """Per-execution scheduling state"""

    execution: ComposedProofExecution
    template: CompositionTemplate
    graph: ResolvedGraph
    global_parameters: Dict[str, Any]
    options: ExecutionOptions
    audit: AuditRecorder
    semaphore: asyncio.Semaphore
    running: int = 0
    max_running: int = 0
    layer_widths: List[int] = field(default_factory=list)


class ExecutionScheduler:
    """
    Orchestrates one composed proof execution.

    - Processes dependency layers in order with a strict barrier between them
    - Launches eligible components of a layer concurrently, capped by
      max_parallelism (FIFO as capacity frees up)
    - Consults the cache before invoking, and runs misses through the retry
      controller
    - Skips components whose non-optional dependencies did not PASS
    - Never aborts the run on a component failure; the aggregator decides
    - Cancellation is cooperative: in-flight components finish, nothing new
      is launched, unlaunched components become SKIPPED
    """

    def __init__(
        self,
        adapter: ComponentExecutorAdapter,
        cache: Optional[ProofCache] = None,
        aggregator: Optional[Aggregator] = None,
        default_timeout_seconds: Optional[float] = 120.0,
        default_retry_policy: Optional[RetryPolicy] = None,
        default_max_parallelism: Optional[int] = None,
        cache_ttl_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.cache = cache if cache is not None else ProofCache()
        self.aggregator = aggregator or Aggregator()
        self.default_timeout_seconds = default_timeout_seconds
        self.default_retry_policy = default_retry_policy or RetryPolicy()
        self.default_max_parallelism = default_max_parallelism
        self.cache_ttl_seconds = cache_ttl_seconds
        self._sleep = sleep
        self._runs: Dict[str, _RunContext] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._runs

    def cancel(self, execution: ComposedProofExecution) -> bool:
        """
        Request cooperative cancellation.

        Returns False when the execution is already terminal or cancellation
        was already requested.
        """
        if execution.status.is_terminal or execution.cancel_requested:
            return False

        execution.request_cancel()
        ctx = self._runs.get(execution.id)
        details = {"execution_id": execution.id, "running_components": list(execution.running_components)}
        if ctx is not None:
            ctx.audit.warn(AuditActions.CANCELLATION_REQUESTED, details)
        logger.info(f"Cancellation requested for execution {execution.id}")
        return True

    async def run(
        self,
        execution: ComposedProofExecution,
        template: CompositionTemplate,
        graph: ResolvedGraph,
        global_parameters: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        audit: Optional[AuditRecorder] = None,
    ) -> ComposedProofResult:
        """Execute every component, aggregate, and return the final result."""
        options = options or ExecutionOptions()
        max_parallelism = (
            options.max_parallelism or self.default_max_parallelism or len(graph.components)
        )
        ctx = _RunContext(
            execution=execution,
            template=template,
            graph=graph,
            global_parameters=dict(global_parameters or {}),
            options=options,
            audit=audit or AuditRecorder(execution_id=execution.id),
            semaphore=asyncio.Semaphore(max(1, max_parallelism)),
        )
        self._runs[execution.id] = ctx
        token = execution_id_var.set(execution.id)

        try:
            execution.start()
            ctx.audit.info(
                AuditActions.EXECUTION_STARTED,
                {
                    "execution_id": execution.id,
                    "template_id": template.id,
                    "template_version": template.version,
                    "components": len(graph.components),
                    "layers": graph.layer_count,
                    "max_parallelism": options.max_parallelism or self.default_max_parallelism,
                },
            )
            if execution.cancel_requested:
                ctx.audit.warn(AuditActions.CANCELLATION_REQUESTED, {"execution_id": execution.id})

            try:
                await self._run_layers(ctx)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Scheduler failure in execution {execution.id}")
                self._settle_remaining_as_error(ctx, e)

            return self._finalize(ctx)
        except asyncio.CancelledError:
            if not execution.status.is_terminal:
                execution.finish(ExecutionStatus.CANCELLED)
            raise
        finally:
            self._runs.pop(execution.id, None)
            execution_id_var.reset(token)

    # ------------------------------------------------------------------
    # Layer processing
    # ------------------------------------------------------------------

    async def _run_layers(self, ctx: _RunContext) -> None:
        execution = ctx.execution
        settled: Dict[str, ComponentResult] = {}
        total_layers = ctx.graph.layer_count

        for layer_idx, layer in enumerate(ctx.graph.layers):
            if execution.cancel_requested:
                for cid in layer:
                    self._skip(ctx, ctx.graph.components[cid], SKIP_CANCELLED)
                continue

            execution.set_phase(f"Layer {layer_idx + 1}/{total_layers}")
            eligible: List[ProofComponent] = []
            for cid in layer:
                component = ctx.graph.components[cid]
                blocking = [
                    dep
                    for dep in component.dependencies
                    if not ctx.graph.components[dep].optional
                    and settled[dep].status != ComponentStatus.PASS
                ]
                if blocking:
                    self._skip(ctx, component, SKIP_DEPENDENCY_FAILED, blocking)
                else:
                    eligible.append(component)

            ctx.layer_widths.append(len(eligible))
            ctx.audit.info(
                AuditActions.LAYER_STARTED,
                {
                    "layer": layer_idx,
                    "components": list(layer),
                    "eligible": [c.id for c in eligible],
                },
            )
            logger.info(
                f"Executing layer {layer_idx + 1}/{total_layers}: {[c.id for c in eligible]}"
            )

            await asyncio.gather(*(self._launch(ctx, component) for component in eligible))

            for result in execution.results:
                settled[result.component_id] = result

    async def _launch(self, ctx: _RunContext, component: ProofComponent) -> None:
        with bind_log_context(component_id=component.id):
            if ctx.execution.cancel_requested:
                self._skip(ctx, component, SKIP_CANCELLED)
                return

            # Hits settle without a concurrency slot or a RUNNING phase
            parameters = {**ctx.global_parameters, **component.parameters}
            cache_key, cached = self._lookup_cache(ctx, component, parameters)
            if cached is not None:
                ctx.execution.record_result(cached)
                return

            async with ctx.semaphore:
                if ctx.execution.cancel_requested:
                    self._skip(ctx, component, SKIP_CANCELLED)
                    return

                ctx.execution.mark_running(component.id)
                ctx.running += 1
                ctx.max_running = max(ctx.max_running, ctx.running)
                try:
                    result = await self._execute_component(ctx, component, parameters, cache_key)
                finally:
                    ctx.running -= 1
                ctx.execution.record_result(result)

    def _lookup_cache(
        self, ctx: _RunContext, component: ProofComponent, parameters: Dict[str, Any]
    ) -> Tuple[Optional[str], Optional[ComponentResult]]:
        """Cache key for the component (None when not cacheable) and any hit."""
        if not (ctx.options.enable_caching and component.is_cacheable):
            return None, None

        cache_key = interpolate_cache_key(component.cache_key or "", parameters)
        cached = self.cache.get(cache_key)
        if cached is None:
            ctx.audit.info(AuditActions.CACHE_MISS, {"cache_key": cache_key}, component_id=component.id)
            return cache_key, None

        ctx.audit.info(AuditActions.CACHE_HIT, {"cache_key": cache_key}, component_id=component.id)
        return cache_key, cached.model_copy(
            update={
                "component_id": component.id,
                "tool_name": component.tool_name,
                "optional": component.optional,
                "dependencies": list(component.dependencies),
                "cache_hit": True,
                "retry_count": 0,
                "execution_time_ms": 0,
                "timestamp": datetime.now(timezone.utc),
            }
        )

    async def _execute_component(
        self,
        ctx: _RunContext,
        component: ProofComponent,
        parameters: Dict[str, Any],
        cache_key: Optional[str],
    ) -> ComponentResult:
        try:
            return await self._execute_component_inner(ctx, component, parameters, cache_key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure executing component {component.id}")
            error = ComponentExecutionError(
                f"Component '{component.id}' failed unexpectedly: {e}",
                component_id=component.id,
                original_error=e,
                details={"error_kind": type(e).__name__},
            )
            ctx.audit.error(
                AuditActions.COMPONENT_EXECUTION_ERROR, error.to_dict(), component_id=component.id
            )
            return self._result(
                component,
                ComponentStatus.ERROR,
                error=error.message,
                error_kind=type(e).__name__,
            )

    async def _execute_component_inner(
        self,
        ctx: _RunContext,
        component: ProofComponent,
        parameters: Dict[str, Any],
        cache_key: Optional[str],
    ) -> ComponentResult:
        audit = ctx.audit
        audit.info(
            AuditActions.COMPONENT_EXECUTION_STARTED,
            {"tool_name": component.tool_name},
            component_id=component.id,
        )

        def on_retry(retry_number: int, delay: float, error: str, error_kind: Optional[str]) -> None:
            audit.warn(
                AuditActions.COMPONENT_RETRY,
                {"attempt": retry_number, "delay_seconds": delay, "error": error, "error_kind": error_kind},
                component_id=component.id,
            )

        controller = RetryController(
            ctx.options.retry_policy or self.default_retry_policy, sleep=self._sleep
        )
        timeout = (
            component.timeout_seconds
            or ctx.options.timeout_seconds
            or self.default_timeout_seconds
        )
        outcome = await controller.run(
            component.id,
            lambda: self.adapter.execute(component.tool_name, parameters),
            timeout_seconds=timeout,
            on_retry=on_retry,
        )

        result = self._result(
            component,
            outcome.status,
            zk_proof_generated=outcome.zk_proof_generated,
            execution_time_ms=outcome.elapsed_ms,
            output=outcome.outcome.output if outcome.outcome else None,
            error=outcome.error,
            error_kind=outcome.error_kind,
            retry_count=outcome.retry_count,
        )

        if outcome.status == ComponentStatus.TIMEOUT:
            audit.error(
                AuditActions.COMPONENT_TIMEOUT,
                {"timeout_seconds": timeout, "retry_count": outcome.retry_count},
                component_id=component.id,
            )
        elif outcome.status == ComponentStatus.ERROR:
            error = ComponentExecutionError(
                f"Component '{component.id}' failed after {outcome.retry_count + 1} attempt(s)",
                component_id=component.id,
                details={
                    "error": outcome.error,
                    "error_kind": outcome.error_kind,
                    "retry_count": outcome.retry_count,
                },
            )
            audit.error(
                AuditActions.COMPONENT_EXECUTION_ERROR, error.to_dict(), component_id=component.id
            )
        else:
            audit.info(
                AuditActions.COMPONENT_EXECUTION_COMPLETED,
                {
                    "status": result.status.value,
                    "execution_time_ms": result.execution_time_ms,
                    "retry_count": result.retry_count,
                },
                component_id=component.id,
            )

        if cache_key is not None and result.status == ComponentStatus.PASS:
            self.cache.put(cache_key, result, ttl_seconds=self.cache_ttl_seconds)
            audit.info(AuditActions.CACHE_STORED, {"cache_key": cache_key}, component_id=component.id)

        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _result(self, component: ProofComponent, status: ComponentStatus, **fields) -> ComponentResult:
        return ComponentResult(
            component_id=component.id,
            tool_name=component.tool_name,
            status=status,
            optional=component.optional,
            dependencies=list(component.dependencies),
            **fields,
        )

    def _skip(
        self,
        ctx: _RunContext,
        component: ProofComponent,
        reason: str,
        blocking: Optional[List[str]] = None,
    ) -> None:
        details: Dict[str, Any] = {"reason": reason}
        if blocking:
            details["failed_dependencies"] = blocking
            message = f"Skipped: required dependencies did not pass: {', '.join(blocking)}"
        else:
            message = "Skipped: execution cancelled"

        ctx.audit.warn(AuditActions.COMPONENT_SKIPPED, details, component_id=component.id)
        ctx.execution.record_result(
            self._result(component, ComponentStatus.SKIPPED, error=message, error_kind=reason.upper())
        )

    def _settle_remaining_as_error(self, ctx: _RunContext, exc: Exception) -> None:
        settled = set(ctx.execution.settled_ids())
        ctx.audit.error(
            AuditActions.EXECUTION_FAILED,
            {"error": f"{type(exc).__name__}: {exc}"},
        )
        for cid, component in ctx.graph.components.items():
            if cid not in settled and cid not in ctx.execution.running_components:
                ctx.execution.record_result(
                    self._result(
                        component,
                        ComponentStatus.ERROR,
                        error=f"Scheduler failure: {exc}",
                        error_kind=type(exc).__name__,
                    )
                )

    def _final_status(
        self, execution: ComposedProofExecution, aggregation: AggregationOutcome
    ) -> ExecutionStatus:
        if execution.cancel_requested:
            return ExecutionStatus.CANCELLED
        required_not_passed = any(
            not r.optional and r.status != ComponentStatus.PASS for r in execution.results
        )
        if aggregation.overall_verdict == OverallVerdict.FAIL and required_not_passed:
            return ExecutionStatus.FAILED
        return ExecutionStatus.COMPLETED

    def _finalize(self, ctx: _RunContext) -> ComposedProofResult:
        execution = ctx.execution
        audit = ctx.audit

        order = {c.id: idx for idx, c in enumerate(ctx.template.components)}
        results = sorted(execution.results, key=lambda r: order.get(r.component_id, len(order)))

        execution.set_phase("Aggregating")
        aggregation = self.aggregator.aggregate(results, ctx.template.aggregation_logic)
        if aggregation.overall_verdict == OverallVerdict.ERROR:
            audit.error(
                AuditActions.AGGREGATION_FAILED,
                {"type": ctx.template.aggregation_logic.type.value, "error": aggregation.error},
            )
        else:
            audit.info(
                AuditActions.AGGREGATION_COMPLETED,
                {
                    "type": ctx.template.aggregation_logic.type.value,
                    "overall_verdict": aggregation.overall_verdict.value,
                    "score": aggregation.score,
                    "passed": aggregation.passed_components,
                    "failed": aggregation.failed_components,
                    "skipped": aggregation.skipped_components,
                },
            )

        status = self._final_status(execution, aggregation)
        end_time = datetime.now(timezone.utc)
        total_ms = int((end_time - execution.start_time).total_seconds() * 1000)

        final_action = {
            ExecutionStatus.COMPLETED: AuditActions.EXECUTION_COMPLETED,
            ExecutionStatus.FAILED: AuditActions.EXECUTION_FAILED,
            ExecutionStatus.CANCELLED: AuditActions.EXECUTION_CANCELLED,
        }[status]
        audit.record(
            final_action,
            {
                "execution_id": execution.id,
                "overall_verdict": aggregation.overall_verdict.value,
                "total_execution_time_ms": total_ms,
            },
            level=audit_level_for(status),
        )
        execution.finish(status)

        logger.info(
            f"Execution {execution.id} finished: status={status.value} "
            f"verdict={aggregation.overall_verdict.value} "
            f"passed={aggregation.passed_components}/{aggregation.total_components}"
        )

        return ComposedProofResult(
            success=status == ExecutionStatus.COMPLETED
            and aggregation.overall_verdict == OverallVerdict.PASS,
            request_id=execution.request_id,
            template_id=execution.template_id,
            execution_id=execution.id,
            status=status,
            overall_verdict=aggregation.overall_verdict,
            component_results=results,
            aggregated_result=aggregation.to_aggregated_result(),
            execution_metrics=ExecutionMetrics(
                start_time=execution.start_time,
                end_time=end_time,
                total_execution_time_ms=total_ms,
                parallel_executions=ctx.max_running,
                cache_hits=sum(1 for r in results if r.cache_hit),
                retries=sum(r.retry_count for r in results),
            ),
            audit_trail=list(audit.entries),
            metadata={
                "template_version": ctx.template.version,
                "layers": ctx.graph.layers,
                "aggregation_type": ctx.template.aggregation_logic.type.value,
                "aggregation_error": aggregation.error,
            },
        )


def audit_level_for(status: ExecutionStatus) -> AuditLevel:
    if status == ExecutionStatus.FAILED:
        return AuditLevel.ERROR
    if status == ExecutionStatus.CANCELLED:
        return AuditLevel.WARN
    return AuditLevel.INFO
