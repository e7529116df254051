"""
ZK-PRET Composed Proofs

Executes compositions of zero-knowledge verification tools as dependency
layers, with caching, retries, cooperative cancellation, an audit trail and
pluggable verdict aggregation.

Usage:
    from src.composed_proofs import ComposedProofRequest, get_composed_proof_service

    service = get_composed_proof_service()
    result = await service.execute(
        ComposedProofRequest(template_id="full-kyc-compliance",
                             global_parameters={"companyName": "ACME CORP"})
    )
"""

from .adapter import (
    CallableExecutorAdapter,
    ComponentExecutorAdapter,
    HTTPExecutorAdapter,
    RoutingExecutorAdapter,
)
from .aggregator import AggregationOutcome, Aggregator, DecisionFunctionRegistry
from .audit import AuditActions, AuditRecorder
from .cache import ProofCache, interpolate_cache_key
from .config import ComposedProofConfig, get_composed_proof_config, reset_composed_proof_config
from .errors import (
    AggregationError,
    ComponentExecutionError,
    ComposedProofError,
    DependencyError,
    ExecutionNotFoundError,
    ExecutionStateError,
    TemplateNotFoundError,
    ValidationError,
)
from .models import (
    AggregationLogic,
    AggregationType,
    BackoffStrategy,
    ComponentResult,
    ComponentStatus,
    ComposedProofExecution,
    ComposedProofRequest,
    ComposedProofResult,
    CompositionTemplate,
    CustomComposition,
    ExecutionOptions,
    ExecutionStatus,
    OverallVerdict,
    ProgressDetails,
    ProgressReport,
    ProofComponent,
    RetryPolicy,
    ToolExecutionOutcome,
    ToolStatus,
)
from .resolver import DependencyResolver, ResolvedGraph
from .retry import RetryController, calculate_backoff_delay
from .scheduler import ExecutionScheduler
from .service import (
    ComposedProofAdapter,
    ComposedProofService,
    get_composed_proof_service,
    reset_composed_proof_service,
    set_composed_proof_service,
)
from .store import ExecutionStore
from .templates import TemplateRegistry, builtin_templates, register_builtin_templates

__all__ = [
    # Service
    "ComposedProofService",
    "ComposedProofAdapter",
    "get_composed_proof_service",
    "set_composed_proof_service",
    "reset_composed_proof_service",
    # Engine parts
    "DependencyResolver",
    "ResolvedGraph",
    "ProofCache",
    "interpolate_cache_key",
    "RetryController",
    "calculate_backoff_delay",
    "ExecutionScheduler",
    "Aggregator",
    "AggregationOutcome",
    "DecisionFunctionRegistry",
    "AuditActions",
    "AuditRecorder",
    "ExecutionStore",
    "TemplateRegistry",
    "builtin_templates",
    "register_builtin_templates",
    # Adapters
    "ComponentExecutorAdapter",
    "HTTPExecutorAdapter",
    "CallableExecutorAdapter",
    "RoutingExecutorAdapter",
    # Config
    "ComposedProofConfig",
    "get_composed_proof_config",
    "reset_composed_proof_config",
    # Errors
    "ComposedProofError",
    "ValidationError",
    "TemplateNotFoundError",
    "DependencyError",
    "ComponentExecutionError",
    "AggregationError",
    "ExecutionNotFoundError",
    "ExecutionStateError",
    # Models
    "AggregationLogic",
    "AggregationType",
    "BackoffStrategy",
    "ComponentResult",
    "ComponentStatus",
    "ComposedProofExecution",
    "ComposedProofRequest",
    "ComposedProofResult",
    "CompositionTemplate",
    "CustomComposition",
    "ExecutionOptions",
    "ExecutionStatus",
    "OverallVerdict",
    "ProgressDetails",
    "ProgressReport",
    "ProofComponent",
    "RetryPolicy",
    "ToolExecutionOutcome",
    "ToolStatus",
]
