"""
ZK-PRET Composed Proofs - Data Models
"""

from .composition_models import (
    AggregatedResult,
    AggregationLogic,
    # Enums
    AggregationType,
    AuditEntry,
    AuditLevel,
    BackoffStrategy,
    ComponentResult,
    ComponentStatus,
    ComposedProofExecution,
    ComposedProofRequest,
    ComposedProofResult,
    CompositionTemplate,
    CustomComposition,
    ExecutionMetrics,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionStatus,
    OverallVerdict,
    # Template models
    ProofComponent,
    ProgressDetails,
    ProgressReport,
    RetryPolicy,
    TemplateCategory,
    TemplateMetadata,
    ToolExecutionOutcome,
    ToolStatus,
)

__all__ = [
    "AggregationType",
    "BackoffStrategy",
    "ExecutionStatus",
    "ComponentStatus",
    "ToolStatus",
    "OverallVerdict",
    "AuditLevel",
    "TemplateCategory",
    "ProofComponent",
    "AggregationLogic",
    "TemplateMetadata",
    "CompositionTemplate",
    "RetryPolicy",
    "ExecutionOptions",
    "CustomComposition",
    "ComposedProofRequest",
    "ComponentResult",
    "AuditEntry",
    "AggregatedResult",
    "ExecutionMetrics",
    "ComposedProofResult",
    "ExecutionProgress",
    "ComposedProofExecution",
    "ProgressDetails",
    "ProgressReport",
    "ToolExecutionOutcome",
]
