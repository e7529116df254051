"""
ZK-PRET Composed Proofs - Data Models
Version: 1.0
Purpose: Pydantic models for composition templates, run records and results
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from ..errors import ExecutionStateError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================


class AggregationType(str, Enum):
    """Rule used to reduce component outcomes to one verdict"""

    ALL_REQUIRED = "ALL_REQUIRED"
    MAJORITY = "MAJORITY"
    WEIGHTED = "WEIGHTED"
    CUSTOM = "CUSTOM"


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts"""

    FIXED = "FIXED"
    LINEAR = "LINEAR"
    EXPONENTIAL = "EXPONENTIAL"


class ExecutionStatus(str, Enum):
    """Lifecycle of a composed proof run"""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ComponentStatus(str, Enum):
    """Terminal outcome of a single proof component"""

    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"

    @property
    def is_failure(self) -> bool:
        """FAIL, ERROR and TIMEOUT count as failed evaluations"""
        return self in (ComponentStatus.FAIL, ComponentStatus.ERROR, ComponentStatus.TIMEOUT)


class ToolStatus(str, Enum):
    """Status reported by a component executor adapter"""

    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"


class OverallVerdict(str, Enum):
    """Verdict of the aggregation step"""

    PASS = "PASS"
    FAIL = "FAIL"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"


class AuditLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class TemplateCategory(str, Enum):
    """Categories used by the built-in templates"""

    KYC_COMPLIANCE = "kyc-compliance"
    FINANCIAL_RISK = "financial-risk"
    BUSINESS_INTEGRITY = "business-integrity"
    REGULATORY_COMPLIANCE = "regulatory-compliance"
    CUSTOM = "custom"


# ============================================================================
# TEMPLATE MODELS
# ============================================================================


class ProofComponent(BaseModel):
    """One independently executable verification step"""

    id: str = Field(..., min_length=1)
    tool_name: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(
        default_factory=list, description="IDs of components this one waits for"
    )
    optional: bool = False
    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Per-attempt timeout override"
    )
    cache_key: Optional[str] = Field(
        default=None, description="Cache key template, e.g. 'gleif-{companyName}'"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def is_cacheable(self) -> bool:
        return bool(self.cache_key)


class AggregationLogic(BaseModel):
    """Tagged aggregation rule"""

    type: AggregationType
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    weights: Optional[Dict[str, float]] = None
    decision_function: Optional[str] = Field(
        default=None, description="Identifier of a registered decision function (CUSTOM)"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("weights")
    @classmethod
    def check_weights(cls, v: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        if v is not None and any(w < 0 for w in v.values()):
            raise ValueError("weights must be non-negative")
        return v

    @property
    def effective_threshold(self) -> float:
        return 0.5 if self.threshold is None else self.threshold


class TemplateMetadata(BaseModel):
    category: str = TemplateCategory.CUSTOM.value
    tags: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    created: datetime = Field(default_factory=_utcnow)
    updated: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class CompositionTemplate(BaseModel):
    """Named, versioned bundle of components plus an aggregation rule"""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    version: str = "1.0.0"
    components: List[ProofComponent]
    aggregation_logic: AggregationLogic
    metadata: Optional[TemplateMetadata] = None

    model_config = ConfigDict(frozen=True)

    def get_component(self, component_id: str) -> Optional[ProofComponent]:
        return next((c for c in self.components if c.id == component_id), None)


# ============================================================================
# REQUEST MODELS
# ============================================================================


class RetryPolicy(BaseModel):
    max_retries: int = Field(default=1, ge=0)
    backoff_strategy: BackoffStrategy = BackoffStrategy.FIXED
    backoff_delay_seconds: float = Field(default=1.0, ge=0.0)
    retryable_errors: Optional[List[str]] = None


class ExecutionOptions(BaseModel):
    max_parallelism: Optional[int] = Field(
        default=None, ge=1, description="None means every eligible component at once"
    )
    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Default per-component timeout"
    )
    enable_caching: bool = True
    retry_policy: Optional[RetryPolicy] = None


class CustomComposition(BaseModel):
    components: List[ProofComponent]
    aggregation_logic: AggregationLogic


class ComposedProofRequest(BaseModel):
    """Inbound request. Exactly one of template_id / custom_composition is required."""

    template_id: Optional[str] = None
    template_version: Optional[str] = None
    custom_composition: Optional[CustomComposition] = None
    global_parameters: Dict[str, Any] = Field(default_factory=dict)
    execution_options: ExecutionOptions = Field(default_factory=ExecutionOptions)
    request_id: Optional[str] = None


# ============================================================================
# RESULT MODELS
# ============================================================================


class ComponentResult(BaseModel):
    """Outcome of one component within one execution"""

    component_id: str
    tool_name: str
    status: ComponentStatus
    optional: bool = False
    zk_proof_generated: bool = False
    execution_time_ms: int = 0
    output: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    cache_hit: bool = False
    retry_count: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class AuditEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    action: str
    component_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    level: AuditLevel = AuditLevel.INFO

    model_config = ConfigDict(frozen=True)


class AggregatedResult(BaseModel):
    total_components: int = 0
    passed_components: int = 0
    failed_components: int = 0
    skipped_components: int = 0
    aggregation_score: Optional[float] = None


class ExecutionMetrics(BaseModel):
    start_time: datetime
    end_time: datetime
    total_execution_time_ms: int = 0
    parallel_executions: int = 0
    cache_hits: int = 0
    retries: int = 0


class ComposedProofResult(BaseModel):
    """Outbound result of a composed proof run"""

    success: bool
    request_id: str
    template_id: Optional[str] = None
    execution_id: str
    status: ExecutionStatus
    overall_verdict: OverallVerdict
    component_results: List[ComponentResult] = Field(default_factory=list)
    aggregated_result: AggregatedResult
    execution_metrics: ExecutionMetrics
    audit_trail: List[AuditEntry] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_component_result(self, component_id: str) -> Optional[ComponentResult]:
        return next((r for r in self.component_results if r.component_id == component_id), None)


# ============================================================================
# RUN RECORD
# ============================================================================


class ExecutionProgress(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    running: int = 0
    pending: int = 0

    @property
    def settled(self) -> int:
        return self.completed + self.failed + self.skipped


class ComposedProofExecution(BaseModel):
    """
    Mutable run record.

    Only the scheduler mutates it, and only through the methods below; once
    the status is terminal every mutation raises ExecutionStateError.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    request_id: str
    template_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    progress: ExecutionProgress = Field(default_factory=ExecutionProgress)
    results: List[ComponentResult] = Field(default_factory=list)
    running_components: List[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    current_phase: str = "Initializing"
    cancel_requested: bool = False

    _result_ids: set = PrivateAttr(default_factory=set)

    @classmethod
    def for_components(
        cls,
        request_id: str,
        component_count: int,
        template_id: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> "ComposedProofExecution":
        return cls(
            id=execution_id or str(uuid4()),
            request_id=request_id,
            template_id=template_id,
            progress=ExecutionProgress(total=component_count, pending=component_count),
        )

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise ExecutionStateError(
                f"Execution {self.id} is {self.status.value} and can no longer change",
                details={"execution_id": self.id, "status": self.status.value},
            )

    def start(self) -> None:
        self._ensure_mutable()
        self.status = ExecutionStatus.RUNNING
        self.current_phase = "Running"

    def set_phase(self, phase: str) -> None:
        self._ensure_mutable()
        self.current_phase = phase

    def mark_running(self, component_id: str) -> None:
        self._ensure_mutable()
        self.running_components.append(component_id)
        self.progress.running += 1
        self.progress.pending -= 1

    def record_result(self, result: ComponentResult) -> None:
        """Append a terminal component result; each component settles exactly once."""
        self._ensure_mutable()
        if result.component_id in self._result_ids:
            raise ExecutionStateError(
                f"Component {result.component_id} already settled in execution {self.id}",
                component_id=result.component_id,
            )
        self._result_ids.add(result.component_id)
        self.results.append(result)

        if result.component_id in self.running_components:
            self.running_components.remove(result.component_id)
            self.progress.running -= 1
        else:
            self.progress.pending -= 1

        if result.status == ComponentStatus.PASS:
            self.progress.completed += 1
        elif result.status == ComponentStatus.SKIPPED:
            self.progress.skipped += 1
        else:
            self.progress.failed += 1

    def request_cancel(self) -> None:
        self._ensure_mutable()
        self.cancel_requested = True

    def finish(self, status: ExecutionStatus) -> None:
        self._ensure_mutable()
        if not status.is_terminal:
            raise ExecutionStateError(f"{status.value} is not a terminal status")
        self.status = status
        self.end_time = _utcnow()
        self.current_phase = status.value.capitalize()

    def settled_ids(self) -> List[str]:
        return [r.component_id for r in self.results]


class ProgressDetails(BaseModel):
    """Completion figures and per-state component ids"""

    percentage: int = Field(..., ge=0, le=100)
    current_phase: str
    completed_components: List[str] = Field(default_factory=list)
    running_components: List[str] = Field(default_factory=list)
    failed_components: List[str] = Field(default_factory=list)
    skipped_components: List[str] = Field(default_factory=list)


class ProgressReport(BaseModel):
    """Pollable progress view of an execution"""

    execution_id: str
    status: ExecutionStatus
    progress: ProgressDetails
    partial_results: Optional[List[ComponentResult]] = None

    @classmethod
    def from_execution(
        cls, execution: ComposedProofExecution, include_partial: bool = True
    ) -> "ProgressReport":
        total = execution.progress.total
        percentage = round(execution.progress.settled / total * 100) if total else 100
        return cls(
            execution_id=execution.id,
            status=execution.status,
            progress=ProgressDetails(
                percentage=percentage,
                current_phase=execution.current_phase,
                completed_components=[
                    r.component_id for r in execution.results if r.status == ComponentStatus.PASS
                ],
                running_components=list(execution.running_components),
                failed_components=[
                    r.component_id for r in execution.results if r.status.is_failure
                ],
                skipped_components=[
                    r.component_id
                    for r in execution.results
                    if r.status == ComponentStatus.SKIPPED
                ],
            ),
            partial_results=list(execution.results) if include_partial else None,
        )


class ToolExecutionOutcome(BaseModel):
    """What a component executor adapter returns for one invocation"""

    status: ToolStatus
    zk_proof_generated: bool = False
    output: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
