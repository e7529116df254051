"""
ZK-PRET Composed Proofs - Aggregator
Version: 1.0
Purpose: Reduce component outcomes into one overall verdict

ALL_REQUIRED policy:
- any non-optional component that FAILED, ERRORED or TIMED OUT -> FAIL
- otherwise any non-optional component SKIPPED -> PARTIAL
- otherwise PASS (optional failures never change the verdict)

A required skip caused by an upstream required failure therefore always
reports FAIL. PARTIAL only appears when required components were left
unevaluated without any required failure, e.g. after cancellation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

from .errors import AggregationError, ValidationError
from .models import (
    AggregatedResult,
    AggregationLogic,
    AggregationType,
    ComponentResult,
    ComponentStatus,
    OverallVerdict,
)

logger = logging.getLogger(__name__)

DecisionFunction = Callable[[Sequence[ComponentResult]], Union[OverallVerdict, str]]


# ============================================================================
# DECISION FUNCTION REGISTRY
# ============================================================================


class DecisionFunctionRegistry:
    """Named decision functions for CUSTOM aggregation"""

    def __init__(self):
        self._functions: Dict[str, DecisionFunction] = {}
        self._lock = threading.Lock()

    def register(self, name: str, func: DecisionFunction) -> None:
        with self._lock:
            if name in self._functions:
                logger.warning(f"Decision function '{name}' already registered, overwriting")
            self._functions[name] = func

    def decision_function(self, name: str) -> Callable[[DecisionFunction], DecisionFunction]:
        """Decorator form of register()"""

        def decorator(func: DecisionFunction) -> DecisionFunction:
            self.register(name, func)
            return func

        return decorator

    def get(self, name: str) -> Optional[DecisionFunction]:
        with self._lock:
            return self._functions.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._functions

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._functions)


# ============================================================================
# AGGREGATION OUTCOME
# ============================================================================


@dataclass(frozen=True)
class AggregationOutcome:
    overall_verdict: OverallVerdict
    total_components: int
    passed_components: int
    failed_components: int
    skipped_components: int
    score: Optional[float] = None
    error: Optional[str] = None

    def to_aggregated_result(self) -> AggregatedResult:
        return AggregatedResult(
            total_components=self.total_components,
            passed_components=self.passed_components,
            failed_components=self.failed_components,
            skipped_components=self.skipped_components,
            aggregation_score=self.score,
        )


# ============================================================================
# AGGREGATOR
# ============================================================================


class Aggregator:
    """
    Pure reduction of a frozen result set. Calling it twice on the same
    results yields the same outcome.
    """

    def __init__(self, decision_functions: Optional[DecisionFunctionRegistry] = None):
        self.decision_functions = decision_functions or DecisionFunctionRegistry()

    def validate_logic(self, logic: AggregationLogic) -> None:
        """Structural checks run when a template is registered or a request accepted"""
        if logic.type == AggregationType.WEIGHTED and not logic.weights:
            raise ValidationError(
                "Weights must be provided for weighted aggregation", field="aggregation_logic.weights"
            )
        if logic.type == AggregationType.CUSTOM:
            if not logic.decision_function:
                raise ValidationError(
                    "CUSTOM aggregation requires a decision_function identifier",
                    field="aggregation_logic.decision_function",
                )
            if logic.decision_function not in self.decision_functions:
                raise ValidationError(
                    f"Unknown decision function: {logic.decision_function}",
                    field="aggregation_logic.decision_function",
                )

    def aggregate(
        self, results: Sequence[ComponentResult], logic: AggregationLogic
    ) -> AggregationOutcome:
        passed = sum(1 for r in results if r.status == ComponentStatus.PASS)
        failed = sum(1 for r in results if r.status.is_failure)
        skipped = sum(1 for r in results if r.status == ComponentStatus.SKIPPED)
        counts = dict(
            total_components=len(results),
            passed_components=passed,
            failed_components=failed,
            skipped_components=skipped,
        )

        try:
            verdict, score = self._compute(results, logic)
        except AggregationError as e:
            logger.error(f"Aggregation failed: {e.message}")
            return AggregationOutcome(overall_verdict=OverallVerdict.ERROR, error=e.message, **counts)
        except Exception as e:
            logger.exception("Unexpected error during aggregation")
            return AggregationOutcome(
                overall_verdict=OverallVerdict.ERROR,
                error=f"{type(e).__name__}: {e}",
                **counts,
            )

        return AggregationOutcome(overall_verdict=verdict, score=score, **counts)

    def _compute(self, results: Sequence[ComponentResult], logic: AggregationLogic):
        if not results:
            raise AggregationError("No component results to aggregate")

        if logic.type == AggregationType.ALL_REQUIRED:
            return self._all_required(results)
        if logic.type == AggregationType.MAJORITY:
            return self._majority(results, logic)
        if logic.type == AggregationType.WEIGHTED:
            return self._weighted(results, logic)
        if logic.type == AggregationType.CUSTOM:
            return self._custom(results, logic)
        raise AggregationError(f"Unknown aggregation type: {logic.type}")

    def _all_required(self, results: Sequence[ComponentResult]):
        required = [r for r in results if not r.optional]
        score = (
            sum(1 for r in required if r.status == ComponentStatus.PASS) / len(required)
            if required
            else 1.0
        )

        if any(r.status.is_failure for r in required):
            return OverallVerdict.FAIL, score
        if any(r.status == ComponentStatus.SKIPPED for r in required):
            return OverallVerdict.PARTIAL, score
        return OverallVerdict.PASS, score

    def _majority(self, results: Sequence[ComponentResult], logic: AggregationLogic):
        evaluated = [r for r in results if r.status != ComponentStatus.SKIPPED]
        if not evaluated:
            raise AggregationError("MAJORITY aggregation has no evaluated components")

        fraction = sum(1 for r in evaluated if r.status == ComponentStatus.PASS) / len(evaluated)
        verdict = OverallVerdict.PASS if fraction >= logic.effective_threshold else OverallVerdict.FAIL
        return verdict, fraction

    def _weighted(self, results: Sequence[ComponentResult], logic: AggregationLogic):
        if not logic.weights:
            raise AggregationError("Weights must be provided for weighted aggregation")

        total_weight = 0.0
        pass_weight = 0.0
        for r in results:
            if r.status == ComponentStatus.SKIPPED:
                continue
            weight = logic.weights.get(r.component_id, 0.0)
            total_weight += weight
            if r.status == ComponentStatus.PASS:
                pass_weight += weight

        if total_weight <= 0:
            raise AggregationError("Total weight of evaluated components is zero")

        ratio = pass_weight / total_weight
        verdict = OverallVerdict.PASS if ratio >= logic.effective_threshold else OverallVerdict.FAIL
        return verdict, ratio

    def _custom(self, results: Sequence[ComponentResult], logic: AggregationLogic):
        func = self.decision_functions.get(logic.decision_function or "")
        if func is None:
            raise AggregationError(f"Unknown decision function: {logic.decision_function}")

        try:
            raw = func(tuple(results))
        except Exception as e:
            raise AggregationError(
                f"Decision function '{logic.decision_function}' raised {type(e).__name__}: {e}"
            ) from e

        try:
            return OverallVerdict(raw.value if isinstance(raw, OverallVerdict) else str(raw).upper()), None
        except ValueError as e:
            raise AggregationError(
                f"Decision function '{logic.decision_function}' returned invalid verdict: {raw!r}"
            ) from e
