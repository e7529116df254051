"""Tests for the Aggregator and decision function registry.

Covers ALL_REQUIRED, MAJORITY, WEIGHTED and CUSTOM rules, counts,
idempotence and the ERROR verdict on aggregation failures.
"""

import pytest

from src.composed_proofs.aggregator import Aggregator, DecisionFunctionRegistry
from src.composed_proofs.errors import ValidationError
from src.composed_proofs.models import (
    AggregationLogic,
    AggregationType,
    ComponentStatus,
    OverallVerdict,
)

ALL_REQUIRED = AggregationLogic(type=AggregationType.ALL_REQUIRED)


@pytest.fixture
def registry():
    return DecisionFunctionRegistry()


@pytest.fixture
def aggregator(registry):
    return Aggregator(registry)


class TestAllRequired:
    """ALL_REQUIRED verdicts."""

    def test_optional_failure_ignored(self, aggregator, result):
        """gleif PASS, corp PASS, exim (optional) FAIL -> PASS."""
        outcome = aggregator.aggregate(
            [
                result("gleif", ComponentStatus.PASS),
                result("corp", ComponentStatus.PASS),
                result("exim", ComponentStatus.FAIL, optional=True),
            ],
            ALL_REQUIRED,
        )

        assert outcome.overall_verdict == OverallVerdict.PASS
        assert outcome.total_components == 3
        assert outcome.passed_components == 2
        assert outcome.failed_components == 1
        assert outcome.skipped_components == 0
        assert outcome.score == 1.0

    def test_required_failure_with_cascade_skip(self, aggregator, result):
        """gleif FAIL, corp SKIPPED -> FAIL, not PARTIAL."""
        outcome = aggregator.aggregate(
            [
                result("gleif", ComponentStatus.FAIL),
                result("corp", ComponentStatus.SKIPPED),
                result("exim", ComponentStatus.SKIPPED, optional=True),
            ],
            ALL_REQUIRED,
        )

        assert outcome.overall_verdict == OverallVerdict.FAIL
        assert outcome.failed_components == 1
        assert outcome.skipped_components == 2

    @pytest.mark.parametrize("status", [ComponentStatus.ERROR, ComponentStatus.TIMEOUT])
    def test_required_error_or_timeout_fails(self, aggregator, result, status):
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", status)], ALL_REQUIRED
        )

        assert outcome.overall_verdict == OverallVerdict.FAIL

    def test_required_skip_without_failure_is_partial(self, aggregator, result):
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", ComponentStatus.SKIPPED)],
            ALL_REQUIRED,
        )

        assert outcome.overall_verdict == OverallVerdict.PARTIAL
        assert outcome.score == 0.5

    def test_all_optional_passes(self, aggregator, result):
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.FAIL, optional=True)], ALL_REQUIRED
        )

        assert outcome.overall_verdict == OverallVerdict.PASS


class TestMajority:
    """MAJORITY verdicts."""

    def test_three_of_five_meets_threshold(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.MAJORITY, threshold=0.6)
        statuses = [ComponentStatus.PASS] * 3 + [ComponentStatus.FAIL] * 2
        outcome = aggregator.aggregate(
            [result(f"c{i}", s) for i, s in enumerate(statuses)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.PASS
        assert outcome.score == pytest.approx(0.6)

    def test_skipped_excluded_from_denominator(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.MAJORITY, threshold=0.6)
        outcome = aggregator.aggregate(
            [
                result("a", ComponentStatus.PASS),
                result("b", ComponentStatus.PASS),
                result("c", ComponentStatus.FAIL),
                result("d", ComponentStatus.SKIPPED),
            ],
            logic,
        )

        assert outcome.score == pytest.approx(2 / 3)
        assert outcome.overall_verdict == OverallVerdict.PASS

    def test_default_threshold_is_half(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.MAJORITY)
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", ComponentStatus.FAIL)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.PASS

    def test_below_threshold_fails(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.MAJORITY, threshold=0.75)
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", ComponentStatus.ERROR)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.FAIL

    def test_nothing_evaluated_is_error(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.MAJORITY)
        outcome = aggregator.aggregate([result("a", ComponentStatus.SKIPPED)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR
        assert "no evaluated components" in outcome.error
        assert outcome.skipped_components == 1


class TestWeighted:
    """WEIGHTED verdicts."""

    def test_weighted_pass(self, aggregator, result):
        logic = AggregationLogic(
            type=AggregationType.WEIGHTED,
            weights={"basel3": 0.6, "adv": 0.4},
            threshold=0.6,
        )
        outcome = aggregator.aggregate(
            [result("basel3", ComponentStatus.PASS), result("adv", ComponentStatus.FAIL)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.PASS
        assert outcome.score == pytest.approx(0.6)

    def test_weighted_fail(self, aggregator, result):
        logic = AggregationLogic(
            type=AggregationType.WEIGHTED,
            weights={"basel3": 0.6, "adv": 0.4},
            threshold=0.7,
        )
        outcome = aggregator.aggregate(
            [result("basel3", ComponentStatus.PASS), result("adv", ComponentStatus.FAIL)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.FAIL

    def test_skipped_weight_excluded(self, aggregator, result):
        logic = AggregationLogic(
            type=AggregationType.WEIGHTED, weights={"a": 0.5, "b": 0.5}, threshold=0.9
        )
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", ComponentStatus.SKIPPED)], logic
        )

        assert outcome.score == 1.0
        assert outcome.overall_verdict == OverallVerdict.PASS

    def test_unweighted_components_count_zero(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.WEIGHTED, weights={"a": 1.0}, threshold=0.5)
        outcome = aggregator.aggregate(
            [result("a", ComponentStatus.PASS), result("b", ComponentStatus.FAIL)], logic
        )

        assert outcome.score == 1.0

    def test_zero_total_weight_is_error(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.WEIGHTED, weights={"a": 0.0}, threshold=0.5)
        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR

    def test_missing_weights_is_error(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.WEIGHTED)
        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR
        assert "Weights must be provided" in outcome.error

    def test_negative_weight_rejected_by_model(self):
        with pytest.raises(ValueError):
            AggregationLogic(type=AggregationType.WEIGHTED, weights={"a": -1.0})


class TestCustom:
    """CUSTOM decision functions."""

    def test_registered_function_decides(self, aggregator, registry, result):
        @registry.decision_function("gleif-only")
        def gleif_only(results):
            gleif = next(r for r in results if r.component_id == "gleif")
            return OverallVerdict.PASS if gleif.status == ComponentStatus.PASS else OverallVerdict.FAIL

        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="gleif-only")
        outcome = aggregator.aggregate(
            [result("gleif", ComponentStatus.PASS), result("corp", ComponentStatus.FAIL)], logic
        )

        assert outcome.overall_verdict == OverallVerdict.PASS
        assert outcome.score is None

    def test_string_verdict_accepted(self, aggregator, registry, result):
        registry.register("always-partial", lambda results: "partial")
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="always-partial")

        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.PARTIAL

    def test_function_receives_immutable_results(self, aggregator, registry, result):
        seen = []
        registry.register("spy", lambda results: seen.append(results) or OverallVerdict.PASS)
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="spy")

        aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert isinstance(seen[0], tuple)

    def test_raising_function_is_error(self, aggregator, registry, result):
        def broken(results):
            raise RuntimeError("boom")

        registry.register("broken", broken)
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="broken")
        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR
        assert "RuntimeError" in outcome.error

    def test_invalid_return_is_error(self, aggregator, registry, result):
        registry.register("bogus", lambda results: "MAYBE")
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="bogus")

        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR

    def test_unknown_function_is_error(self, aggregator, result):
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="missing")
        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], logic)

        assert outcome.overall_verdict == OverallVerdict.ERROR

    def test_registry_names(self, registry):
        registry.register("b", lambda r: "PASS")
        registry.register("a", lambda r: "PASS")

        assert registry.names() == ["a", "b"]
        assert "a" in registry


class TestAggregatorGeneral:
    """Properties shared by every rule."""

    def test_idempotent(self, aggregator, result):
        results = [
            result("a", ComponentStatus.PASS),
            result("b", ComponentStatus.FAIL, optional=True),
            result("c", ComponentStatus.SKIPPED),
        ]

        assert aggregator.aggregate(results, ALL_REQUIRED) == aggregator.aggregate(
            results, ALL_REQUIRED
        )

    def test_empty_results_is_error(self, aggregator):
        outcome = aggregator.aggregate([], ALL_REQUIRED)

        assert outcome.overall_verdict == OverallVerdict.ERROR
        assert outcome.total_components == 0

    def test_to_aggregated_result(self, aggregator, result):
        outcome = aggregator.aggregate([result("a", ComponentStatus.PASS)], ALL_REQUIRED)
        aggregated = outcome.to_aggregated_result()

        assert aggregated.total_components == 1
        assert aggregated.passed_components == 1
        assert aggregated.aggregation_score == 1.0


class TestValidateLogic:
    """Structural validation at registration / request time."""

    def test_weighted_requires_weights(self, aggregator):
        with pytest.raises(ValidationError):
            aggregator.validate_logic(AggregationLogic(type=AggregationType.WEIGHTED))

    def test_custom_requires_identifier(self, aggregator):
        with pytest.raises(ValidationError):
            aggregator.validate_logic(AggregationLogic(type=AggregationType.CUSTOM))

    def test_custom_requires_registered_function(self, aggregator, registry):
        logic = AggregationLogic(type=AggregationType.CUSTOM, decision_function="later")
        with pytest.raises(ValidationError):
            aggregator.validate_logic(logic)

        registry.register("later", lambda r: "PASS")
        aggregator.validate_logic(logic)

    def test_threshold_range_enforced_by_model(self):
        with pytest.raises(ValueError):
            AggregationLogic(type=AggregationType.MAJORITY, threshold=1.5)
