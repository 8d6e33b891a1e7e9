"""Tests for the optimization search and its surrogate evaluator."""

import pytest

from shared.models.exceptions import InvalidRequestException
from services.scenario_analysis.models import (
    OptimizationRequest, OptimizationWeights, OptimizationMetrics, parse_payload,
)
from services.scenario_analysis.optimization import (
    OptimizationSearch, evaluate_scenario, calculate_score,
)


def _request(payload, **overrides):
    return parse_payload(OptimizationRequest, {**payload, **overrides})


class TestSurrogate:
    def test_baseline_metrics(self, steel_scenario):
        metrics = evaluate_scenario(steel_scenario)
        # 2.1 * (1 - 40/200) * (1 - 0.85/2)
        assert metrics.co2 == pytest.approx(0.966)
        assert metrics.cost == pytest.approx(632.5)
        assert metrics.circularity == pytest.approx(0.98)

    def test_circularity_capped_at_one(self, steel_scenario):
        improved = steel_scenario.model_copy(update={
            "end_of_life": steel_scenario.end_of_life.model_copy(update={"recycling_rate": 1.0, "recovery_efficiency": 1.0})
        })
        assert evaluate_scenario(improved).circularity == 1.0

    def test_score_weighting(self):
        metrics = OptimizationMetrics(co2=0.0, cost=2000.0, circularity=0.5)
        only_co2 = OptimizationWeights(co2=1, cost=0, circularity=0)
        only_cost = OptimizationWeights(co2=0, cost=1, circularity=0)
        assert calculate_score(metrics, only_co2) == pytest.approx(1.0)
        assert calculate_score(metrics, only_cost) == pytest.approx(0.0)


class TestSearch:
    def test_returns_candidates_best_first(self, optimization_payload):
        candidates = OptimizationSearch().search(_request(optimization_payload))
        assert len(candidates) == 5
        scores = [c.score for c in candidates]
        assert scores == sorted(scores, reverse=True)

    def test_larger_steps_rank_higher(self, optimization_payload):
        candidates = OptimizationSearch().search(_request(optimization_payload))
        assert candidates[0].id == "opt_5"
        assert candidates[-1].id == "opt_1"

    def test_candidate_count_is_configurable(self, optimization_payload):
        candidates = OptimizationSearch(candidate_count=3).search(_request(optimization_payload))
        assert {c.id for c in candidates} == {"opt_1", "opt_2", "opt_3"}

    def test_improvements_relative_to_baseline(self, optimization_payload, steel_scenario):
        baseline = evaluate_scenario(steel_scenario)
        for candidate in OptimizationSearch().search(_request(optimization_payload)):
            assert candidate.improvements.co2_reduction == pytest.approx(baseline.co2 - candidate.metrics.co2)
            assert candidate.improvements.cost_savings == pytest.approx(baseline.cost - candidate.metrics.cost)
            assert candidate.improvements.co2_reduction >= 0
            assert candidate.improvements.cost_savings >= 0

    def test_adjusted_parameters_stay_in_range(self, optimization_payload):
        for candidate in OptimizationSearch().search(_request(optimization_payload)):
            params = candidate.parameters
            assert 0 <= params.energy.renewable <= 100
            assert 0 <= params.route.efficiency <= 1
            assert 0 <= params.end_of_life.recycling_rate <= 1
            assert 0 <= params.end_of_life.recovery_efficiency <= 1
            assert params.transport.distance >= 0

    def test_baseline_is_not_mutated(self, optimization_payload, steel_scenario):
        request = _request(optimization_payload)
        OptimizationSearch().search(request)
        assert request.baseline == steel_scenario

    def test_only_active_objectives_adjust_parameters(self, optimization_payload, steel_scenario):
        request = _request(optimization_payload, objectives={"minimizeCost": True})
        for candidate in OptimizationSearch().search(request):
            assert candidate.parameters.energy == steel_scenario.energy
            assert candidate.parameters.route == steel_scenario.route
            assert candidate.parameters.end_of_life == steel_scenario.end_of_life
            assert candidate.parameters.transport.distance < steel_scenario.transport.distance

    def test_current_scenario_alias_accepted(self, optimization_payload):
        payload = dict(optimization_payload)
        payload["currentScenario"] = payload.pop("baseline")
        assert len(OptimizationSearch().search(_request(payload))) == 5


class TestConstraints:
    def test_unreachable_cost_drops_all_candidates(self, optimization_payload):
        request = _request(optimization_payload, constraints={"maxCost": 1})
        assert OptimizationSearch().search(request) == []

    def test_co2_ceiling_filters_candidates(self, optimization_payload):
        request = _request(optimization_payload, constraints={"maxCO2": 0.7})
        candidates = OptimizationSearch().search(request)
        assert candidates
        assert all(c.metrics.co2 <= 0.7 for c in candidates)
        assert len(candidates) < 5

    def test_min_circularity_respected(self, optimization_payload):
        request = _request(optimization_payload, constraints={"minCircularity": 0.99})
        assert all(c.metrics.circularity >= 0.99 for c in OptimizationSearch().search(request))

    def test_unavailable_material_rejected(self, optimization_payload):
        request = _request(optimization_payload, constraints={"availableMaterials": ["Aluminum"]})
        with pytest.raises(InvalidRequestException, match="Steel"):
            OptimizationSearch().search(request)

    def test_available_process_matches_case_insensitively(self, optimization_payload):
        request = _request(optimization_payload, constraints={"availableProcesses": ["primary", "secondary"]})
        assert len(OptimizationSearch().search(request)) == 5


class TestValidation:
    def test_missing_objectives_rejected(self, optimization_payload):
        payload = {k: v for k, v in optimization_payload.items() if k != "objectives"}
        with pytest.raises(InvalidRequestException):
            OptimizationSearch().search(_request(payload))

    def test_missing_weights_rejected(self, optimization_payload):
        payload = {k: v for k, v in optimization_payload.items() if k != "weights"}
        with pytest.raises(InvalidRequestException):
            OptimizationSearch().search(_request(payload))

    def test_zero_weights_rejected(self, optimization_payload):
        request = _request(optimization_payload, weights={"co2": 0, "cost": 0, "circularity": 0})
        with pytest.raises(InvalidRequestException, match="weight"):
            OptimizationSearch().search(request)

    def test_missing_baseline_rejected(self, optimization_payload):
        payload = {k: v for k, v in optimization_payload.items() if k != "baseline"}
        with pytest.raises(InvalidRequestException, match="baseline"):
            OptimizationSearch().search(_request(payload))

    def test_negative_weight_rejected_at_parse_time(self, optimization_payload):
        with pytest.raises(InvalidRequestException):
            _request(optimization_payload, weights={"co2": -1, "cost": 1, "circularity": 1})

    def test_candidate_count_must_be_positive(self):
        with pytest.raises(ValueError):
            OptimizationSearch(candidate_count=0)
