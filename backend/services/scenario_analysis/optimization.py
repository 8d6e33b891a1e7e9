import logging
from typing import List

from shared.models.exceptions import InvalidRequestException
from .models import (
    ScenarioSpec, OptimizationRequest, OptimizationObjectives, OptimizationWeights,
    OptimizationConstraints, OptimizationCandidate, OptimizationMetrics, OptimizationImprovements,
)

logger = logging.getLogger(__name__)

# Surrogate evaluator baselines
SURROGATE_BASE_CO2 = 2.1            # kg CO2/kg
SURROGATE_BASE_COST = 1000.0        # cost units/t
SURROGATE_BASE_CIRCULARITY = 0.75

# Normalization ceilings for scoring
MAX_CO2 = 5.0
MAX_COST = 2000.0

# Per-objective step sizes: (offset, increment per candidate index)
RENEWABLE_STEP = (20.0, 5.0)
EFFICIENCY_STEP = (0.1, 0.02)
RECYCLING_STEP = (0.15, 0.03)
RECOVERY_STEP = (0.1, 0.02)
DISTANCE_STEP = (20.0, 5.0)


def _step(step, index: int) -> float:
    offset, increment = step
    return offset + index * increment


def evaluate_scenario(scenario: ScenarioSpec) -> OptimizationMetrics:
    """
    Surrogate projection of cost, CO2 and circularity.

    co2 = 2.1 * (1 - renewable/200) * (1 - efficiency/2)
    cost = 1000 * (1 + distance/1000) * (1 - efficiency/2)
    circularity = clamp(0.75 + recyclingRate*0.2 + recoveryEfficiency*0.1, 0, 1)
    """
    efficiency = scenario.route.efficiency
    co2 = SURROGATE_BASE_CO2 * (1 - scenario.energy.renewable / 200) * (1 - efficiency / 2)
    cost = SURROGATE_BASE_COST * (1 + scenario.transport.distance / 1000) * (1 - efficiency / 2)
    circularity = (SURROGATE_BASE_CIRCULARITY
                   + scenario.end_of_life.recycling_rate * 0.2
                   + scenario.end_of_life.recovery_efficiency * 0.1)

    return OptimizationMetrics(
        co2=max(0.0, co2),
        cost=max(0.0, cost),
        circularity=min(1.0, max(0.0, circularity)),
    )


def calculate_score(metrics: OptimizationMetrics, weights: OptimizationWeights) -> float:
    """Weighted sum of the metrics normalized to 0-1 (higher is better)"""
    normalized_co2 = max(0.0, 1 - metrics.co2 / MAX_CO2)
    normalized_cost = max(0.0, 1 - metrics.cost / MAX_COST)
    normalized_circularity = metrics.circularity

    return (
        normalized_co2 * weights.co2 +
        normalized_cost * weights.cost +
        normalized_circularity * weights.circularity
    ) / weights.total


class OptimizationSearch:
    """
    Randomized local search over scenario parameters.

    Generates ``candidate_count`` perturbations of the baseline whose step
    size grows with the candidate index, scores each through the surrogate
    evaluator and returns them best first.
    """

    def __init__(self, candidate_count: int = 5):
        if candidate_count < 1:
            raise ValueError("candidate_count must be at least 1")
        self.candidate_count = candidate_count

    def search(self, request: OptimizationRequest) -> List[OptimizationCandidate]:
        self._validate(request)

        baseline = request.baseline
        baseline_metrics = evaluate_scenario(baseline)
        candidates = []

        for index in range(self.candidate_count):
            solution = self.generate_candidate(baseline, request.objectives, index)
            metrics = evaluate_scenario(solution)

            if not self._satisfies(metrics, request.constraints):
                logger.debug(f"Candidate opt_{index + 1} violates constraints: {metrics}")
                continue

            candidates.append(OptimizationCandidate(
                id=f"opt_{index + 1}",
                score=calculate_score(metrics, request.weights),
                parameters=solution,
                metrics=metrics,
                improvements=OptimizationImprovements(
                    co2_reduction=baseline_metrics.co2 - metrics.co2,
                    cost_savings=baseline_metrics.cost - metrics.cost,
                    circularity_gain=metrics.circularity - baseline_metrics.circularity,
                ),
            ))

        # sorted() is stable, so equal scores keep candidate index order
        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
        if ranked:
            logger.info(f"Optimization produced {len(ranked)} candidates, best {ranked[0].id} ({ranked[0].score:.3f})")
        else:
            logger.info("Optimization produced no candidates satisfying the constraints")
        return ranked

    @staticmethod
    def generate_candidate(baseline: ScenarioSpec, objectives: OptimizationObjectives, index: int) -> ScenarioSpec:
        """Apply the index-scaled adjustments of each active objective to a copy of the baseline"""
        energy, route = baseline.energy, baseline.route
        end_of_life, transport = baseline.end_of_life, baseline.transport

        if objectives.minimize_co2:
            energy = energy.model_copy(update={
                "renewable": min(100.0, energy.renewable + _step(RENEWABLE_STEP, index))
            })
            route = route.model_copy(update={
                "efficiency": min(1.0, route.efficiency + _step(EFFICIENCY_STEP, index))
            })

        if objectives.maximize_circularity:
            end_of_life = end_of_life.model_copy(update={
                "recycling_rate": min(1.0, end_of_life.recycling_rate + _step(RECYCLING_STEP, index)),
                "recovery_efficiency": min(1.0, end_of_life.recovery_efficiency + _step(RECOVERY_STEP, index)),
            })

        if objectives.minimize_cost:
            transport = transport.model_copy(update={
                "distance": max(0.0, transport.distance - _step(DISTANCE_STEP, index))
            })

        return baseline.model_copy(update={
            "energy": energy,
            "route": route,
            "end_of_life": end_of_life,
            "transport": transport,
        })

    @staticmethod
    def _satisfies(metrics: OptimizationMetrics, constraints: OptimizationConstraints) -> bool:
        if constraints.max_cost is not None and metrics.cost > constraints.max_cost:
            return False
        if constraints.max_co2 is not None and metrics.co2 > constraints.max_co2:
            return False
        if constraints.min_circularity is not None and metrics.circularity < constraints.min_circularity:
            return False
        return True

    @staticmethod
    def _validate(request: OptimizationRequest):
        if request.objectives is None or request.weights is None:
            raise InvalidRequestException("Objectives and weights are required")
        if request.weights.total <= 0:
            raise InvalidRequestException("At least one optimization weight must be positive")
        if request.baseline is None:
            raise InvalidRequestException("A baseline scenario is required")

        constraints = request.constraints
        baseline = request.baseline
        if constraints.available_materials is not None:
            allowed = {m.lower() for m in constraints.available_materials}
            if baseline.material.type.lower() not in allowed:
                raise InvalidRequestException(
                    f"Material '{baseline.material.type}' is not in the available materials"
                )
        if constraints.available_processes is not None:
            allowed = {p.lower() for p in constraints.available_processes}
            if baseline.route.process.lower() not in allowed:
                raise InvalidRequestException(
                    f"Process '{baseline.route.process}' is not in the available processes"
                )
