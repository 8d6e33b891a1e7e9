import logging
from typing import List, Optional, Tuple

from .estimation import EstimationModel
from .impact import ImpactModel
from .models import (
    ScenarioSpec, ImpactResult, AnalysisResult, CircularityBreakdown, EstimationContext,
    EstimationResult, OptimizationRequest, OptimizationObjectives, OptimizationWeights,
    OptimizationCandidate,
)
from .optimization import OptimizationSearch

logger = logging.getLogger(__name__)

# Energy mixes above this weighted intensity (kg CO2/kWh) get a decarbonization hint
HIGH_GRID_INTENSITY = 0.4
LOW_CIRCULARITY_SCORE = 60

# Progress checkpoints reported after each stage
PROGRESS_STARTED = 10.0
PROGRESS_IMPACT_DONE = 50.0
PROGRESS_SYNTHESIS_DONE = 80.0
PROGRESS_FINALIZED = 100.0


def build_suggestions(scenario: ScenarioSpec, impact: ImpactResult,
                      best: Optional[OptimizationCandidate]) -> List[str]:
    """Turn the best optimization candidate and the impact profile into readable advice"""
    suggestions = []

    if best is not None:
        params = best.parameters
        renewable_gain = params.energy.renewable - scenario.energy.renewable
        if renewable_gain > 0:
            suggestions.append(f"Increase renewable energy usage by {renewable_gain:.0f}%")

        efficiency_gain = (params.route.efficiency - scenario.route.efficiency) * 100
        if efficiency_gain > 0:
            suggestions.append(f"Improve {scenario.route.process} route efficiency by {efficiency_gain:.0f} points")

        if params.end_of_life.recycling_rate > scenario.end_of_life.recycling_rate:
            suggestions.append("Implement closed-loop recycling system")

        distance_cut = scenario.transport.distance - params.transport.distance
        if distance_cut > 0:
            suggestions.append(f"Optimize transportation routes to cut {distance_cut:.0f} km")

    if scenario.energy.weighted_carbon_intensity > HIGH_GRID_INTENSITY:
        suggestions.append("Switch to lower-carbon energy sources")
    if impact.circularity_score.total < LOW_CIRCULARITY_SCORE:
        suggestions.append("Prioritize material recovery to raise circularity")

    if not suggestions:
        suggestions.append("Scenario is already near the optimum; maintain current practices")
    return suggestions


class AnalysisPipeline:
    """
    Stages of a scenario analysis job.

    Each stage is a plain synchronous call into the pure models so the
    orchestrator can run it on a worker thread.
    """

    def __init__(self, impact_model: ImpactModel, optimizer: OptimizationSearch,
                 estimator: EstimationModel):
        self.impact_model = impact_model
        self.optimizer = optimizer
        self.estimator = estimator

    def calculate_impact(self, scenario: ScenarioSpec) -> ImpactResult:
        return self.impact_model.compute(scenario)

    def synthesize(self, scenario: ScenarioSpec,
                   impact: ImpactResult) -> Tuple[CircularityBreakdown, List[str], Optional[OptimizationCandidate]]:
        """Circularity metrics plus optimization suggestions for the scenario"""
        request = OptimizationRequest(
            objectives=OptimizationObjectives(minimize_co2=True, minimize_cost=True, maximize_circularity=True),
            weights=OptimizationWeights(co2=1.0, cost=1.0, circularity=1.0),
            baseline=scenario,
        )
        candidates = self.optimizer.search(request)
        best = candidates[0] if candidates else None
        suggestions = build_suggestions(scenario, impact, best)
        return impact.circularity_score.breakdown, suggestions, best

    def fill_estimates(self, scenario: ScenarioSpec, fields: List[str]) -> List[EstimationResult]:
        if not fields:
            return []
        context = EstimationContext.from_scenario(scenario)
        return [self.estimator.estimate(field, context) for field in fields]

    @staticmethod
    def finalize(impact: ImpactResult, circularity: CircularityBreakdown, suggestions: List[str],
                 estimates: List[EstimationResult],
                 best: Optional[OptimizationCandidate]) -> AnalysisResult:
        return AnalysisResult(
            impact=impact,
            circularity_metrics=circularity,
            optimization_suggestions=suggestions,
            estimates=estimates,
            best_candidate=best,
        )
