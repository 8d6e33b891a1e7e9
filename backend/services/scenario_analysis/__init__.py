"""
Scenario Analysis Service

This service computes environmental impact, estimates missing scenario data
and searches for improved scenario variants, running full analyses as
asynchronous jobs.
"""

from .factors import Factor, FactorCatalogue, FactorCategory
from .impact import ImpactModel, calculate_impact, round_half_up
from .estimation import EstimationModel
from .optimization import OptimizationSearch, evaluate_scenario, calculate_score
from .pipeline import AnalysisPipeline
from .orchestrator import JobOrchestrator, build_orchestrator
from .models import ScenarioSpec, AnalysisStatus, AnalysisResult

__version__ = "0.1.0"
__all__ = [
    "Factor",
    "FactorCatalogue",
    "FactorCategory",
    "ImpactModel",
    "calculate_impact",
    "round_half_up",
    "EstimationModel",
    "OptimizationSearch",
    "evaluate_scenario",
    "calculate_score",
    "AnalysisPipeline",
    "JobOrchestrator",
    "build_orchestrator",
    "ScenarioSpec",
    "AnalysisStatus",
    "AnalysisResult",
]
