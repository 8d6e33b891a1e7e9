import threading
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Any, Optional, Type, TypeVar

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError,
    field_validator, model_validator
)
from pydantic.alias_generators import to_camel

from shared.models.analysis import AnalysisState, ALLOWED_TRANSITIONS
from shared.models.exceptions import InvalidRequestException

# Setup logging
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# Constants and shared configurations

# Energy mix shares must add up to 100% within this tolerance (percentage points)
ENERGY_SHARE_TOLERANCE = 1.0

# Fallback for materials without a catalogue factor
DEFAULT_MATERIAL_CO2 = 2.1          # kg CO2/kg
DEFAULT_MATERIAL_WATER = 150.0      # L/kg

BASE_PROCESS_ENERGY = 25.5          # MJ/kg
PROCESS_WATER_PER_MJ = 0.1          # L/MJ
TRANSPORT_ENERGY_PER_KM = 0.5       # MJ/km/kg
AVOIDED_EMISSIONS_PER_UNIT = 0.5    # kg CO2/kg avoided at full recycling and recovery
RENEWABLE_CARBON_DISCOUNT = 0.5

CARBON_UNIT = "kg CO2e/kg material"
ENERGY_UNIT = "MJ/kg material"
WATER_UNIT = "L/kg material"

# Parametric priors for missing-data estimation
ESTIMATION_PRIORS = {
    "co2e_kg_per_kg": {"mean": 2.1, "variance": 0.5},
    "energy_mj_per_kg": {"mean": 25.5, "variance": 5.0},
    "water_l_per_kg": {"mean": 150.0, "variance": 30.0},
    "recycling_rate": {"mean": 0.75, "variance": 0.1},
    "material_efficiency": {"mean": 0.85, "variance": 0.05},
}
DEFAULT_ESTIMATION_PRIOR = {"mean": 1.0, "variance": 0.2}

ESTIMATION_DRIVERS = {
    "co2e_kg_per_kg": ["Energy mix", "Process efficiency", "Transport distance"],
    "energy_mj_per_kg": ["Process type", "Technology level", "Scale"],
    "water_l_per_kg": ["Process cooling", "Material washing", "Waste treatment"],
    "recycling_rate": ["Collection infrastructure", "Sorting technology", "Market demand"],
    "material_efficiency": ["Process optimization", "Quality control", "Equipment age"],
}
DEFAULT_ESTIMATION_DRIVERS = ["Process parameters", "Regional factors", "Technology level"]

ESTIMATION_PROVENANCE = "USEEIO + LCI Database + parametric prior"


def parse_payload(model_cls: Type[ModelT], data: Any) -> ModelT:
    """
    Validate a loosely-typed payload into ``model_cls``.

    Args:
        model_cls: Target pydantic model
        data: Instance of the model or a mapping using camelCase or snake_case keys

    Returns:
        Validated model instance

    Raises:
        InvalidRequestException: If the payload is missing fields or holds invalid values
    """
    if isinstance(data, model_cls):
        return data
    if data is None:
        raise InvalidRequestException(f"{model_cls.__name__} payload is required")
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or model_cls.__name__}: {err['msg']}"
            for err in e.errors()
        )
        logger.debug(f"Rejected {model_cls.__name__} payload: {problems}")
        raise InvalidRequestException(f"Invalid {model_cls.__name__}: {problems}")


class SpecModel(BaseModel):
    """Immutable, strictly validated input record"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class ResultModel(BaseModel):
    """Immutable output record"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# Scenario inputs

class MaterialSpec(SpecModel):
    type: str = Field(..., min_length=1, description="Material name, e.g. Steel")
    composition: Dict[str, float] = Field(default_factory=dict, description="Mass fractions by constituent")
    properties: Dict[str, Any] = Field(default_factory=dict)


class RouteSpec(SpecModel):
    process: str = Field(..., min_length=1, description="Production route, e.g. Primary")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    efficiency: float = Field(..., ge=0, le=1)


class EnergySource(SpecModel):
    type: str = Field(..., min_length=1)
    percentage: float = Field(..., ge=0, le=100)
    carbon_intensity: float = Field(..., ge=0, description="kg CO2/kWh")


class EnergySpec(SpecModel):
    sources: List[EnergySource] = Field(..., min_length=1)
    renewable: float = Field(..., ge=0, le=100, description="Renewable share (%)")

    @model_validator(mode="after")
    def validate_share_sum(self):
        total = sum(source.percentage for source in self.sources)
        if abs(total - 100.0) > ENERGY_SHARE_TOLERANCE:
            raise ValueError(f"Energy source percentages must sum to 100 (got {total:g})")
        return self

    @property
    def weighted_carbon_intensity(self) -> float:
        return sum(s.carbon_intensity * s.percentage / 100 for s in self.sources)


class TransportSpec(SpecModel):
    distance: float = Field(..., ge=0, description="km")
    method: str = Field(..., min_length=1)
    carbon_intensity: float = Field(..., ge=0, description="kg CO2/km/kg")


class EndOfLifeSpec(SpecModel):
    recycling_rate: float = Field(..., ge=0, le=1)
    disposal_method: str = Field(..., min_length=1)
    recovery_efficiency: float = Field(..., ge=0, le=1)


class ScenarioSpec(SpecModel):
    """Material production scenario analysed by the engine"""
    name: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    material: MaterialSpec
    route: RouteSpec
    energy: EnergySpec
    transport: TransportSpec
    end_of_life: EndOfLifeSpec

    @classmethod
    def from_payload(cls, data: Any) -> "ScenarioSpec":
        return parse_payload(cls, data)


# Impact results

class CarbonBreakdown(ResultModel):
    material: float
    energy: float
    transport: float
    end_of_life: float


class CarbonFootprint(ResultModel):
    total: float
    breakdown: CarbonBreakdown
    unit: str = CARBON_UNIT
    clamped: bool = Field(False, description="True when avoided emissions would have made the total negative")


class EnergyBreakdown(ResultModel):
    process: float
    transport: float
    auxiliary: float


class EnergyConsumption(ResultModel):
    total: float
    breakdown: EnergyBreakdown
    unit: str = ENERGY_UNIT


class WaterBreakdown(ResultModel):
    process: float
    cooling: float
    cleaning: float


class WaterConsumption(ResultModel):
    total: float
    breakdown: WaterBreakdown
    unit: str = WATER_UNIT


class CircularityBreakdown(ResultModel):
    material_efficiency: int
    energy_recovery: int
    waste_reduction: int
    recycling_rate: int


class CircularityScore(ResultModel):
    total: int = Field(..., ge=0, le=100)
    breakdown: CircularityBreakdown


class ImpactResult(ResultModel):
    carbon_footprint: CarbonFootprint
    energy_consumption: EnergyConsumption
    water_consumption: WaterConsumption
    circularity_score: CircularityScore


# Estimation

def _context_signal(value: Any) -> Optional[str]:
    """Free-form scenario maps may hold numbers or booleans; blank values carry no signal"""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class EstimationContext(BaseModel):
    """Scenario-derived signals the estimator conditions on"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    material: Optional[str] = None
    process: Optional[str] = None
    region: Optional[str] = None
    technology_level: Optional[str] = None

    @classmethod
    def from_scenario(cls, scenario: ScenarioSpec, region: Optional[str] = None,
                      technology_level: Optional[str] = None) -> "EstimationContext":
        return cls(
            material=scenario.material.type,
            process=scenario.route.process,
            region=region or _context_signal(scenario.material.properties.get("region")),
            technology_level=technology_level or _context_signal(scenario.route.parameters.get("technologyLevel")),
        )


class EstimationRequest(EstimationContext):
    missing_fields: List[str] = Field(default_factory=list)

    @property
    def context(self) -> EstimationContext:
        return EstimationContext(
            material=self.material,
            process=self.process,
            region=self.region,
            technology_level=self.technology_level,
        )


class EstimationResult(ResultModel):
    field: str
    mean: float
    p05: float
    p50: float
    p95: float
    confidence: float = Field(..., ge=0, le=1)
    drivers: List[str]
    provenance: str


# Optimization

class OptimizationObjectives(SpecModel):
    minimize_co2: bool = Field(False, alias="minimizeCO2")
    minimize_cost: bool = False
    maximize_circularity: bool = False

    @property
    def any_active(self) -> bool:
        return self.minimize_co2 or self.minimize_cost or self.maximize_circularity


class OptimizationWeights(SpecModel):
    co2: float = Field(..., ge=0)
    cost: float = Field(..., ge=0)
    circularity: float = Field(..., ge=0)

    @property
    def total(self) -> float:
        return self.co2 + self.cost + self.circularity


class OptimizationConstraints(SpecModel):
    max_cost: Optional[float] = Field(None, ge=0)
    min_circularity: Optional[float] = Field(None, ge=0, le=1)
    max_co2: Optional[float] = Field(None, ge=0, alias="maxCO2")
    available_materials: Optional[List[str]] = None
    available_processes: Optional[List[str]] = None


class OptimizationRequest(SpecModel):
    objectives: Optional[OptimizationObjectives] = None
    weights: Optional[OptimizationWeights] = None
    constraints: OptimizationConstraints = Field(default_factory=OptimizationConstraints)
    baseline: Optional[ScenarioSpec] = Field(
        None, validation_alias=AliasChoices("baseline", "currentScenario")
    )


class OptimizationMetrics(ResultModel):
    co2: float
    cost: float
    circularity: float


class OptimizationImprovements(ResultModel):
    co2_reduction: float
    cost_savings: float
    circularity_gain: float


class OptimizationCandidate(ResultModel):
    id: str
    score: float
    parameters: ScenarioSpec
    metrics: OptimizationMetrics
    improvements: OptimizationImprovements


# Analysis jobs

class AnalysisResult(ResultModel):
    """Immutable snapshot stored on a completed job"""
    impact: ImpactResult
    circularity_metrics: CircularityBreakdown
    optimization_suggestions: List[str]
    estimates: List[EstimationResult] = Field(default_factory=list)
    best_candidate: Optional[OptimizationCandidate] = None


class AnalysisStatus(ResultModel):
    """Read model returned to pollers"""
    job_id: str
    scenario_id: str
    state: AnalysisState
    progress: float = Field(..., ge=0, le=100)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[AnalysisResult] = None
    failure_reason: Optional[str] = None


class SubmitAnalysisRequest(SpecModel):
    scenario: ScenarioSpec
    estimate_fields: List[str] = Field(default_factory=list)

    @field_validator("estimate_fields")
    @classmethod
    def strip_fields(cls, v):
        return [f.strip() for f in v if f and f.strip()]


class SubmitAnalysisResponse(ResultModel):
    job_id: str
    scenario_id: str
    state: AnalysisState
    message: str = "Scenario analysis started"


@dataclass
class AnalysisJob:
    """
    Mutable job record owned by the orchestrator.

    Every mutation goes through the record's lock so that status readers on
    other threads always see a consistent state/progress pair.
    """
    job_id: str
    scenario_id: str
    scenario: ScenarioSpec
    estimate_fields: List[str] = field(default_factory=list)
    state: AnalysisState = AnalysisState.DRAFT
    progress: float = 0.0
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[AnalysisResult] = None
    failure_reason: Optional[str] = None
    cancel_requested: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition_to(self, new_state: AnalysisState, result: Optional[AnalysisResult] = None,
                      failure_reason: Optional[str] = None) -> AnalysisState:
        """Move to ``new_state`` and return the previous state"""
        with self._lock:
            previous = self.state
            if new_state not in ALLOWED_TRANSITIONS[previous]:
                raise ValueError(f"Illegal job transition {previous.value} -> {new_state.value}")

            now = datetime.utcnow()
            if new_state == AnalysisState.RUNNING:
                self.started_at = now
            elif new_state == AnalysisState.COMPLETED:
                if result is None:
                    raise ValueError("A completed job needs a result")
                self.result = result
                self.progress = 100.0
                self.completed_at = now
            elif new_state == AnalysisState.FAILED:
                self.failure_reason = failure_reason or "Analysis failed"
                self.completed_at = now

            self.state = new_state
            return previous

    def advance_progress(self, value: float) -> float:
        """Raise progress to ``value``; lower values are ignored"""
        with self._lock:
            if self.state != AnalysisState.RUNNING:
                raise ValueError(f"Cannot report progress for a {self.state.value} job")
            self.progress = max(self.progress, min(100.0, float(value)))
            return self.progress

    def snapshot(self) -> AnalysisStatus:
        with self._lock:
            return AnalysisStatus(
                job_id=self.job_id,
                scenario_id=self.scenario_id,
                state=self.state,
                progress=self.progress,
                created_at=self.created_at,
                started_at=self.started_at,
                completed_at=self.completed_at,
                result=self.result,
                failure_reason=self.failure_reason,
            )
