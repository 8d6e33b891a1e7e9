import math
import logging
from typing import Dict, Optional

import numpy as np

from .models import (
    ScenarioSpec, MaterialSpec, EnergySpec, RouteSpec, TransportSpec, EndOfLifeSpec,
    ImpactResult, CarbonFootprint, CarbonBreakdown, EnergyConsumption, EnergyBreakdown,
    WaterConsumption, WaterBreakdown, CircularityScore, CircularityBreakdown,
    DEFAULT_MATERIAL_WATER,
    BASE_PROCESS_ENERGY, PROCESS_WATER_PER_MJ, TRANSPORT_ENERGY_PER_KM,
    AVOIDED_EMISSIONS_PER_UNIT, RENEWABLE_CARBON_DISCOUNT,
)
from .factors import FactorCatalogue, default_catalogue

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's rounding)"""
    return int(math.floor(value + 0.5))


class ImpactModel:
    """
    Deterministic impact model: scenario parameters -> carbon, energy, water
    and circularity metrics.

    Material CO2 intensities come from the factor catalogue and carry a
    bounded +/- ``variation`` drawn from a generator seeded per call, so the same scenario and seed always produce
    the same result and the model holds no mutable state between calls.
    """

    def __init__(
        self,
        variation: float = 0.1,
        seed: int = 42,
        allow_net_negative: bool = False,
        catalogue: Optional[FactorCatalogue] = None,
    ):
        if not 0 <= variation < 1:
            raise ValueError("variation must be in [0, 1)")
        self.variation = variation
        self.seed = seed
        self.allow_net_negative = allow_net_negative
        self.catalogue = default_catalogue if catalogue is None else catalogue

    def compute(self, scenario: ScenarioSpec, seed: Optional[int] = None) -> ImpactResult:
        """
        Compute the impact metrics of a scenario

        Args:
            scenario: Validated scenario
            seed: Overrides the model seed for this call

        Returns:
            ImpactResult with carbon, energy, water and circularity figures
        """
        rng = np.random.default_rng(self.seed if seed is None else seed)

        material = self._material_impact(scenario.material, rng)
        energy = self._energy_impact(scenario.energy, scenario.route)
        transport = self._transport_impact(scenario.transport)
        end_of_life = self._end_of_life_impact(scenario.end_of_life)

        carbon_sum = material["co2"] + energy["co2"] + transport["co2"] + end_of_life["co2"]
        clamped = carbon_sum < 0 and not self.allow_net_negative
        if clamped:
            logger.warning(f"Net carbon footprint {carbon_sum:.4f} is negative; reporting 0")

        carbon_footprint = CarbonFootprint(
            total=0.0 if clamped else carbon_sum,
            breakdown=CarbonBreakdown(
                material=material["co2"],
                energy=energy["co2"],
                transport=transport["co2"],
                end_of_life=end_of_life["co2"],
            ),
            clamped=clamped,
        )

        energy_consumption = EnergyConsumption(
            total=energy["energy"] + transport["energy"],
            breakdown=EnergyBreakdown(
                process=energy["energy"] * 0.8,
                transport=transport["energy"],
                auxiliary=energy["energy"] * 0.2,
            ),
        )

        water_consumption = WaterConsumption(
            total=material["water"] + energy["water"],
            breakdown=WaterBreakdown(
                process=material["water"] * 0.7,
                cooling=energy["water"] * 0.8,
                cleaning=material["water"] * 0.3,
            ),
        )

        circularity = self.circularity_score(scenario)

        logger.debug(
            f"Impact for {scenario.material.type}/{scenario.route.process}: "
            f"co2={carbon_footprint.total:.3f}, energy={energy_consumption.total:.2f}, "
            f"water={water_consumption.total:.1f}, circularity={circularity.total}"
        )

        return ImpactResult(
            carbon_footprint=carbon_footprint,
            energy_consumption=energy_consumption,
            water_consumption=water_consumption,
            circularity_score=circularity,
        )

    def _material_impact(self, material: MaterialSpec, rng: np.random.Generator) -> Dict[str, float]:
        base_co2 = self.catalogue.material_co2(material.type)
        co2_factor, water_factor = 1 + rng.uniform(-self.variation, self.variation, size=2)
        return {
            "co2": float(base_co2 * co2_factor),
            "water": float(DEFAULT_MATERIAL_WATER * water_factor),
        }

    @staticmethod
    def _energy_impact(energy: EnergySpec, route: RouteSpec) -> Dict[str, float]:
        renewable_fraction = energy.renewable / 100
        return {
            "co2": BASE_PROCESS_ENERGY * energy.weighted_carbon_intensity
                   * (1 - renewable_fraction * RENEWABLE_CARBON_DISCOUNT),
            "energy": BASE_PROCESS_ENERGY * route.efficiency,
            "water": BASE_PROCESS_ENERGY * PROCESS_WATER_PER_MJ,
        }

    @staticmethod
    def _transport_impact(transport: TransportSpec) -> Dict[str, float]:
        return {
            "co2": transport.distance * transport.carbon_intensity,
            "energy": transport.distance * TRANSPORT_ENERGY_PER_KM,
        }

    @staticmethod
    def _end_of_life_impact(end_of_life: EndOfLifeSpec) -> Dict[str, float]:
        # Negative = avoided emissions
        return {
            "co2": -AVOIDED_EMISSIONS_PER_UNIT * end_of_life.recycling_rate * end_of_life.recovery_efficiency,
        }

    @staticmethod
    def circularity_score(scenario: ScenarioSpec) -> CircularityScore:
        material_efficiency = scenario.route.efficiency
        energy_recovery = (scenario.energy.renewable / 100) * 0.8
        waste_reduction = scenario.end_of_life.recycling_rate * 0.9
        recycling_rate = scenario.end_of_life.recycling_rate

        average = (material_efficiency + energy_recovery + waste_reduction + recycling_rate) / 4
        return CircularityScore(
            total=max(0, min(100, round_half_up(average * 100))),
            breakdown=CircularityBreakdown(
                material_efficiency=round_half_up(material_efficiency * 100),
                energy_recovery=round_half_up(energy_recovery * 100),
                waste_reduction=round_half_up(waste_reduction * 100),
                recycling_rate=round_half_up(recycling_rate * 100),
            ),
        )


def calculate_impact(scenario: ScenarioSpec, seed: int = 42, variation: float = 0.1) -> ImpactResult:
    """Compute impact metrics with a throwaway model instance"""
    return ImpactModel(variation=variation, seed=seed).compute(scenario)
