import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Iterable, List, Optional, Union

from pydantic import Field

from shared.models.exceptions import InvalidRequestException, NotFoundException
from .models import ResultModel, DEFAULT_MATERIAL_CO2

logger = logging.getLogger(__name__)

# Catalogue revision date of the bundled factors
CATALOGUE_DATE = datetime(2024, 1, 1)

# Spelling variants mapped onto the catalogue's material names
MATERIAL_ALIASES = {
    "aluminium": "aluminum",
}


class FactorCategory(str, Enum):
    MATERIAL = "material"
    PROCESS = "process"
    ENERGY = "energy"
    TRANSPORT = "transport"
    END_OF_LIFE = "endOfLife"


class Factor(ResultModel):
    """Emission or circularity factor with its provenance"""
    id: str
    name: str
    category: FactorCategory
    value: float
    unit: str
    source: str
    confidence: float = Field(..., ge=0, le=1)
    region: str
    last_updated: datetime = CATALOGUE_DATE
    metadata: Dict[str, Any] = Field(default_factory=dict)


DEFAULT_FACTORS = (
    Factor(
        id="steel_primary_co2",
        name="Steel Primary Production CO2",
        category=FactorCategory.MATERIAL,
        value=2.1,
        unit="kg CO2/kg",
        source="WorldSteel Association",
        confidence=0.95,
        region="Global",
        metadata={"process": "Primary", "material": "Steel"},
    ),
    Factor(
        id="aluminum_secondary_co2",
        name="Aluminum Secondary Production CO2",
        category=FactorCategory.MATERIAL,
        value=0.8,
        unit="kg CO2/kg",
        source="Aluminum Association",
        confidence=0.92,
        region="Global",
        metadata={"process": "Secondary", "material": "Aluminum"},
    ),
    Factor(
        id="electricity_grid_intensity",
        name="Grid Electricity Carbon Intensity",
        category=FactorCategory.ENERGY,
        value=0.5,
        unit="kg CO2/kWh",
        source="IEA",
        confidence=0.88,
        region="Global",
        metadata={"source": "Grid"},
    ),
    Factor(
        id="truck_transport_co2",
        name="Truck Transport CO2",
        category=FactorCategory.TRANSPORT,
        value=0.1,
        unit="kg CO2/km/kg",
        source="EPA",
        confidence=0.85,
        region="US",
        metadata={"method": "Truck", "capacity": "Heavy"},
    ),
    Factor(
        id="steel_recycling_rate",
        name="Steel Recycling Rate",
        category=FactorCategory.END_OF_LIFE,
        value=0.75,
        unit="fraction",
        source="BIR",
        confidence=0.90,
        region="Global",
        metadata={"material": "Steel", "process": "Recycling"},
    ),
)


def parse_category(category: Union[str, FactorCategory]) -> FactorCategory:
    try:
        return FactorCategory(category)
    except ValueError:
        valid = ", ".join(c.value for c in FactorCategory)
        raise InvalidRequestException(f"Unknown factor category '{category}'; expected one of: {valid}")


class FactorCatalogue:
    """
    Read-only table of emission and circularity factors.

    The catalogue is fixed at construction; lookups never mutate it, so a
    single instance is shared by the impact model and the HTTP routes.
    """

    def __init__(self, factors: Iterable[Factor] = DEFAULT_FACTORS):
        self._factors = tuple(factors)
        ids = [f.id for f in self._factors]
        if len(ids) != len(set(ids)):
            raise ValueError("factor ids must be unique")

    def __len__(self) -> int:
        return len(self._factors)

    def list_factors(self, category: Optional[Union[str, FactorCategory]] = None) -> List[Factor]:
        if category is None:
            return list(self._factors)
        return self.by_category(category)

    def get(self, factor_id: str) -> Factor:
        for factor in self._factors:
            if factor.id == factor_id:
                return factor
        raise NotFoundException(f"Factor with ID {factor_id} not found")

    def by_category(self, category: Union[str, FactorCategory]) -> List[Factor]:
        wanted = parse_category(category)
        return [f for f in self._factors if f.category == wanted]

    def search(
        self,
        query: Optional[str] = None,
        category: Optional[Union[str, FactorCategory]] = None,
        region: Optional[str] = None,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Factor]:
        """
        Filter the catalogue, keeping catalogue order

        Args:
            query: Case-insensitive substring of the name, category or source
            category: Exact category
            region: Case-insensitive substring of the region
            min_confidence: Lowest confidence to keep
            limit: Maximum number of factors returned

        Returns:
            Matching factors
        """
        results = list(self._factors)

        if query:
            needle = query.lower()
            results = [
                f for f in results
                if needle in f.name.lower() or needle in f.category.value.lower() or needle in f.source.lower()
            ]

        if category:
            wanted = parse_category(category)
            results = [f for f in results if f.category == wanted]

        if region:
            results = [f for f in results if region.lower() in f.region.lower()]

        if min_confidence is not None:
            results = [f for f in results if f.confidence >= min_confidence]

        if limit is not None:
            if limit < 1:
                raise InvalidRequestException("limit must be at least 1")
            results = results[:limit]

        return results

    def statistics(self) -> Dict[str, Any]:
        by_category = Counter(f.category.value for f in self._factors)
        by_region = Counter(f.region for f in self._factors)
        return {
            "total": len(self._factors),
            "byCategory": [{"category": c, "count": n} for c, n in by_category.items()],
            "byRegion": [{"region": r, "count": n} for r, n in by_region.items()],
            "averageConfidence": (
                sum(f.confidence for f in self._factors) / len(self._factors) if self._factors else None
            ),
            "lastUpdated": max(f.last_updated for f in self._factors) if self._factors else None,
        }

    def material_co2(self, material_type: str) -> float:
        """CO2 intensity (kg CO2/kg) of a material, or the default when uncatalogued"""
        name = material_type.strip().lower()
        name = MATERIAL_ALIASES.get(name, name)
        for factor in self._factors:
            if factor.category != FactorCategory.MATERIAL:
                continue
            if str(factor.metadata.get("material", "")).lower() == name:
                return factor.value
        logger.debug(f"No material factor for '{material_type}'; using default {DEFAULT_MATERIAL_CO2}")
        return DEFAULT_MATERIAL_CO2


default_catalogue = FactorCatalogue()
