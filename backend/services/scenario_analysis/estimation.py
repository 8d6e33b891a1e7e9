import math
import logging
from typing import List, Optional

from shared.models.exceptions import InvalidRequestException
from .models import (
    EstimationContext, EstimationRequest, EstimationResult,
    ESTIMATION_PRIORS, DEFAULT_ESTIMATION_PRIOR,
    ESTIMATION_DRIVERS, DEFAULT_ESTIMATION_DRIVERS, ESTIMATION_PROVENANCE,
)

logger = logging.getLogger(__name__)

# z-score of the 5th/95th percentile of a standard normal
Z_90 = 1.645

BASE_CONFIDENCE = 0.70
KNOWN_FIELD_BONUS = 0.10
REGION_BONUS = 0.08
TECHNOLOGY_BONUS = 0.07
MIN_CONFIDENCE = 0.6
MAX_CONFIDENCE = 0.95


class EstimationModel:
    """Parametric estimator for scenario fields the caller could not supply"""

    def estimate(self, field: str, context: EstimationContext) -> EstimationResult:
        """
        Estimate a single field from its prior

        Args:
            field: Field name, e.g. ``co2e_kg_per_kg``
            context: Scenario-derived context; material and process are required

        Returns:
            EstimationResult with a 90% normal interval around the prior mean
        """
        self._require_context(context)

        prior = ESTIMATION_PRIORS.get(field, DEFAULT_ESTIMATION_PRIOR)
        mean = prior["mean"]
        std_dev = math.sqrt(prior["variance"])

        return EstimationResult(
            field=field,
            mean=round(mean, 2),
            p05=round(mean - Z_90 * std_dev, 2),
            p50=round(mean, 2),
            p95=round(mean + Z_90 * std_dev, 2),
            confidence=self.confidence(field, context),
            drivers=list(ESTIMATION_DRIVERS.get(field, DEFAULT_ESTIMATION_DRIVERS)),
            provenance=ESTIMATION_PROVENANCE,
        )

    def estimate_missing(self, request: EstimationRequest,
                         fields: Optional[List[str]] = None) -> List[EstimationResult]:
        """Estimate every field in ``fields`` (defaults to the request's missing fields)"""
        context = request.context
        self._require_context(context)

        wanted = request.missing_fields if fields is None else fields
        results = [self.estimate(field, context) for field in wanted]
        logger.debug(f"Estimated {len(results)} fields for {context.material}/{context.process}")
        return results

    @staticmethod
    def confidence(field: str, context: EstimationContext) -> float:
        """Confidence rises with the number of context signals available"""
        confidence = BASE_CONFIDENCE
        if field in ESTIMATION_PRIORS:
            confidence += KNOWN_FIELD_BONUS
        if context.region:
            confidence += REGION_BONUS
        if context.technology_level:
            confidence += TECHNOLOGY_BONUS
        return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, confidence)), 2)

    @staticmethod
    def _require_context(context: EstimationContext):
        if not context.material or not context.process:
            raise InvalidRequestException("Material and process are required")
