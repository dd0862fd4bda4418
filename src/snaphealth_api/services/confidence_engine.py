"""
Confidence Engine for meal analyses.

Classifies a normalized result along two independent axes:
- validity: is there anything usable (detected ingredients above a floor)
- confidence: should the result be treated as tentative

Also owns the merge rule for the single enrichment pass.
"""

import logging
from functools import lru_cache
from statistics import mean

from snaphealth_api.models.analysis import (
    AnalysisResult,
    Classification,
    ClassificationReason,
    DetailedIngredient,
)
from snaphealth_api.services.normalizer import confidence_badge

logger = logging.getLogger(__name__)


class ConfidenceEngine:
    """
    Engine for validity and low-confidence classification.

    Thresholds are on the 0-10 scale used by ingredient and overall
    confidence scores.
    """

    VALIDITY_FLOOR = 2.0  # Every ingredient below this => nothing usable
    LOW_CONFIDENCE_THRESHOLD = 5.0  # Overall, mean and per-ingredient cut-off
    MAJORITY_FRACTION = 0.5  # More than this share below threshold => low confidence

    def classify(self, result: AnalysisResult) -> Classification:
        """
        Classify a normalized result.

        Invalid results are always low confidence too. For valid results
        the first matching signal, in the order below, is reported:
        upstream flag, overall score, mean ingredient confidence, share of
        low ingredients, reported image challenges.

        Args:
            result: Normalized analysis

        Returns:
            Classification with validity, confidence and reason
        """
        ingredients = result.detailed_ingredients

        if not ingredients:
            return self._invalid(ClassificationReason.NO_INGREDIENTS)

        scores = [ingredient.confidence for ingredient in ingredients]

        if all(score < self.VALIDITY_FLOOR for score in scores):
            return self._invalid(ClassificationReason.ALL_BELOW_FLOOR)

        reason = self._low_confidence_reason(result, scores)

        logger.debug(
            f"Classified result: reason={reason.value}, "
            f"ingredients={len(scores)}, mean={mean(scores):.1f}"
        )

        return Classification(
            is_valid=True,
            is_low_confidence=reason != ClassificationReason.OK,
            reason=reason,
        )

    def apply(self, result: AnalysisResult) -> tuple[AnalysisResult, Classification]:
        """Classify and return a copy with lowConfidence set accordingly."""
        classification = self.classify(result)
        updated = result.model_copy(
            update={"low_confidence": classification.is_low_confidence}
        )
        return updated, classification

    @staticmethod
    def should_enrich(classification: Classification, already_enriched: bool) -> bool:
        """Enrichment runs once, only for valid low-confidence results."""
        return (
            classification.is_valid
            and classification.is_low_confidence
            and not already_enriched
        )

    def merge_enriched(
        self,
        primary: AnalysisResult,
        enriched: AnalysisResult,
    ) -> AnalysisResult:
        """
        Merge a primary result with its enrichment pass.

        The richer ingredient list wins (more items, then higher mean
        confidence) and supplies description, nutrients, feedback and
        suggestions. Confidence values are the maximum of both sides:
        per ingredient (matched by name) and overall.

        Args:
            primary: First-pass result
            enriched: Enrichment-pass result

        Returns:
            Merged result (lowConfidence not yet re-evaluated)
        """
        base, other = (
            (enriched, primary)
            if self._richness(enriched) > self._richness(primary)
            else (primary, enriched)
        )

        other_scores = {
            ingredient.name.casefold(): ingredient.confidence
            for ingredient in other.detailed_ingredients
        }
        ingredients = []
        for ingredient in base.detailed_ingredients:
            best = max(ingredient.confidence, other_scores.get(ingredient.name.casefold(), 0.0))
            if best != ingredient.confidence:
                ingredient = DetailedIngredient(
                    name=ingredient.name,
                    category=ingredient.category,
                    confidence=best,
                    confidence_emoji=confidence_badge(best),
                )
            ingredients.append(ingredient)

        overall = [c for c in (primary.confidence, enriched.confidence) if c is not None]
        meta = {**(primary.meta or {}), **(enriched.meta or {}), "enriched": True}

        return base.model_copy(
            update={
                "detailed_ingredients": ingredients,
                "confidence": max(overall) if overall else None,
                "image_challenges": enriched.image_challenges,
                # Re-classification reads the enrichment pass's own flag
                "low_confidence": enriched.low_confidence,
                "meta": meta,
            }
        )

    def _low_confidence_reason(
        self,
        result: AnalysisResult,
        scores: list[float],
    ) -> ClassificationReason:
        if result.low_confidence:
            return ClassificationReason.UPSTREAM_FLAG

        if result.confidence is not None and result.confidence < self.LOW_CONFIDENCE_THRESHOLD:
            return ClassificationReason.LOW_OVERALL_CONFIDENCE

        if mean(scores) < self.LOW_CONFIDENCE_THRESHOLD:
            return ClassificationReason.LOW_MEAN_CONFIDENCE

        low_count = sum(1 for score in scores if score < self.LOW_CONFIDENCE_THRESHOLD)
        if low_count > len(scores) * self.MAJORITY_FRACTION:
            return ClassificationReason.MAJORITY_LOW_CONFIDENCE

        if result.image_challenges:
            return ClassificationReason.IMAGE_CHALLENGES

        return ClassificationReason.OK

    @staticmethod
    def _invalid(reason: ClassificationReason) -> Classification:
        return Classification(is_valid=False, is_low_confidence=True, reason=reason)

    @staticmethod
    def _richness(result: AnalysisResult) -> tuple[int, float]:
        scores = [ingredient.confidence for ingredient in result.detailed_ingredients]
        return len(scores), mean(scores) if scores else 0.0


@lru_cache(maxsize=1)
def get_confidence_engine() -> ConfidenceEngine:
    """Get the shared confidence engine instance."""
    return ConfidenceEngine()
