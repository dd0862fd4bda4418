"""
Persistence gate for analyzed meals.

Every save goes through PersistenceGate.save(), which refuses results
that must never be stored (canned fallbacks, structurally empty or
invalid analyses) before the repository is touched.
"""

import asyncio
import logging

from snaphealth_api.db.repositories.meals import MealRepository
from snaphealth_api.models.analysis import AnalysisResult, SaveOutcome
from snaphealth_api.services.confidence_engine import ConfidenceEngine

logger = logging.getLogger(__name__)


class PersistenceGate:
    """
    Validates and saves analysis results.

    The checks run on every call; callers cannot rely on an earlier
    classification. save() never raises.

    Usage:
        gate = PersistenceGate(uow.meals, get_confidence_engine())
        outcome = await gate.save(result, user_id="u1", image_url=None, request_id="r1")
    """

    def __init__(
        self,
        repository: MealRepository,
        engine: ConfidenceEngine,
        timeout: float = 5.0,
    ):
        self.repository = repository
        self.engine = engine
        self.timeout = timeout

    def rejection_reason(self, result: AnalysisResult, user_id: str | None) -> str | None:
        """Why a result may not be saved, or None if it may."""
        if not user_id:
            return "missing_user_id"
        if result.fallback:
            return "fallback_result"
        if not result.description.strip():
            return "missing_description"
        if not result.nutrients:
            return "missing_nutrients"

        classification = self.engine.classify(result)
        if not classification.is_valid:
            return f"invalid_analysis:{classification.reason.value}"
        return None

    async def save(
        self,
        result: AnalysisResult,
        *,
        user_id: str | None,
        image_url: str | None,
        request_id: str,
        meal_name: str | None = None,
    ) -> SaveOutcome:
        """
        Save a result if it passes the gate.

        Args:
            result: Final analysis result
            user_id: Owner of the meal
            image_url: Storage URI of the uploaded image, if any
            request_id: Analysis request ID
            meal_name: Display name (defaults to the description)

        Returns:
            SaveOutcome with the new meal ID or the rejection reason
        """
        reason = self.rejection_reason(result, user_id)
        if reason is not None:
            logger.info(f"[{request_id}] Not saving meal: {reason}")
            return SaveOutcome(success=False, reason=reason)

        try:
            async with asyncio.timeout(self.timeout):
                meal_id = await self.repository.save_meal(
                    user_id=user_id,
                    analysis=result,
                    request_id=request_id,
                    image_url=image_url,
                    meal_name=meal_name or result.description,
                )
        except TimeoutError:
            logger.warning(f"[{request_id}] Meal save timed out after {self.timeout}s")
            return SaveOutcome(success=False, reason="timeout")
        except Exception as e:
            logger.error(f"[{request_id}] Meal save failed: {e}")
            return SaveOutcome(success=False, reason=f"save_error:{e}")

        logger.info(
            f"[{request_id}] Saved meal {meal_id}",
            extra={"request_id": request_id, "meal_id": meal_id, "source": result.source},
        )
        return SaveOutcome(success=True, saved_meal_id=meal_id)
