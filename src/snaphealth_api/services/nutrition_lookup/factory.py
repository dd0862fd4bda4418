"""
Factories for nutrition lookup services.

Reads configuration from settings and returns the configured providers.
"""

import logging
from functools import lru_cache

from snaphealth_api.core.config import get_settings
from snaphealth_api.core.llm import get_llm, get_model_name

from .base import NutritionLookupError, NutritionLookupService
from .llm_estimator import LLMNutritionEstimator
from .nutritionix_provider import NutritionixLookup

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_nutrition_lookup_service() -> NutritionLookupService:
    """
    Get the configured nutrition database service.

    Raises:
        NutritionLookupError: If Nutritionix credentials are missing
    """
    settings = get_settings()

    if not settings.is_nutrition_db_configured:
        raise NutritionLookupError(
            message="Nutritionix credentials not configured. "
                    "Set NUTRITIONIX_APP_ID and NUTRITIONIX_APP_KEY in your .env file.",
            error_code="NOT_CONFIGURED",
            provider="nutritionix",
        )

    logger.info("Initializing nutrition lookup provider: nutritionix")

    return NutritionixLookup(
        app_id=settings.nutritionix_app_id,
        app_key=settings.nutritionix_app_key,
        timeout=settings.nutrition_db_timeout,
    )


@lru_cache(maxsize=1)
def get_nutrition_estimator() -> LLMNutritionEstimator:
    """
    Get the LLM nutrition estimator.

    Raises:
        NutritionLookupError: If the LLM provider is not configured
    """
    settings = get_settings()

    try:
        llm = get_llm(settings, max_tokens=800)
    except ValueError as e:
        raise NutritionLookupError(
            message=str(e),
            error_code="NOT_CONFIGURED",
            provider=settings.llm_provider.value,
        ) from e

    return LLMNutritionEstimator(llm, model_name=get_model_name(settings))


def clear_service_cache():
    """Clear the cached service instances (useful for testing)."""
    get_nutrition_lookup_service.cache_clear()
    get_nutrition_estimator.cache_clear()
