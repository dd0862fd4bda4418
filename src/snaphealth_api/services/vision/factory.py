"""
Factory for creating the vision analysis service.

Reads configuration from settings and returns the configured provider.
"""

import logging
from functools import lru_cache

from snaphealth_api.core.config import get_settings
from snaphealth_api.core.llm import get_llm, get_model_name

from .base import VisionAnalysisError, VisionAnalysisService
from .langchain_provider import LangChainVisionAnalyzer

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_vision_service() -> VisionAnalysisService:
    """
    Get the configured vision analysis service.

    Builds two chat models from the LLM settings: one at the configured
    temperature and one at the enrichment temperature.

    Returns:
        Configured VisionAnalysisService instance

    Raises:
        VisionAnalysisError: If the LLM provider is not configured
    """
    settings = get_settings()
    model_name = get_model_name(settings)

    logger.info(f"Initializing vision provider: {settings.llm_provider.value}/{model_name}")

    try:
        llm = get_llm(settings)
        enrichment_llm = get_llm(settings, temperature=settings.enrichment_temperature)
    except ValueError as e:
        raise VisionAnalysisError(
            message=str(e),
            error_code="NOT_CONFIGURED",
            provider=settings.llm_provider.value,
        ) from e

    return LangChainVisionAnalyzer(llm, enrichment_llm, model_name=model_name)


def clear_service_cache():
    """Clear the cached service instance (useful for testing)."""
    get_vision_service.cache_clear()
