"""
Factory for creating the OCR service.
"""

import logging
from functools import lru_cache

from snaphealth_api.core.config import get_settings

from .base import OCRError, OCRService
from .google_vision_provider import GoogleVisionOCR

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_ocr_service() -> OCRService:
    """
    Get the configured OCR service.

    Raises:
        OCRError: If Google Vision credentials are missing
    """
    settings = get_settings()

    if not settings.is_ocr_configured:
        raise OCRError(
            message="Google Vision API key not configured. "
                    "Set GOOGLE_VISION_API_KEY in your .env file.",
            error_code="NOT_CONFIGURED",
            provider="google_vision",
        )

    logger.info("Initializing OCR provider: google_vision")

    return GoogleVisionOCR(
        api_key=settings.google_vision_api_key,
        confidence_threshold=settings.ocr_confidence_threshold,
        timeout=settings.ocr_timeout,
    )


def clear_service_cache():
    """Clear the cached service instance (useful for testing)."""
    get_ocr_service.cache_clear()
