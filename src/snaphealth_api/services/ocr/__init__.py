"""OCR text extraction service module."""

from .base import OCRError, OCRResult, OCRService
from .factory import clear_service_cache, get_ocr_service
from .google_vision_provider import GoogleVisionOCR

__all__ = [
    "OCRError",
    "OCRResult",
    "OCRService",
    "GoogleVisionOCR",
    "get_ocr_service",
    "clear_service_cache",
]
