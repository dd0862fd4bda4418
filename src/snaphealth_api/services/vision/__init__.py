"""Vision analysis service module."""

from .base import VisionAnalysis, VisionAnalysisError, VisionAnalysisService
from .factory import clear_service_cache, get_vision_service
from .langchain_provider import LangChainVisionAnalyzer

__all__ = [
    "VisionAnalysis",
    "VisionAnalysisError",
    "VisionAnalysisService",
    "LangChainVisionAnalyzer",
    "get_vision_service",
    "clear_service_cache",
]
