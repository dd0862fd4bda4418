"""LangGraph node implementations for the analysis pipeline."""

from .fallback import FallbackNode, create_fallback_result
from .nutrition import LLMEstimateNode, NutritionLookupNode
from .ocr import ExtractTextNode
from .vision import EnrichNode, VisionNode

__all__ = [
    "VisionNode",
    "EnrichNode",
    "ExtractTextNode",
    "NutritionLookupNode",
    "LLMEstimateNode",
    "FallbackNode",
    "create_fallback_result",
]
