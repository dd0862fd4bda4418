"""
Nutrition Lookup Service - Facade for nutrition database APIs.

Nutritionix answers natural-language queries; the LLM estimator is the
fallback when the database has no answer in time.
"""

from .base import (
    FoodItem,
    NutritionEstimate,
    NutritionLookupError,
    NutritionLookupResult,
    NutritionLookupService,
)
from .factory import clear_service_cache, get_nutrition_estimator, get_nutrition_lookup_service
from .llm_estimator import LLMNutritionEstimator
from .nutritionix_provider import NutritionixLookup

__all__ = [
    "FoodItem",
    "NutritionEstimate",
    "NutritionLookupError",
    "NutritionLookupResult",
    "NutritionLookupService",
    "LLMNutritionEstimator",
    "NutritionixLookup",
    "get_nutrition_lookup_service",
    "get_nutrition_estimator",
    "clear_service_cache",
]
