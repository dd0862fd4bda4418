"""Pydantic models for API schemas."""

from .analysis import (
    CORE_NUTRIENTS,
    AnalysisResult,
    AnalyzeResponse,
    Classification,
    ClassificationReason,
    DetailedIngredient,
    GoalScore,
    ModelInfo,
    Nutrient,
    ParseFailure,
    ParseResult,
    ParseSuccess,
    SaveOutcome,
)
from .meal import MealListResponse, SavedMeal

__all__ = [
    # Analysis
    "CORE_NUTRIENTS",
    "AnalysisResult",
    "AnalyzeResponse",
    "Classification",
    "ClassificationReason",
    "DetailedIngredient",
    "GoalScore",
    "ModelInfo",
    "Nutrient",
    "ParseFailure",
    "ParseResult",
    "ParseSuccess",
    "SaveOutcome",
    # Meals
    "MealListResponse",
    "SavedMeal",
]
