"""
Base classes and models for nutrition lookup service.

Defines the abstract interface for nutrition database providers and the
LLM estimator, plus standardized response models.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from snaphealth_api.models.analysis import Nutrient


class FoodItem(BaseModel):
    """A food matched by the nutrition database."""

    name: str = Field(..., description="Food name as matched by the database")
    serving_qty: float | None = Field(None, description="Serving quantity")
    serving_unit: str | None = Field(None, description="Serving unit")
    serving_weight_grams: float | None = Field(None, ge=0)
    calories: float = Field(0, ge=0, description="Energy in kcal")


class NutritionLookupResult(BaseModel):
    """Result from a nutrition database lookup."""

    success: bool = Field(..., description="Whether nutrients were found")
    nutrients: list[Nutrient] = Field(default_factory=list, description="Summed nutrients")
    foods: list[FoodItem] = Field(default_factory=list, description="Matched foods")
    error: str | None = None
    provider: str = "unknown"


class NutritionEstimate(BaseModel):
    """Nutrition estimated by a language model from meal text."""

    success: bool
    nutrients: list[Nutrient] = Field(default_factory=list)
    ingredients: list[str] = Field(default_factory=list)
    source: str = "llm_nutrition"
    model: str = "unknown"
    error: str | None = None


class NutritionLookupError(Exception):
    """Error during nutrition lookup."""

    def __init__(
        self,
        message: str,
        error_code: str = "LOOKUP_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class NutritionLookupService(ABC):
    """Abstract base class for nutrition database providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def lookup(self, text: str, request_id: str) -> NutritionLookupResult:
        """
        Look up nutrition for a natural-language meal description.

        Args:
            text: Meal text (e.g. OCR output)
            request_id: Request identifier for logging

        Returns:
            NutritionLookupResult with summed nutrients

        Raises:
            NutritionLookupError: If the provider call fails
        """
        ...

    async def close(self) -> None:
        """Release provider resources."""
        return None
