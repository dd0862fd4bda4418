"""Pydantic models for saved meals."""

from datetime import datetime

from pydantic import Field

from .analysis import AnalysisResult, CamelModel


class SavedMeal(CamelModel):
    """A meal analysis persisted for a user."""

    id: str | None = Field(None, description="MongoDB document ID")
    user_id: str = Field(..., description="Owner of the meal")
    meal_name: str = Field(..., description="Display name, defaults to the description")
    image_url: str | None = Field(None, description="Storage URI of the uploaded image")
    analysis: AnalysisResult
    request_id: str | None = None
    created_at: datetime


class MealListResponse(CamelModel):
    """Response for meal list query."""

    meals: list[SavedMeal] = Field(default_factory=list)
    total: int = Field(default=0)
