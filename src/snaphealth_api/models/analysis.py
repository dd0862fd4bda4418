"""
Pydantic models for meal analysis.

The wire format is camelCase to match the browser client; Python code
uses snake_case attribute names.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


CORE_NUTRIENTS = ("calories", "protein", "carbs", "fat")


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class Nutrient(CamelModel):
    """A single nutrient line in an analysis."""

    name: str = Field(..., description="Canonical nutrient name (lowercase)")
    value: str = Field(..., description="Display value, e.g. '450' or '12.5'")
    unit: str = Field("g", description="Display unit (kcal, g, mg)")
    is_highlight: bool = Field(False, description="Shown prominently in the UI")
    percent_of_daily_value: float | None = Field(
        None, description="Percent of recommended daily value"
    )
    amount: float | None = Field(None, description="Numeric value backing `value`")


class DetailedIngredient(CamelModel):
    """An ingredient detected in the meal."""

    name: str
    category: str = "unknown"
    confidence: float = Field(5.0, ge=0, le=10, description="Detection confidence 0-10")
    confidence_emoji: str = Field("🟡", description="Confidence badge")


class GoalScore(CamelModel):
    """How well the meal supports the user's goals."""

    overall: float = Field(5.0, ge=0, le=10)
    specific: dict[str, float] = Field(default_factory=dict)


class ModelInfo(CamelModel):
    """Provenance of the analysis."""

    model: str = "unknown"
    used_fallback: bool = False
    ocr_extracted: bool = False


class AnalysisResult(CamelModel):
    """Canonical analysis produced by the normalizer."""

    description: str = Field(..., min_length=1)
    nutrients: list[Nutrient] = Field(..., min_length=1)
    feedback: list[str] = Field(..., min_length=1)
    suggestions: list[str] = Field(..., min_length=1)
    detailed_ingredients: list[DetailedIngredient] = Field(default_factory=list)
    goal_score: GoalScore = Field(default_factory=GoalScore)
    model_info: ModelInfo = Field(default_factory=ModelInfo)
    low_confidence: bool = False
    fallback: bool = False
    source: str = "unknown"
    confidence: float | None = Field(
        None, ge=0, le=10, description="Overall confidence reported by the source"
    )
    image_challenges: list[str] = Field(
        default_factory=list, description="Image issues reported by the source (glare, blur, ...)"
    )
    meta: dict[str, Any] | None = Field(None, alias="_meta")

    def nutrient_amount(self, name: str) -> float:
        """Numeric amount for a nutrient, 0 when absent."""
        for nutrient in self.nutrients:
            if nutrient.name == name:
                return nutrient.amount or 0.0
        return 0.0


class ParseSuccess(BaseModel):
    """Payload parsed into a JSON object."""

    ok: Literal[True] = True
    data: dict[str, Any]
    strategy: str


class ParseFailure(BaseModel):
    """Payload could not be parsed into a JSON object."""

    ok: Literal[False] = False
    reason: str


ParseResult = ParseSuccess | ParseFailure


class ClassificationReason(str, Enum):
    """Why a result was classified the way it was."""

    OK = "ok"
    NO_INGREDIENTS = "no_ingredients"
    ALL_BELOW_FLOOR = "all_below_floor"
    UPSTREAM_FLAG = "upstream_flag"
    LOW_OVERALL_CONFIDENCE = "low_overall_confidence"
    LOW_MEAN_CONFIDENCE = "low_mean_confidence"
    MAJORITY_LOW_CONFIDENCE = "majority_low_confidence"
    IMAGE_CHALLENGES = "image_challenges"


class Classification(CamelModel):
    """Validity and confidence verdict for a result."""

    is_valid: bool
    is_low_confidence: bool
    reason: ClassificationReason


class SaveOutcome(CamelModel):
    """Result of a persistence attempt."""

    success: bool
    saved_meal_id: str | None = None
    reason: str | None = None


class AnalyzeResponse(CamelModel):
    """Body returned by the analyze endpoint (always HTTP 200)."""

    success: bool
    fallback: bool
    result: AnalysisResult
    error: str | None = None
    message: str = ""
    request_id: str
    elapsed_time: int = Field(0, description="Elapsed milliseconds")
    diagnostics: dict[str, Any] = Field(default_factory=dict)
    image_url: str | None = None
    saved_meal_id: str | None = None
