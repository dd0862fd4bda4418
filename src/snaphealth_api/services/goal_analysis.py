"""
Goal analysis for text-derived meals.

Used by the OCR tiers, where there is no vision model to write feedback:
food items are pulled from OCR text, and description, goal score,
feedback and suggestions are generated from nutrient totals.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from snaphealth_api.models.analysis import Nutrient
from snaphealth_api.services.normalizer import canonical_nutrient_name

logger = logging.getLogger(__name__)


TEXT_INGREDIENT_CATEGORY = "detected from text"
TEXT_INGREDIENT_EMOJI = "📝"

_ITEM_SPLIT_RE = re.compile(r",|\n|\band\b", re.IGNORECASE)


@dataclass
class GoalAnalysis:
    """Feedback, suggestions and scores for a meal."""

    feedback: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    overall: float = 5.0
    specific: dict[str, float] = field(default_factory=dict)


def extract_food_items(text: str) -> list[str]:
    """
    Split OCR text into candidate food items.

    Splits on commas, newlines and the word "and"; drops fragments of two
    characters or fewer, bare numbers and duplicates.
    """
    items: list[str] = []
    for fragment in _ITEM_SPLIT_RE.split(text or ""):
        item = fragment.strip()
        if len(item) <= 2 or item.isdigit() or item in items:
            continue
        items.append(item)
    return items


def nutrient_totals(nutrients: list[Nutrient]) -> dict[str, float]:
    """Map canonical nutrient name to numeric amount."""
    totals: dict[str, float] = {}
    for nutrient in nutrients:
        name = canonical_nutrient_name(nutrient.name)
        totals.setdefault(name, nutrient.amount or 0.0)
    return totals


def describe_meal(food_items: list[str], calories: float) -> str:
    """One-sentence description listing the foods and calorie total."""
    if not food_items:
        return "No food items were detected in the image."

    if len(food_items) > 1:
        foods = f"{', '.join(food_items[:-1])} and {food_items[-1]}"
    else:
        foods = food_items[0]

    return f"This meal contains {foods}. It provides approximately {round(calories)} calories."


def analyze_goals(totals: dict[str, float], health_goals: list[str]) -> GoalAnalysis:
    """
    Score a meal against free-text health goals.

    Each goal starts from a neutral 5 and is adjusted by keyword rules
    (weight loss, muscle, low carb, heart health, blood sugar). The overall
    score applies every adjustment to a single neutral 5. Scores are
    clamped to 1-10.
    """
    calories = totals.get("calories", 0.0)
    protein = totals.get("protein", 0.0)
    carbs = totals.get("carbs", 0.0)
    fat = totals.get("fat", 0.0)
    fiber = totals.get("fiber", 0.0)
    sugar = totals.get("sugar", 0.0)
    sodium = totals.get("sodium", 0.0)

    analysis = GoalAnalysis(
        feedback=["This meal contains a mix of macronutrients."],
        suggestions=[
            "Consider balancing your meal with vegetables for more micronutrients.",
            "Stay hydrated by drinking water with your meal.",
        ],
    )

    if not health_goals:
        if 15 <= protein <= 30:
            analysis.feedback.append("Contains a good amount of protein for general nutrition.")
        if fiber >= 5:
            analysis.feedback.append("Contains fiber which supports digestive health.")
        if sugar > 20:
            analysis.feedback.append("This meal is relatively high in sugar.")
            analysis.suggestions.append("Consider reducing sources of added sugar in your diet.")
        return analysis

    total_delta = 0
    for goal in health_goals:
        goal_lower = goal.lower()
        delta = 0

        if "weight loss" in goal_lower or "lose weight" in goal_lower:
            if calories < 500:
                analysis.feedback.append(
                    "This meal is relatively low in calories, which can support your weight loss goals."
                )
                delta += 1
            elif calories > 800:
                analysis.feedback.append(
                    "This meal is higher in calories. Consider portion control to support your weight loss goals."
                )
                analysis.suggestions.append(
                    "Try reducing portion sizes or choosing lower-calorie alternatives."
                )
                delta -= 1
            if fiber > 5:
                analysis.feedback.append(
                    "Good amount of fiber, which can help you feel fuller for longer."
                )
                delta += 1

        if any(keyword in goal_lower for keyword in ("muscle", "strength", "build")):
            if protein > 20:
                analysis.feedback.append(
                    "Good source of protein to support muscle building and recovery."
                )
                delta += 2
            else:
                analysis.suggestions.append(
                    "Consider adding more protein to support muscle growth and recovery."
                )
                delta -= 1

        if "low carb" in goal_lower or "keto" in goal_lower:
            if carbs < 20:
                analysis.feedback.append(
                    "This meal is low in carbohydrates, aligning with your low-carb goals."
                )
                delta += 2
            elif carbs > 50:
                analysis.feedback.append("This meal contains a significant amount of carbohydrates.")
                analysis.suggestions.append(
                    "To better align with your low-carb goals, consider reducing starchy components."
                )
                delta -= 1

        if any(keyword in goal_lower for keyword in ("heart", "blood pressure", "cholesterol")):
            if sodium > 1000:
                analysis.feedback.append(
                    "This meal is high in sodium, which may impact heart health."
                )
                analysis.suggestions.append(
                    "Consider reducing salt and processed foods to lower sodium intake."
                )
                delta -= 1
            if fat > 25:
                analysis.feedback.append("This meal is relatively high in fat.")
                analysis.suggestions.append(
                    "Focus on sources of healthy fats like avocados, nuts, and olive oil."
                )

        if "diabetes" in goal_lower or "blood sugar" in goal_lower:
            if sugar > 20:
                analysis.feedback.append(
                    "This meal contains a significant amount of sugar, which may affect blood sugar levels."
                )
                analysis.suggestions.append(
                    "Consider options with less added sugar to help manage blood glucose."
                )
                delta -= 2
            if fiber > 5:
                analysis.feedback.append(
                    "Good amount of fiber, which can help moderate blood sugar response."
                )
                delta += 1

        analysis.specific[goal] = _clamp_score(5 + delta)
        total_delta += delta

    analysis.overall = _clamp_score(5 + total_delta)
    return analysis


def build_text_analysis(
    food_items: list[str],
    nutrients: list[Nutrient],
    health_goals: list[str],
    *,
    source: str,
    model: str,
    ingredient_confidence: float,
) -> dict[str, Any]:
    """
    Assemble a raw analysis payload for an OCR-derived meal.

    The payload goes through the normalizer like any adapter output.

    Args:
        food_items: Items extracted from OCR text (or named by the lookup)
        nutrients: Nutrient totals from the lookup or estimator
        health_goals: User goals
        source: Provenance tag (e.g. "nutritionix")
        model: Model or service that produced the nutrients
        ingredient_confidence: 0-10 confidence assigned to every item
    """
    totals = nutrient_totals(nutrients)
    goals = analyze_goals(totals, health_goals)

    logger.debug(f"Text analysis for {len(food_items)} items from {source}")

    return {
        "description": describe_meal(food_items, totals.get("calories", 0.0)),
        "nutrients": [n.model_dump(by_alias=True) for n in nutrients],
        "feedback": goals.feedback,
        "suggestions": goals.suggestions,
        "detailedIngredients": [
            {
                "name": item,
                "category": TEXT_INGREDIENT_CATEGORY,
                "confidence": ingredient_confidence,
                "confidenceEmoji": TEXT_INGREDIENT_EMOJI,
            }
            for item in food_items
        ],
        "goalScore": {"overall": goals.overall, "specific": goals.specific},
        "modelInfo": {"model": model, "usedFallback": True, "ocrExtracted": True},
        "source": source,
    }


def _clamp_score(score: float) -> float:
    return float(max(1, min(10, score)))
