"""
LLM-based nutrition estimate for meal text.

Last tier before the canned fallback: when the nutrition database has no
answer in time, a chat model estimates nutrients from the OCR text.
"""

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from snaphealth_api.models.analysis import ParseFailure
from snaphealth_api.services.normalizer import normalize_nutrients, parse_payload

from .base import NutritionEstimate

logger = logging.getLogger(__name__)


ESTIMATE_SYSTEM_PROMPT = """You are a nutrition analysis AI. Extract nutrition information from the food description.
Provide estimates for calories, protein (g), carbohydrates (g), fat (g), fiber (g), sugar (g),
sodium (mg), and cholesterol (mg). Also identify all ingredients.

Respond ONLY with a JSON object of this shape:
{
  "calories": 450,
  "protein": 30,
  "carbohydrates": 40,
  "fat": 15,
  "fiber": 6,
  "sugar": 5,
  "sodium": 700,
  "cholesterol": 80,
  "ingredients": ["grilled chicken", "brown rice", "broccoli"]
}"""

ESTIMATED_FIELDS = (
    "calories",
    "protein",
    "carbohydrates",
    "fat",
    "fiber",
    "sugar",
    "sodium",
    "cholesterol",
)


class LLMNutritionEstimator:
    """
    Estimates nutrients from meal text with a chat model.

    Never raises for provider or parse failures; an unsuccessful
    NutritionEstimate with zeroed core nutrients is returned instead.
    """

    def __init__(self, llm: BaseChatModel, model_name: str = "unknown"):
        """
        Initialize the estimator.

        Args:
            llm: Chat model to query
            model_name: Model identifier reported in results
        """
        self.llm = llm
        self.model_name = model_name

    async def estimate(self, text: str, request_id: str) -> NutritionEstimate:
        """Estimate nutrients for the meal described by `text`."""
        messages = [
            SystemMessage(content=ESTIMATE_SYSTEM_PROMPT),
            HumanMessage(content=f'Analyze the nutrition content of this meal: "{text}"'),
        ]

        logger.info(f"[{request_id}] Estimating nutrition with {self.model_name}")

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"[{request_id}] Nutrition estimate failed: {e}")
            return self._error(str(e))

        parsed = parse_payload(response.content)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"[{request_id}] Could not parse nutrition estimate: {parsed.reason}")
            return self._error(parsed.reason)

        data = parsed.data
        values = data.get("nutrients") if isinstance(data.get("nutrients"), dict) else data
        flat = {field: values[field] for field in ESTIMATED_FIELDS if field in values}

        if not flat:
            return self._error("No nutrient values in estimate")

        raw_ingredients = data.get("ingredients")
        if isinstance(raw_ingredients, str):
            raw_ingredients = raw_ingredients.split(",")
        elif not isinstance(raw_ingredients, list):
            raw_ingredients = []
        ingredients = [
            item if isinstance(item, str) else str(item.get("name", ""))
            for item in raw_ingredients
            if isinstance(item, (str, dict))
        ]

        return NutritionEstimate(
            success=True,
            nutrients=normalize_nutrients(flat),
            ingredients=[item.strip() for item in ingredients if item and item.strip()],
            source="llm_nutrition",
            model=self.model_name,
        )

    def _error(self, message: str) -> NutritionEstimate:
        return NutritionEstimate(
            success=False,
            nutrients=normalize_nutrients({}),
            source="llm_nutrition_error",
            model=self.model_name,
            error=message,
        )
