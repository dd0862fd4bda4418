"""
Nutritionix provider for nutrition lookup.

Uses the natural-language nutrients endpoint, which accepts free text such
as "grilled chicken, rice and broccoli" and returns per-food nutrients.
API Documentation: https://docx.nutritionix.com/
"""

import logging

import httpx

from snaphealth_api.models.analysis import Nutrient
from snaphealth_api.services.normalizer import format_amount

from .base import (
    FoodItem,
    NutritionLookupError,
    NutritionLookupResult,
    NutritionLookupService,
)

logger = logging.getLogger(__name__)


# Nutritionix field -> (nutrient name, unit)
NUTRIENT_FIELDS = {
    "nf_calories": ("calories", "kcal"),
    "nf_protein": ("protein", "g"),
    "nf_total_carbohydrate": ("carbs", "g"),
    "nf_total_fat": ("fat", "g"),
    "nf_dietary_fiber": ("fiber", "g"),
    "nf_sugars": ("sugar", "g"),
    "nf_sodium": ("sodium", "mg"),
    "nf_potassium": ("potassium", "mg"),
}

HIGHLIGHTED = {"calories", "protein", "carbs", "fat"}


class NutritionixLookup(NutritionLookupService):
    """
    Nutrition lookup using the Nutritionix API.
    """

    def __init__(
        self,
        app_id: str,
        app_key: str,
        base_url: str = "https://trackapi.nutritionix.com/v2",
        timeout: float = 10.0,
    ):
        """
        Initialize Nutritionix provider.

        Args:
            app_id: Nutritionix application ID
            app_key: Nutritionix application key
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        self.app_id = app_id
        self.app_key = app_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "nutritionix"

    async def lookup(self, text: str, request_id: str) -> NutritionLookupResult:
        """
        Query the natural-language nutrients endpoint and sum the foods.
        """
        if not text or not text.strip():
            return NutritionLookupResult(
                success=False,
                error="Empty query",
                provider=self.provider_name,
            )

        try:
            logger.info(f"[{request_id}] Querying Nutritionix for: {text[:100]}")

            response = await self._client.post(
                f"{self.base_url}/natural/nutrients",
                json={"query": text},
                headers={
                    "x-app-id": self.app_id,
                    "x-app-key": self.app_key,
                    "Content-Type": "application/json",
                },
            )

            if response.status_code == 404:
                # Nutritionix answers 404 when no food matched the query
                logger.info(f"[{request_id}] No Nutritionix match")
                return NutritionLookupResult(
                    success=False,
                    error="No foods matched the query",
                    provider=self.provider_name,
                )

            if response.status_code != 200:
                raise NutritionLookupError(
                    message=f"Nutritionix API error: {response.status_code}",
                    error_code="PROVIDER_ERROR",
                    provider=self.provider_name,
                    details={"status_code": response.status_code, "body": response.text[:500]},
                )

            foods = response.json().get("foods", [])
            if not foods:
                return NutritionLookupResult(
                    success=False,
                    error="No foods returned",
                    provider=self.provider_name,
                )

            nutrients = self._sum_nutrients(foods)
            items = [
                FoodItem(
                    name=food.get("food_name", "unknown"),
                    serving_qty=food.get("serving_qty"),
                    serving_unit=food.get("serving_unit"),
                    serving_weight_grams=food.get("serving_weight_grams"),
                    calories=food.get("nf_calories") or 0,
                )
                for food in foods
            ]

            logger.info(f"[{request_id}] Nutritionix matched {len(items)} foods")

            return NutritionLookupResult(
                success=True,
                nutrients=nutrients,
                foods=items,
                provider=self.provider_name,
            )

        except httpx.RequestError as e:
            raise NutritionLookupError(
                message=f"Failed to connect to Nutritionix: {e}",
                error_code="CONNECTION_ERROR",
                provider=self.provider_name,
            ) from e
        except NutritionLookupError:
            raise
        except Exception as e:
            logger.exception("Unexpected error in nutrition lookup")
            raise NutritionLookupError(
                message=f"Unexpected error: {e}",
                error_code="UNEXPECTED_ERROR",
                provider=self.provider_name,
            ) from e

    def _sum_nutrients(self, foods: list[dict]) -> list[Nutrient]:
        """Sum the tracked nutrient fields across all matched foods."""
        totals = {field: 0.0 for field in NUTRIENT_FIELDS}
        for food in foods:
            for field in NUTRIENT_FIELDS:
                value = food.get(field)
                if isinstance(value, (int, float)):
                    totals[field] += value

        nutrients = []
        for field, (name, unit) in NUTRIENT_FIELDS.items():
            amount = round(totals[field], 1)
            nutrients.append(
                Nutrient(
                    name=name,
                    value=format_amount(amount),
                    unit=unit,
                    is_highlight=name in HIGHLIGHTED,
                    amount=amount,
                )
            )
        return nutrients

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
