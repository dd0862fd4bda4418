"""Repository for saved meal analyses."""

from datetime import UTC, datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection

from snaphealth_api.models.analysis import AnalysisResult
from snaphealth_api.models.meal import SavedMeal

from .base import BaseRepository


class MealRepository(BaseRepository[SavedMeal]):
    """
    Repository for meals saved from image analyses.

    Stored in the `meals` collection. Writes only arrive through the
    persistence gate, which has already validated the analysis.
    """

    model_class = SavedMeal

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def save_meal(
        self,
        user_id: str,
        analysis: AnalysisResult,
        request_id: str,
        image_url: str | None = None,
        meal_name: str | None = None,
    ) -> str:
        """
        Save an analyzed meal.

        Args:
            user_id: Owner of the meal
            analysis: Validated analysis result
            request_id: Analysis request ID
            image_url: Storage URI of the image, if uploaded
            meal_name: Display name (defaults to the description)

        Returns:
            Inserted document ID
        """
        document: dict[str, Any] = {
            "user_id": user_id,
            "meal_name": meal_name or analysis.description,
            "image_url": image_url,
            "analysis": analysis.model_dump(by_alias=False),
            "request_id": request_id,
            "created_at": datetime.now(UTC),
        }
        return await self.insert_one(document)

    async def get_user_meals(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[SavedMeal]:
        """
        Get a user's meals, newest first.

        Args:
            user_id: User identifier
            start: Optional lower bound on created_at
            end: Optional upper bound on created_at
            limit: Maximum meals to return
        """
        query: dict[str, Any] = {"user_id": user_id}

        if start or end:
            query["created_at"] = {}
            if start:
                query["created_at"]["$gte"] = start
            if end:
                query["created_at"]["$lte"] = end

        return await self.find_many(
            filter=query,
            sort=[("created_at", -1)],
            limit=limit,
        )
