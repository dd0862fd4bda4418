"""Saved meal API routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Query, Response

from snaphealth_api.api.dependencies import ImageStorageDep, UoWDep
from snaphealth_api.core.exceptions import APIError, NotFoundError, ValidationError
from snaphealth_api.models.meal import MealListResponse, SavedMeal
from snaphealth_api.services.image_ingest import sniff_mime_type
from snaphealth_api.services.storage import ImageStorageError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/meals",
    response_model=MealListResponse,
    summary="Get saved meals for user",
    description="Retrieve meals saved from analyses, newest first.",
)
async def get_meals(
    uow: UoWDep,
    user_id: str = Query("", alias="userId"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=200),
) -> MealListResponse:
    """Get a user's saved meals within an optional date range."""
    if not user_id.strip():
        raise ValidationError("userId is required", details={"field": "userId"})

    logger.info(
        "Fetching saved meals",
        extra={
            "user_id": user_id,
            "start_date": start_date,
            "end_date": end_date,
            "limit": limit,
        },
    )

    meals = await uow.meals.get_user_meals(
        user_id=user_id,
        start=start_date,
        end=end_date,
        limit=limit,
    )

    return MealListResponse(meals=meals, total=len(meals))


@router.get(
    "/meals/{meal_id}",
    response_model=SavedMeal,
    summary="Get a saved meal",
)
async def get_meal(meal_id: str, uow: UoWDep) -> SavedMeal:
    """Get a single saved meal by ID."""
    meal = await uow.meals.find_by_id(meal_id)
    if meal is None:
        raise NotFoundError("Meal", meal_id)
    return meal


@router.get(
    "/meals/{meal_id}/image",
    summary="Get the photo of a saved meal",
    response_class=Response,
)
async def get_meal_image(meal_id: str, uow: UoWDep, storage: ImageStorageDep) -> Response:
    """Stream the stored image of a saved meal."""
    meal = await uow.meals.find_by_id(meal_id)
    if meal is None:
        raise NotFoundError("Meal", meal_id)
    if not meal.image_url:
        raise NotFoundError("Meal image", meal_id)
    if storage is None:
        raise APIError("Image storage is unavailable", status_code=503)

    try:
        data = await storage.download_by_uri(meal.image_url)
    except ImageStorageError as e:
        logger.error(f"Could not load image for meal {meal_id}: {e.message}")
        raise APIError(e.message, status_code=502, details=e.details) from e

    return Response(content=data, media_type=sniff_mime_type(data))
