"""Tests for the meal repository and the MongoDB connection manager."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from snaphealth_api.db.mongo import MongoDB
from snaphealth_api.db.repositories import MealRepository
from snaphealth_api.db.unit_of_work import UnitOfWork
from snaphealth_api.models.meal import SavedMeal


@pytest.fixture
def collection():
    coll = MagicMock()
    coll.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId("65f1c2a4e4b0a1b2c3d4e5f6")))
    coll.find_one = AsyncMock(return_value=None)

    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    coll.find.return_value = cursor
    coll.cursor = cursor
    return coll


class TestMealRepository:
    """Tests for MealRepository."""

    @pytest.mark.asyncio
    async def test_save_meal(self, collection, confident_result):
        repo = MealRepository(collection)

        meal_id = await repo.save_meal("user_1", confident_result, "req_1", image_url="gridfs://meal_images/x")

        assert meal_id == "65f1c2a4e4b0a1b2c3d4e5f6"
        document = collection.insert_one.await_args.args[0]
        assert document["user_id"] == "user_1"
        assert document["meal_name"] == confident_result.description
        assert document["analysis"]["source"] == "vision"
        assert document["image_url"] == "gridfs://meal_images/x"
        assert document["created_at"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_user_meals_query(self, collection, confident_result):
        collection.cursor.to_list.return_value = [
            {
                "_id": ObjectId("65f1c2a4e4b0a1b2c3d4e5f6"),
                "user_id": "user_1",
                "meal_name": "Lunch",
                "analysis": confident_result.model_dump(by_alias=False),
                "request_id": "req_1",
                "created_at": datetime(2026, 5, 1, tzinfo=UTC),
            }
        ]
        repo = MealRepository(collection)
        start = datetime(2026, 4, 1, tzinfo=UTC)

        meals = await repo.get_user_meals("user_1", start=start, limit=10)

        collection.find.assert_called_once_with({"user_id": "user_1", "created_at": {"$gte": start}})
        collection.cursor.sort.assert_called_once_with([("created_at", -1)])
        collection.cursor.limit.assert_called_once_with(10)
        assert isinstance(meals[0], SavedMeal)
        assert meals[0].id == "65f1c2a4e4b0a1b2c3d4e5f6"
        assert meals[0].analysis.description == confident_result.description

    @pytest.mark.asyncio
    async def test_find_by_id_malformed(self, collection):
        repo = MealRepository(collection)

        assert await repo.find_by_id("not-an-object-id") is None
        collection.find_one.assert_not_awaited()

    def test_unit_of_work_reuses_repository(self):
        db = MagicMock()
        uow = UnitOfWork(db)

        assert uow.meals is uow.meals
        db.__getitem__.assert_called_once_with("meals")


class TestMongoDB:
    """Tests for the connection manager's reachability flag."""

    @pytest.fixture(autouse=True)
    def reset(self):
        yield
        MongoDB.client = None
        MongoDB.reachable = False

    @pytest.mark.asyncio
    async def test_ping_success(self):
        MongoDB.client = MagicMock()
        MongoDB.client.admin.command = AsyncMock(return_value={"ok": 1})

        assert await MongoDB.ping() is True
        assert MongoDB.is_connected() is True

    @pytest.mark.asyncio
    async def test_ping_failure(self):
        MongoDB.client = MagicMock()
        MongoDB.client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("no server"))

        assert await MongoDB.ping() is False
        assert MongoDB.is_connected() is False

    @pytest.mark.asyncio
    async def test_ping_without_client(self):
        assert await MongoDB.ping() is False

    def test_get_client_requires_connect(self):
        with pytest.raises(RuntimeError):
            MongoDB.get_client()
