"""Unit of Work pattern for managing repository access."""

from motor.motor_asyncio import AsyncIOMotorDatabase

from .repositories.meals import MealRepository


class UnitOfWork:
    """
    Unit of Work pattern implementation.

    Groups repository access and provides a single injection point for services.

    Usage:
        uow = UnitOfWork(db)
        meal_id = await uow.meals.save_meal(user_id, analysis, request_id)
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        """
        Initialize Unit of Work with database instance.

        Args:
            db: Motor database instance
        """
        self._db = db
        self._meals: MealRepository | None = None

    @property
    def db(self) -> AsyncIOMotorDatabase:
        """Underlying database (for GridFS buckets)."""
        return self._db

    @property
    def meals(self) -> MealRepository:
        """
        Get Meals repository (lazy loaded).

        Returns:
            MealRepository instance
        """
        if self._meals is None:
            self._meals = MealRepository(self._db["meals"])
        return self._meals
