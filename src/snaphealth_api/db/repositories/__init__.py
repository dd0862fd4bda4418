"""Repository implementations."""

from .base import BaseRepository
from .meals import MealRepository

__all__ = ["BaseRepository", "MealRepository"]
