"""FastAPI dependency injection factories."""

from typing import Annotated

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from snaphealth_api.core.config import Settings, get_settings
from snaphealth_api.db.mongo import MongoDB
from snaphealth_api.db.unit_of_work import UnitOfWork
from snaphealth_api.pipeline import AnalysisPipeline, get_analysis_pipeline
from snaphealth_api.services.confidence_engine import get_confidence_engine
from snaphealth_api.services.persistence_gate import PersistenceGate
from snaphealth_api.services.runtime import AnalysisRuntime
from snaphealth_api.services.storage import ImageStorageService


# Type aliases for cleaner route signatures
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_database() -> AsyncIOMotorDatabase:
    """
    Get the MongoDB database instance.

    Returns:
        Motor database instance
    """
    settings = get_settings()
    return MongoDB.get_database(settings.db_name)


def get_uow(db: AsyncIOMotorDatabase = Depends(get_database)) -> UnitOfWork:
    """
    Get Unit of Work instance.

    Args:
        db: Injected database instance

    Returns:
        UnitOfWork instance
    """
    return UnitOfWork(db)


# Type alias for UoW dependency
UoWDep = Annotated[UnitOfWork, Depends(get_uow)]


def get_runtime(request: Request) -> AnalysisRuntime:
    """
    Get the process-wide runtime (cache and admission counter).

    Created in the application lifespan and stored on app.state.
    """
    return request.app.state.runtime


def get_pipeline() -> AnalysisPipeline:
    """Get the analysis pipeline."""
    return get_analysis_pipeline()


def get_persistence_gate() -> PersistenceGate | None:
    """
    Get the persistence gate, or None when MongoDB is not connected.

    Analysis still works without a database; saving is skipped.
    """
    if not MongoDB.is_connected():
        return None
    settings = get_settings()
    uow = UnitOfWork(MongoDB.get_database(settings.db_name))
    return PersistenceGate(uow.meals, get_confidence_engine(), timeout=settings.save_timeout)


def get_image_storage() -> ImageStorageService | None:
    """Get GridFS image storage, or None when MongoDB is not connected."""
    if not MongoDB.is_connected():
        return None
    settings = get_settings()
    return ImageStorageService(
        MongoDB.get_database(settings.db_name),
        timeout=settings.storage_timeout,
    )


# Type aliases for service dependencies
RuntimeDep = Annotated[AnalysisRuntime, Depends(get_runtime)]
PipelineDep = Annotated[AnalysisPipeline, Depends(get_pipeline)]
PersistenceGateDep = Annotated[PersistenceGate | None, Depends(get_persistence_gate)]
ImageStorageDep = Annotated[ImageStorageService | None, Depends(get_image_storage)]
