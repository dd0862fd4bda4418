"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from snaphealth_api.api.routes import analyze, meals
from snaphealth_api.core.config import get_settings
from snaphealth_api.core.exceptions import APIError
from snaphealth_api.core.llm import get_llm_info
from snaphealth_api.db.mongo import MongoDB
from snaphealth_api.pipeline import close_pipeline
from snaphealth_api.services.runtime import AnalysisRuntime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    settings = get_settings()
    print(f"🚀 Starting {settings.app_name} v{settings.api_version}")
    print(f"🔎 Analysis method: {settings.active_analysis_method}")
    print(f"📦 Connecting to MongoDB at {settings.mongo_uri[:20]}...")

    MongoDB.connect(settings.mongo_uri, settings.db_name, timeout_ms=settings.mongo_timeout_ms)
    if await MongoDB.ping():
        await MongoDB.ensure_indexes()
        print("✅ MongoDB connected")
    else:
        print("⚠️  MongoDB unreachable, meals will not be saved")

    app.state.runtime = AnalysisRuntime.from_settings(settings)
    print(f"✅ Runtime ready (max {settings.max_concurrent_requests} concurrent analyses)")

    yield

    # Shutdown
    print("👋 Shutting down...")
    await close_pipeline()
    MongoDB.close()
    print("✅ MongoDB connection closed")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        description="Meal photo analysis with vision, OCR and nutrition database sources",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Available before startup so the app works without the lifespan (tests)
    app.state.runtime = AnalysisRuntime.from_settings(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        """Handle custom API errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "details": exc.details,
            },
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint with configuration summary."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.api_version,
            "activeAnalysisMethod": settings.active_analysis_method,
            "visionEnabled": settings.vision_enabled,
            "ocrEnabled": settings.ocr_enabled,
            "ocrConfigured": settings.is_ocr_configured,
            "nutritionDbConfigured": settings.is_nutrition_db_configured,
            "mongodb": MongoDB.is_connected(),
            "llm": get_llm_info(settings),
            "runtime": request.app.state.runtime.stats(),
        }

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
            "analyze": "/api/analyze",
        }

    # Include routers
    app.include_router(analyze.router, prefix="/api", tags=["Analysis"])
    app.include_router(meals.router, prefix="/api", tags=["Meals"])

    return app


# Create app instance
app = create_app()
