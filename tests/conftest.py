"""Pytest configuration and fixtures."""

import base64
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from snaphealth_api.core.config import Settings
from snaphealth_api.main import app
from snaphealth_api.models.analysis import AnalysisResult
from snaphealth_api.services.normalizer import normalize_analysis
from snaphealth_api.services.runtime import AdmissionController, AnalysisRuntime, ResponseCache


# Sample test image (1x1 red pixel PNG)
TINY_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8DwHwAFBQIAX8jx0gAAAABJRU5ErkJggg=="
)
TINY_PNG_BYTES = base64.b64decode(TINY_PNG_BASE64)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    Create async test client.

    The lifespan is not run, so MongoDB is never connected. Dependency
    overrides and the runtime are reset after each test.

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    app.state.runtime = AnalysisRuntime(ResponseCache(), AdmissionController(10))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with fake credentials and short timeouts."""
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        google_vision_api_key="vision-test",
        nutritionix_app_id="app-id",
        nutritionix_app_key="app-key",
        vision_timeout=1.0,
        enrichment_timeout=1.0,
        ocr_timeout=1.0,
        nutrition_db_timeout=1.0,
        nutrition_race_timeout=0.2,
        llm_nutrition_timeout=1.0,
        save_timeout=0.2,
        request_timeout=3.0,
    )


@pytest.fixture
def confident_payload() -> dict:
    """Vision payload for a clearly identified meal."""
    return {
        "description": "grilled chicken salad",
        "nutrients": {"calories": 450, "protein": 38, "carbs": 12, "fat": 22, "sodium": 640},
        "detailedIngredients": [
            {"name": "chicken", "category": "protein", "confidence": 9},
            {"name": "lettuce", "category": "vegetable", "confidence": 8.5},
        ],
        "confidence": 9,
        "goalImpactScore": 8,
        "goalName": "weight loss",
        "feedback": ["High in protein."],
        "suggestions": ["Add whole grains for fiber."],
    }


@pytest.fixture
def confident_result(confident_payload) -> AnalysisResult:
    """Normalized result for the confident payload."""
    return normalize_analysis(confident_payload, source="vision", model="gpt-4o")
