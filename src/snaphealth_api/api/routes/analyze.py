"""Meal analysis API routes.

Single endpoint that takes a meal photo and returns a normalized analysis.
The endpoint always answers HTTP 200; failures are reported in the body
with success=false and the canned fallback result.
"""

import asyncio
import json
import logging
import time
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx
from fastapi import APIRouter, Request
from pydantic import Field, field_validator
from starlette.datastructures import UploadFile

from snaphealth_api.api.dependencies import (
    ImageStorageDep,
    PersistenceGateDep,
    PipelineDep,
    RuntimeDep,
    SettingsDep,
)
from snaphealth_api.core.config import Settings, validate_source_configuration
from snaphealth_api.core.exceptions import (
    AdmissionRejected,
    ConfigurationError,
    ImageExtractionError,
    ValidationError,
)
from snaphealth_api.models.analysis import AnalysisResult, AnalyzeResponse, CamelModel, SaveOutcome
from snaphealth_api.pipeline import AnalysisPipeline, create_fallback_result
from snaphealth_api.services.image_ingest import IngestedImage, fetch_image, ingest_image
from snaphealth_api.services.persistence_gate import PersistenceGate
from snaphealth_api.services.runtime import AnalysisRuntime
from snaphealth_api.services.storage import ImageStorageService

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Request parsing
# =============================================================================


class AnalyzeRequest(CamelModel):
    """Analyze request fields, from either a multipart form or a JSON body."""

    image: Any = Field(None, description="Upload, base64 string or data URL")
    image_url: str | None = Field(None, description="Remote image to download")
    declared_type: str | None = Field(None, description="Client-declared MIME type")
    user_id: str | None = None
    health_goals: list[str] = Field(default_factory=list)
    dietary_preferences: list[str] = Field(default_factory=list)
    meal_name: str | None = None
    save_meal: bool = True

    @field_validator("health_goals", "dietary_preferences", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> list[str]:
        return parse_string_list(value)

    @field_validator("user_id", "meal_name", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("save_meal", mode="before")
    @classmethod
    def _parse_bool(cls, value: Any) -> Any:
        if value is None or value == "":
            return True
        if isinstance(value, str):
            return value.strip().lower() not in ("false", "0", "no", "off")
        return value


def parse_string_list(value: Any) -> list[str]:
    """
    Parse a list field sent as a JSON array, a comma list or a real list.

    Examples:
        '["weight loss", "muscle"]' -> ["weight loss", "muscle"]
        "weight loss, muscle" -> ["weight loss", "muscle"]
    """
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                value = text.strip("[]").split(",")
        else:
            value = text.split(",")
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [str(item).strip().strip('"') for item in value if str(item).strip()]


async def parse_analyze_request(request: Request) -> AnalyzeRequest:
    """
    Read the analyze request from multipart form data or JSON.

    Raises:
        ValidationError: If the body cannot be read
    """
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form()
        upload = form.get("image")
        if upload is None:
            upload = form.get("file")
        fields = {
            "image": upload,
            "declared_type": upload.content_type if isinstance(upload, UploadFile) else None,
            "user_id": form.get("userId"),
            "health_goals": form.get("healthGoals"),
            "dietary_preferences": form.get("dietaryPreferences"),
            "meal_name": form.get("mealName"),
            "save_meal": form.get("saveMeal"),
        }
    else:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid JSON body: {e}") from e

        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        fields = {
            "image": body.get("image") or body.get("base64Image"),
            "image_url": body.get("imageUrl"),
            "user_id": body.get("userId"),
            "health_goals": body.get("healthGoals"),
            "dietary_preferences": body.get("dietaryPreferences"),
            "meal_name": body.get("mealName"),
            "save_meal": body.get("saveMeal"),
        }

    try:
        return AnalyzeRequest(**fields)
    except ValueError as e:
        raise ValidationError(f"Invalid request fields: {e}") from e


def generate_request_id() -> str:
    """Generate unique request ID."""
    timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    unique = uuid4().hex[:8]
    # Format: req_{timestamp}_{unique}
    return f"req_{timestamp}_{unique}"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _remaining(deadline: float) -> float:
    """Seconds left before `deadline` (event loop clock), never negative."""
    return max(deadline - asyncio.get_running_loop().time(), 0.0)


def failure_response(
    request_id: str,
    started: float,
    error: str,
    message: str,
    diagnostics: dict[str, Any] | None = None,
) -> AnalyzeResponse:
    """Response for a request that never reached a source."""
    return AnalyzeResponse(
        success=False,
        fallback=True,
        result=create_fallback_result(),
        error=error,
        message=message,
        request_id=request_id,
        elapsed_time=_elapsed_ms(started),
        diagnostics=diagnostics or {},
    )


def result_message(result: AnalysisResult, timed_out: bool) -> tuple[str, str | None]:
    """User-facing message and error string for a final result."""
    if result.fallback:
        error = "Analysis timed out" if timed_out else "All analysis sources failed"
        return "We couldn't analyze this meal. Please try another photo.", error
    if result.low_confidence:
        return "Analysis complete, but some items could not be identified with confidence.", None
    return "Analysis complete", None


async def load_image(analyze_request: AnalyzeRequest, settings: Settings) -> IngestedImage:
    """
    Ingest the uploaded image, downloading it first when only a URL was sent.

    Raises:
        ImageExtractionError: If no strategy produced image bytes
    """
    source = analyze_request.image
    if source is None and analyze_request.image_url:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            source = await fetch_image(
                analyze_request.image_url,
                client,
                retries=settings.image_fetch_retries,
            )

    return await ingest_image(
        source,
        declared_type=analyze_request.declared_type,
        max_bytes=settings.max_image_bytes,
    )


# =============================================================================
# Routes
# =============================================================================


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Analyze a meal photo",
    description="""
    Analyze a meal image for nutrition and health-goal feedback.

    **Request format:** multipart/form-data with `image` (or `file`) plus
    optional `userId`, `healthGoals`, `dietaryPreferences`, `mealName`,
    `saveMeal`; or a JSON body with `image` / `base64Image` / `imageUrl`
    and the same optional fields.

    Sources are tried in order: vision model (with one enrichment pass for
    low-confidence results), OCR + nutrition database, OCR + LLM estimate.
    When all fail a canned fallback result is returned.

    Always returns HTTP 200; check `success` and `fallback`.
    """,
)
async def analyze_meal(
    request: Request,
    settings: SettingsDep,
    runtime: RuntimeDep,
    pipeline: PipelineDep,
    gate: PersistenceGateDep,
    storage: ImageStorageDep,
) -> AnalyzeResponse:
    """Run the analysis pipeline for one meal photo."""
    started = time.monotonic()
    # One budget for download, pipeline, upload and save
    deadline = asyncio.get_running_loop().time() + settings.request_timeout
    request_id = generate_request_id()

    # -------------------------------------------------------------------------
    # Step 1: Parse request
    # -------------------------------------------------------------------------
    try:
        analyze_request = await parse_analyze_request(request)
    except ValidationError as e:
        logger.warning(f"[{request_id}] Invalid analyze request: {e.message}")
        return failure_response(request_id, started, e.message, "Invalid request")

    # -------------------------------------------------------------------------
    # Step 2: Configuration check (before any source is called)
    # -------------------------------------------------------------------------
    try:
        validate_source_configuration(settings)
    except ConfigurationError as e:
        logger.error(f"[{request_id}] Configuration error: {e.message}")
        return failure_response(
            request_id,
            started,
            e.message,
            "The analysis service is not configured",
            diagnostics=e.details,
        )

    # -------------------------------------------------------------------------
    # Step 3: Admission
    # -------------------------------------------------------------------------
    try:
        async with runtime.admission.admit():
            return await _run_analysis(
                analyze_request,
                request_id,
                started,
                deadline,
                settings,
                runtime,
                pipeline,
                gate,
                storage,
            )
    except AdmissionRejected as e:
        logger.warning(f"[{request_id}] {e}")
        return failure_response(
            request_id,
            started,
            str(e),
            "The service is busy. Please try again shortly.",
            diagnostics={"activeRequests": e.active, "maxConcurrentRequests": e.limit},
        )


async def _run_analysis(
    analyze_request: AnalyzeRequest,
    request_id: str,
    started: float,
    deadline: float,
    settings: Settings,
    runtime: AnalysisRuntime,
    pipeline: AnalysisPipeline,
    gate: PersistenceGate | None,
    storage: ImageStorageService | None,
) -> AnalyzeResponse:
    # -------------------------------------------------------------------------
    # Step 4: Ingest image
    # -------------------------------------------------------------------------
    try:
        async with asyncio.timeout_at(deadline):
            image = await load_image(analyze_request, settings)
    except TimeoutError:
        logger.warning(f"[{request_id}] Image ingest exceeded {settings.request_timeout}s")
        return failure_response(
            request_id,
            started,
            "Analysis timed out",
            "We couldn't analyze this meal. Please try another photo.",
            diagnostics={"timedOut": True},
        )
    except ImageExtractionError as e:
        logger.warning(f"[{request_id}] Image extraction failed: {e.message}")
        return failure_response(
            request_id,
            started,
            e.message,
            "We couldn't read the uploaded image",
            diagnostics={"imageErrors": e.reasons},
        )

    logger.info(
        "Meal analysis request",
        extra={
            "request_id": request_id,
            "user_id": analyze_request.user_id,
            "image_bytes": image.size_bytes,
            "mime_type": image.mime_type,
            "image_strategy": image.strategy,
            "health_goals": analyze_request.health_goals,
        },
    )

    diagnostics: dict[str, Any] = {
        "imageStrategy": image.strategy,
        "imageQuality": image.quality,
        "imageBytes": image.size_bytes,
        "mimeType": image.mime_type,
        "analysisMethod": settings.active_analysis_method,
    }

    # -------------------------------------------------------------------------
    # Step 5: Cache lookup
    # -------------------------------------------------------------------------
    cache_key = runtime.cache.make_key(
        image.base64,
        analyze_request.health_goals,
        analyze_request.dietary_preferences,
    )
    result = runtime.cache.get(cache_key)
    timed_out = False
    diagnostics["cacheHit"] = result is not None

    # -------------------------------------------------------------------------
    # Step 6: Run pipeline and cache the result
    # -------------------------------------------------------------------------
    if result is None:
        outcome = await pipeline.run(
            image.base64,
            analyze_request.health_goals,
            analyze_request.dietary_preferences,
            request_id,
            mime_type=image.mime_type,
            timeout=_remaining(deadline),
        )
        result = outcome.result
        timed_out = outcome.timed_out
        diagnostics["pipeline"] = outcome.diagnostics()
        runtime.cache.set(cache_key, result)

    # -------------------------------------------------------------------------
    # Step 7: Upload image and save meal (optional)
    # -------------------------------------------------------------------------
    image_url = None
    save_outcome = None

    if analyze_request.user_id and analyze_request.save_meal:
        if gate is None:
            save_outcome = SaveOutcome(success=False, reason="database_unavailable")
        elif reason := gate.rejection_reason(result, analyze_request.user_id):
            # Nothing is uploaded for a result that will not be saved
            save_outcome = SaveOutcome(success=False, reason=reason)
        else:
            try:
                async with asyncio.timeout_at(deadline):
                    if storage is not None:
                        image_url = await storage.upload(
                            image.base64,
                            analyze_request.user_id,
                            request_id,
                            content_type=image.mime_type,
                        )
                    save_outcome = await gate.save(
                        result,
                        user_id=analyze_request.user_id,
                        image_url=image_url,
                        request_id=request_id,
                        meal_name=analyze_request.meal_name,
                    )
            except TimeoutError:
                logger.warning(f"[{request_id}] Save exceeded the request deadline")
                save_outcome = SaveOutcome(success=False, reason="timeout")
        diagnostics["save"] = save_outcome.model_dump(by_alias=True)

    # -------------------------------------------------------------------------
    # Step 8: Respond
    # -------------------------------------------------------------------------
    message, error = result_message(result, timed_out)
    elapsed = _elapsed_ms(started)

    logger.info(
        f"[{request_id}] Analysis finished: source={result.source}, "
        f"fallback={result.fallback}, lowConfidence={result.low_confidence}",
        extra={
            "request_id": request_id,
            "source": result.source,
            "elapsed_ms": elapsed,
            "cache_hit": diagnostics["cacheHit"],
        },
    )

    return AnalyzeResponse(
        success=not result.fallback,
        fallback=result.fallback,
        result=result,
        error=error,
        message=message,
        request_id=request_id,
        elapsed_time=elapsed,
        diagnostics=diagnostics,
        image_url=image_url,
        saved_meal_id=save_outcome.saved_meal_id if save_outcome else None,
    )
