"""LangGraph definition for the meal analysis workflow."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from langgraph.graph import StateGraph, END

from snaphealth_api.core.config import Settings, get_settings
from snaphealth_api.models.analysis import AnalysisResult
from snaphealth_api.pipeline.nodes import (
    EnrichNode,
    ExtractTextNode,
    FallbackNode,
    LLMEstimateNode,
    NutritionLookupNode,
    VisionNode,
    create_fallback_result,
)
from snaphealth_api.pipeline.nodes.nutrition import DB_SOURCE, LLM_SOURCE
from snaphealth_api.pipeline.state import AnalysisState, PipelineTracker, create_initial_state
from snaphealth_api.services.confidence_engine import ConfidenceEngine, get_confidence_engine
from snaphealth_api.services.nutrition_lookup import (
    LLMNutritionEstimator,
    NutritionLookupError,
    NutritionLookupService,
    get_nutrition_estimator,
    get_nutrition_lookup_service,
)
from snaphealth_api.services.ocr import OCRError, OCRService, get_ocr_service
from snaphealth_api.services.vision import (
    VisionAnalysisError,
    VisionAnalysisService,
    get_vision_service,
)

logger = logging.getLogger(__name__)

# Longest path: vision, extract_text, nutrition_lookup, llm_estimate, fallback = 5
RECURSION_LIMIT = 10


def route_entry(state: AnalysisState) -> str:
    """
    Pick the first source.

    Returns:
        "vision", "extract_text", or "fallback" when nothing is available
    """
    if state.get("vision_available"):
        return "vision"
    if state.get("ocr_available"):
        return "extract_text"
    return "fallback"


def route_after_vision(state: AnalysisState) -> str:
    """
    Decide what follows the primary vision call.

    - valid and confident: done
    - valid, low confidence, not yet enriched: enrich
    - failure or invalid: extract_text when OCR is available, else fallback
    """
    classification = state.get("classification")

    if classification is None or not classification.is_valid:
        return "extract_text" if state.get("ocr_available") else "fallback"

    if ConfidenceEngine.should_enrich(classification, state.get("enriched", False)):
        return "enrich"

    return "done"


def route_after_text(state: AnalysisState) -> str:
    """nutrition_lookup when OCR produced text, otherwise fallback."""
    return "nutrition_lookup" if state.get("ocr_text") else "fallback"


def route_after_lookup(state: AnalysisState) -> str:
    """Done if the database won the race, otherwise wait for the LLM estimate."""
    return "done" if state.get("resolved_by") == DB_SOURCE else "llm_estimate"


def route_after_estimate(state: AnalysisState) -> str:
    """Done if the LLM estimate succeeded, otherwise fallback."""
    return "done" if state.get("resolved_by") == LLM_SOURCE else "fallback"


# Type alias for compiled graph
AnalysisGraph = Any  # CompiledGraph type


def build_graph(
    settings: Settings,
    vision: VisionAnalysisService | None,
    ocr: OCRService | None,
    lookup: NutritionLookupService | None,
    estimator: LLMNutritionEstimator | None,
    engine: ConfidenceEngine | None = None,
) -> AnalysisGraph:
    """
    Build the meal analysis graph.

    ```
                 ┌────────┐
                 │ vision │──(confident)──────────────▶ [END]
                 └───┬────┘
          (low conf) │ (failed / invalid)
           ┌─────────┴──────────┐
      ┌────┴───┐         ┌──────┴───────┐
      │ enrich │         │ extract_text │──(no text)──┐
      └────┬───┘         └──────┬───────┘             │
           ▼                    ▼                     │
         [END]         ┌──────────────────┐           │
                       │ nutrition_lookup │──▶ [END]  │
                       └────────┬─────────┘           │
                                ▼                     │
                        ┌──────────────┐              │
                        │ llm_estimate │──▶ [END]     │
                        └──────┬───────┘              │
                               ▼                      │
                         ┌──────────┐                 │
                         │ fallback │◀────────────────┘
                         └────┬─────┘
                              ▼
                            [END]
    ```

    Args:
        settings: Application settings (timeouts)
        vision: Vision service (primary source)
        ocr: OCR service
        lookup: Nutrition database (secondary source)
        estimator: LLM nutrition estimator (tertiary source)
        engine: Confidence engine (shared instance if not provided)

    Returns:
        Compiled StateGraph ready for execution
    """
    engine = engine or get_confidence_engine()

    graph = StateGraph(AnalysisState)

    graph.add_node("vision", VisionNode(vision, engine, timeout=settings.vision_timeout))
    graph.add_node("enrich", EnrichNode(vision, engine, timeout=settings.enrichment_timeout))
    graph.add_node("extract_text", ExtractTextNode(ocr, timeout=settings.ocr_timeout))
    graph.add_node(
        "nutrition_lookup",
        NutritionLookupNode(
            lookup,
            estimator,
            engine,
            race_timeout=settings.nutrition_race_timeout,
            db_timeout=settings.nutrition_db_timeout,
        ),
    )
    graph.add_node("llm_estimate", LLMEstimateNode(engine, timeout=settings.llm_nutrition_timeout))
    graph.add_node("fallback", FallbackNode())

    graph.set_conditional_entry_point(
        route_entry,
        {
            "vision": "vision",
            "extract_text": "extract_text",
            "fallback": "fallback",
        },
    )

    graph.add_conditional_edges(
        "vision",
        route_after_vision,
        {
            "done": END,
            "enrich": "enrich",
            "extract_text": "extract_text",
            "fallback": "fallback",
        },
    )

    # Enrichment runs once; whatever it produces ends the request
    graph.add_edge("enrich", END)

    graph.add_conditional_edges(
        "extract_text",
        route_after_text,
        {
            "nutrition_lookup": "nutrition_lookup",
            "fallback": "fallback",
        },
    )

    graph.add_conditional_edges(
        "nutrition_lookup",
        route_after_lookup,
        {
            "done": END,
            "llm_estimate": "llm_estimate",
        },
    )

    graph.add_conditional_edges(
        "llm_estimate",
        route_after_estimate,
        {
            "done": END,
            "fallback": "fallback",
        },
    )

    graph.add_edge("fallback", END)

    compiled = graph.compile()
    logger.info("Analysis graph compiled")
    return compiled


@dataclass
class PipelineOutcome:
    """Final result of one pipeline run plus its diagnostics."""

    result: AnalysisResult
    resolved_by: str
    timed_out: bool = False
    attempts: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    elapsed_ms: int = 0

    def diagnostics(self) -> dict[str, Any]:
        return {
            "resolvedBy": self.resolved_by,
            "timedOut": self.timed_out,
            "attempts": self.attempts,
            "errors": self.errors,
            "pipelineMs": self.elapsed_ms,
        }


class AnalysisPipeline:
    """
    Runs the analysis graph under a global deadline.

    run() never raises: if the deadline passes or the graph fails, the
    best partial result seen so far is returned, or the canned fallback.
    Background tasks still running when the request ends are cancelled.
    """

    def __init__(
        self,
        settings: Settings,
        vision: VisionAnalysisService | None = None,
        ocr: OCRService | None = None,
        lookup: NutritionLookupService | None = None,
        estimator: LLMNutritionEstimator | None = None,
        engine: ConfidenceEngine | None = None,
    ):
        self.settings = settings
        self.ocr = ocr
        self.lookup = lookup
        self.vision_available = settings.vision_enabled and vision is not None
        self.ocr_available = settings.ocr_enabled and ocr is not None
        self.graph = build_graph(settings, vision, ocr, lookup, estimator, engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisPipeline":
        """Build a pipeline from the configured service factories."""
        vision = ocr = lookup = estimator = None

        if settings.vision_enabled:
            try:
                vision = get_vision_service()
            except VisionAnalysisError as e:
                logger.warning(f"Vision source unavailable: {e.message}")

        if settings.ocr_enabled:
            try:
                ocr = get_ocr_service()
            except OCRError as e:
                logger.warning(f"OCR source unavailable: {e.message}")
            try:
                lookup = get_nutrition_lookup_service()
            except NutritionLookupError as e:
                logger.warning(f"Nutrition database unavailable: {e.message}")
            try:
                estimator = get_nutrition_estimator()
            except NutritionLookupError as e:
                logger.warning(f"LLM nutrition estimate unavailable: {e.message}")

        return cls(settings, vision=vision, ocr=ocr, lookup=lookup, estimator=estimator)

    async def close(self) -> None:
        """Close the HTTP clients held by the OCR and nutrition database services."""
        for service in (self.ocr, self.lookup):
            if service is not None:
                await service.close()

    async def run(
        self,
        image_base64: str,
        health_goals: list[str],
        dietary_preferences: list[str],
        request_id: str,
        mime_type: str = "image/jpeg",
        timeout: float | None = None,
    ) -> PipelineOutcome:
        """
        Analyze one image.

        Args:
            image_base64: Base64-encoded image
            health_goals: User health goals
            dietary_preferences: User dietary preferences
            request_id: Analysis request ID
            mime_type: Image MIME type
            timeout: Seconds left for this run, defaults to request_timeout

        Returns:
            PipelineOutcome with the final result and diagnostics
        """
        tracker = PipelineTracker(request_id=request_id)
        state = create_initial_state(
            request_id=request_id,
            image_base64=image_base64,
            mime_type=mime_type,
            health_goals=health_goals,
            dietary_preferences=dietary_preferences,
            tracker=tracker,
            vision_available=self.vision_available,
            ocr_available=self.ocr_available,
        )
        started = time.monotonic()
        final_state: dict = {}
        timed_out = False

        # IMPORTANT: recursion_limit bounds node transitions
        config = {"recursion_limit": RECURSION_LIMIT}

        limit = self.settings.request_timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(limit):
                final_state = await self.graph.ainvoke(state, config=config)
        except TimeoutError:
            timed_out = True
            logger.warning(
                f"[{request_id}] Analysis exceeded {limit:.2f}s, forcing fallback"
            )
        except Exception:
            logger.exception(f"[{request_id}] Analysis graph failed")
        finally:
            tracker.cancel_pending()

        result = final_state.get("result")
        resolved_by = final_state.get("resolved_by")
        if result is None:
            result = tracker.best or create_fallback_result()
            resolved_by = result.source

        return PipelineOutcome(
            result=result,
            resolved_by=resolved_by or result.source,
            timed_out=timed_out,
            attempts=[attempt.to_dict() for attempt in tracker.attempts],
            errors=list(final_state.get("errors", [])),
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )


@lru_cache(maxsize=1)
def get_analysis_pipeline() -> AnalysisPipeline:
    """Get the analysis pipeline built from current settings."""
    return AnalysisPipeline.from_settings(get_settings())


def clear_pipeline_cache():
    """Clear the cached pipeline (useful for testing)."""
    get_analysis_pipeline.cache_clear()


async def close_pipeline() -> None:
    """Close the cached pipeline if one was built, then forget it."""
    if get_analysis_pipeline.cache_info().currsize:
        await get_analysis_pipeline().close()
    clear_pipeline_cache()
