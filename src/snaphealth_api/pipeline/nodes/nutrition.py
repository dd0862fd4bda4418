"""
Nutrition nodes - secondary (database) and tertiary (LLM estimate) sources.

Both work from OCR text. The database lookup and the LLM estimate start
together; the database answer is used if it succeeds within the race
window, otherwise the estimate that is already running is awaited.
"""

import asyncio
import logging
import time

from snaphealth_api.models.analysis import AnalysisResult, Nutrient
from snaphealth_api.pipeline.state import AnalysisState, PipelineTracker
from snaphealth_api.services.confidence_engine import ConfidenceEngine
from snaphealth_api.services.goal_analysis import build_text_analysis, extract_food_items
from snaphealth_api.services.normalizer import normalize_analysis
from snaphealth_api.services.nutrition_lookup import (
    LLMNutritionEstimator,
    NutritionEstimate,
    NutritionLookupError,
    NutritionLookupService,
)

logger = logging.getLogger(__name__)

DB_SOURCE = "nutritionix"
LLM_SOURCE = "llm_nutrition"


def text_result(
    state: AnalysisState,
    engine: ConfidenceEngine,
    food_items: list[str],
    nutrients: list[Nutrient],
    *,
    source: str,
    model: str,
) -> AnalysisResult:
    """Build, normalize and classify a result derived from OCR text."""
    raw = build_text_analysis(
        food_items,
        nutrients,
        state.get("health_goals", []),
        source=source,
        model=model,
        ingredient_confidence=round(state.get("ocr_confidence", 0.0) * 10, 1),
    )
    result, classification = engine.apply(normalize_analysis(raw, source=source, model=model))
    state["tracker"].offer(result, classification)
    return result


class NutritionLookupNode:
    """
    Race the nutrition database against the LLM estimate.

    The estimate task is left running in state for LLMEstimateNode when
    the database loses; the tracker cancels it if the request ends first.
    """

    def __init__(
        self,
        lookup: NutritionLookupService | None,
        estimator: LLMNutritionEstimator | None,
        engine: ConfidenceEngine,
        race_timeout: float = 5.0,
        db_timeout: float = 10.0,
    ):
        """
        Initialize nutrition lookup node.

        Args:
            lookup: Nutrition database service
            estimator: LLM estimator started alongside the lookup
            engine: Confidence engine for classification
            race_timeout: Window in which a database answer is preferred
            db_timeout: Upper bound for the database call itself
        """
        self.lookup = lookup
        self.estimator = estimator
        self.engine = engine
        self.race_timeout = race_timeout
        self.db_timeout = db_timeout

    async def __call__(self, state: AnalysisState) -> dict:
        tracker: PipelineTracker = state["tracker"]
        request_id = state["request_id"]
        text = state["ocr_text"]
        started = time.monotonic()

        estimate_task = None
        if self.estimator is not None:
            estimate_task = tracker.spawn(self.estimator.estimate(text, request_id), LLM_SOURCE)

        if self.lookup is None:
            tracker.record(DB_SOURCE, "skipped", started, "nutrition database not configured")
            return {"estimate_task": estimate_task, "errors": [f"{DB_SOURCE}: not configured"]}

        lookup_task = tracker.spawn(self.lookup.lookup(text, request_id), DB_SOURCE)
        done, _ = await asyncio.wait({lookup_task}, timeout=min(self.race_timeout, self.db_timeout))

        if lookup_task not in done:
            lookup_task.cancel()
            tracker.record(DB_SOURCE, "timeout", started, f"lost race after {self.race_timeout}s")
            return {"estimate_task": estimate_task, "errors": [f"{DB_SOURCE}: timeout"]}

        error = lookup_task.exception()
        if error is not None:
            if isinstance(error, NutritionLookupError):
                detail = f"{error.error_code}: {error.message}"
            else:
                logger.error(f"[{request_id}] Unexpected nutrition lookup error: {error!r}")
                detail = str(error)
            tracker.record(DB_SOURCE, "failure", started, detail)
            return {"estimate_task": estimate_task, "errors": [f"{DB_SOURCE}: {detail}"]}

        lookup = lookup_task.result()
        if not lookup.success:
            tracker.record(DB_SOURCE, "failure", started, lookup.error or "no foods matched")
            return {"estimate_task": estimate_task, "errors": [f"{DB_SOURCE}: {lookup.error}"]}

        if estimate_task is not None:
            estimate_task.cancel()

        food_items = extract_food_items(text) or [food.name for food in lookup.foods]
        result = text_result(
            state, self.engine, food_items, lookup.nutrients, source=DB_SOURCE, model=DB_SOURCE
        )
        tracker.record(DB_SOURCE, "success", started, f"{len(lookup.foods)} foods")
        return {"estimate_task": None, "result": result, "resolved_by": DB_SOURCE}


class LLMEstimateNode:
    """Await the LLM estimate started by the lookup node."""

    def __init__(self, engine: ConfidenceEngine, timeout: float = 20.0):
        self.engine = engine
        self.timeout = timeout

    async def __call__(self, state: AnalysisState) -> dict:
        tracker: PipelineTracker = state["tracker"]
        task: asyncio.Task | None = state.get("estimate_task")
        started = time.monotonic()

        if task is None:
            tracker.record(LLM_SOURCE, "skipped", started, "LLM estimator not configured")
            return {"errors": [f"{LLM_SOURCE}: not configured"]}

        try:
            async with asyncio.timeout(self.timeout):
                estimate: NutritionEstimate = await task
        except TimeoutError:
            tracker.record(LLM_SOURCE, "timeout", started, f"no estimate within {self.timeout}s")
            return {"estimate_task": None, "errors": [f"{LLM_SOURCE}: timeout"]}
        except Exception as e:
            logger.error(f"[{state['request_id']}] LLM estimate task failed: {e!r}")
            tracker.record(LLM_SOURCE, "failure", started, str(e))
            return {"estimate_task": None, "errors": [f"{LLM_SOURCE}: {e}"]}

        if not estimate.success:
            tracker.record(LLM_SOURCE, "failure", started, estimate.error)
            return {"estimate_task": None, "errors": [f"{LLM_SOURCE}: {estimate.error}"]}

        food_items = extract_food_items(state["ocr_text"]) or estimate.ingredients
        result = text_result(
            state, self.engine, food_items, estimate.nutrients, source=LLM_SOURCE, model=estimate.model
        )
        tracker.record(LLM_SOURCE, "success", started)
        return {"estimate_task": None, "result": result, "resolved_by": LLM_SOURCE}
