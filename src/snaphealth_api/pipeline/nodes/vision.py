"""Vision nodes - primary analysis and the single enrichment pass."""

import asyncio
import logging
import time

from snaphealth_api.models.analysis import AnalysisResult
from snaphealth_api.pipeline.state import AnalysisState, PipelineTracker
from snaphealth_api.services.confidence_engine import ConfidenceEngine
from snaphealth_api.services.normalizer import normalize_analysis
from snaphealth_api.services.vision import VisionAnalysisError, VisionAnalysisService

logger = logging.getLogger(__name__)

VISION_SOURCE = "vision"


async def _call_vision(
    service: VisionAnalysisService,
    state: AnalysisState,
    timeout: float,
    enrichment: bool,
) -> tuple[AnalysisResult | None, str, str | None]:
    """
    Run one vision call and normalize its payload.

    Returns:
        (result or None, outcome, detail)
    """
    try:
        async with asyncio.timeout(timeout):
            analysis = await service.analyze(
                state["image_base64"],
                state.get("health_goals", []),
                state.get("dietary_preferences", []),
                state["request_id"],
                mime_type=state.get("mime_type", "image/jpeg"),
                enrichment=enrichment,
            )
    except TimeoutError:
        return None, "timeout", f"no response within {timeout}s"
    except VisionAnalysisError as e:
        return None, "failure", f"{e.error_code}: {e.message}"

    if not analysis.success:
        return None, "failure", analysis.error

    result = normalize_analysis(analysis.analysis, source=VISION_SOURCE, model=analysis.model)
    return result, "success", None


class VisionNode:
    """
    Primary source: vision model over the whole image.

    A valid result (confident or not) resolves the request here or in the
    enrichment pass; an invalid result or a failure moves on to OCR.
    """

    def __init__(
        self,
        service: VisionAnalysisService | None,
        engine: ConfidenceEngine,
        timeout: float = 45.0,
    ):
        """
        Initialize vision node.

        Args:
            service: Vision analysis service
            engine: Confidence engine for classification
            timeout: Seconds allowed for the vision call
        """
        self.service = service
        self.engine = engine
        self.timeout = timeout

    async def __call__(self, state: AnalysisState) -> dict:
        """
        Execute the primary vision call.

        Args:
            state: Current graph state

        Returns:
            Dict with primary_result and classification to merge into state
        """
        tracker: PipelineTracker = state["tracker"]
        started = time.monotonic()

        if self.service is None:
            tracker.record(VISION_SOURCE, "skipped", started, "vision service not configured")
            return {"errors": ["vision: not configured"]}

        result, outcome, detail = await _call_vision(self.service, state, self.timeout, False)

        if result is None:
            tracker.record(VISION_SOURCE, outcome, started, detail)
            return {"errors": [f"vision: {detail}"]}

        result, classification = self.engine.apply(result)
        tracker.offer(result, classification)

        if not classification.is_valid:
            outcome = "invalid"
        elif classification.is_low_confidence:
            outcome = "low_confidence"
        tracker.record(VISION_SOURCE, outcome, started, classification.reason.value)

        update: dict = {"primary_result": result, "classification": classification}
        if classification.is_valid:
            update["result"] = result
            update["resolved_by"] = VISION_SOURCE
        return update


class EnrichNode:
    """
    Second, more aggressive vision pass for low-confidence results.

    Runs at most once per request; the graph always ends after it. If the
    pass fails, the primary result stands.
    """

    def __init__(
        self,
        service: VisionAnalysisService,
        engine: ConfidenceEngine,
        timeout: float = 30.0,
    ):
        self.service = service
        self.engine = engine
        self.timeout = timeout

    async def __call__(self, state: AnalysisState) -> dict:
        tracker: PipelineTracker = state["tracker"]
        primary: AnalysisResult = state["primary_result"]
        started = time.monotonic()

        enriched, outcome, detail = await _call_vision(self.service, state, self.timeout, True)

        if enriched is None:
            tracker.record("enrich", outcome, started, detail)
            return {"enriched": True, "errors": [f"enrich: {detail}"]}

        # The enrichment pass is classified on its own before the merge
        enriched, _ = self.engine.apply(enriched)
        merged, classification = self.engine.apply(self.engine.merge_enriched(primary, enriched))
        tracker.offer(merged, classification)
        tracker.record(
            "enrich",
            "low_confidence" if classification.is_low_confidence else "success",
            started,
            classification.reason.value,
        )

        if not classification.is_valid:
            return {"enriched": True}

        return {
            "enriched": True,
            "classification": classification,
            "result": merged,
            "resolved_by": "enrich",
        }
