"""Fallback node - the canned result when every source has failed."""

import logging

from snaphealth_api.models.analysis import AnalysisResult, ModelInfo
from snaphealth_api.pipeline.state import AnalysisState
from snaphealth_api.services.normalizer import normalize_nutrients

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"
FALLBACK_DESCRIPTION = "Could not analyze meal"


def create_fallback_result() -> AnalysisResult:
    """
    Deterministic result returned when no source produced a usable analysis.

    Zero-valued core nutrients, fallback and lowConfidence set. The
    persistence gate refuses to save it.
    """
    return AnalysisResult(
        description=FALLBACK_DESCRIPTION,
        nutrients=normalize_nutrients({}),
        feedback=["We couldn't analyze this meal image."],
        suggestions=[
            "Try again with a clear, well-lit photo that shows the whole plate.",
        ],
        low_confidence=True,
        fallback=True,
        source=FALLBACK_SOURCE,
        model_info=ModelInfo(model="none", used_fallback=True),
    )


class FallbackNode:
    """Resolve the request with the best partial result or the canned one."""

    async def __call__(self, state: AnalysisState) -> dict:
        tracker = state["tracker"]
        if tracker.best is not None:
            logger.info(f"[{state['request_id']}] Falling back to best partial result")
            return {"result": tracker.best, "resolved_by": tracker.best.source}

        logger.warning(f"[{state['request_id']}] All sources failed, returning canned fallback")
        return {"result": create_fallback_result(), "resolved_by": FALLBACK_SOURCE}
