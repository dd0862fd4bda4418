"""LangGraph state definitions for the analysis pipeline."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Coroutine, TypedDict
from operator import add

from snaphealth_api.models.analysis import AnalysisResult, Classification

logger = logging.getLogger(__name__)


@dataclass
class Attempt:
    """One source attempt, reported in response diagnostics."""

    source: str
    outcome: str  # success, low_confidence, invalid, failure, timeout, skipped
    elapsed_ms: int
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "source": self.source,
            "outcome": self.outcome,
            "elapsedMs": self.elapsed_ms,
        }
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class PipelineTracker:
    """
    Per-request bookkeeping that survives a global timeout.

    The graph state is lost when ainvoke() is cancelled, so anything the
    caller needs afterwards (best partial result, attempt log, tasks to
    cancel) lives here instead.
    """

    request_id: str
    best: AnalysisResult | None = None
    best_rank: tuple[bool, bool] | None = None
    attempts: list[Attempt] = field(default_factory=list)
    pending: set[asyncio.Task] = field(default_factory=set)

    def record(
        self,
        source: str,
        outcome: str,
        started: float,
        detail: str | None = None,
    ) -> None:
        """Log an attempt that began at `started` (time.monotonic())."""
        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.attempts.append(Attempt(source, outcome, elapsed_ms, detail))
        logger.info(
            f"[{self.request_id}] {source}: {outcome} in {elapsed_ms}ms"
            + (f" ({detail})" if detail else ""),
            extra={"request_id": self.request_id, "source": source, "elapsed_ms": elapsed_ms},
        )

    def offer(self, result: AnalysisResult, classification: Classification) -> None:
        """Keep `result` as the best partial if it beats the current one."""
        if not classification.is_valid or result.fallback:
            return
        rank = (classification.is_valid, not classification.is_low_confidence)
        if self.best_rank is None or rank >= self.best_rank:
            self.best = result
            self.best_rank = rank

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Start a background task that is cancelled when the request ends."""
        task = asyncio.create_task(coro, name=f"{self.request_id}:{name}")
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    def cancel_pending(self) -> int:
        """Cancel every unfinished task and return how many were cancelled."""
        cancelled = 0
        for task in list(self.pending):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug(f"[{self.request_id}] Cancelled {cancelled} pending task(s)")
        return cancelled


class AnalysisState(TypedDict, total=False):
    """
    State that flows through the analysis graph.

    Nodes return partial dicts that LangGraph merges into this state.
    """

    # Input
    request_id: str
    image_base64: str
    mime_type: str
    health_goals: list[str]
    dietary_preferences: list[str]

    # Which sources this run may use
    vision_available: bool
    ocr_available: bool

    # Per-request bookkeeping
    # Note: Using Any to avoid LangGraph runtime type resolution issues
    tracker: Any  # PipelineTracker

    # Vision output
    primary_result: AnalysisResult | None
    classification: Classification | None
    enriched: bool

    # OCR output
    ocr_text: str | None
    ocr_confidence: float

    # Nutrition race
    estimate_task: Any  # asyncio.Task[NutritionEstimate] | None

    # Final output
    result: AnalysisResult | None
    resolved_by: str | None  # vision, enrich, nutritionix, llm_nutrition, fallback
    errors: Annotated[list[str], add]


def create_initial_state(
    request_id: str,
    image_base64: str,
    mime_type: str,
    health_goals: list[str],
    dietary_preferences: list[str],
    tracker: PipelineTracker,
    vision_available: bool = True,
    ocr_available: bool = True,
) -> AnalysisState:
    """
    Create initial state for graph execution.

    Args:
        request_id: Analysis request ID
        image_base64: Base64-encoded image
        mime_type: Image MIME type
        health_goals: User health goals
        dietary_preferences: User dietary preferences
        tracker: Per-request tracker
        vision_available: Vision service configured and enabled
        ocr_available: OCR service configured and enabled

    Returns:
        Initial AnalysisState
    """
    return AnalysisState(
        request_id=request_id,
        image_base64=image_base64,
        mime_type=mime_type,
        health_goals=health_goals,
        dietary_preferences=dietary_preferences,
        vision_available=vision_available,
        ocr_available=ocr_available,
        tracker=tracker,
        primary_result=None,
        classification=None,
        enriched=False,
        ocr_text=None,
        ocr_confidence=0.0,
        estimate_task=None,
        result=None,
        resolved_by=None,
        errors=[],
    )
