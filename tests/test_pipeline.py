"""Tests for the analysis graph and the pipeline wrapper."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage

from snaphealth_api.models.analysis import Nutrient
from snaphealth_api.pipeline import AnalysisPipeline, PipelineTracker, create_fallback_result
from snaphealth_api.pipeline.graph import route_after_vision, route_entry
from snaphealth_api.services.confidence_engine import get_confidence_engine
from snaphealth_api.services.nutrition_lookup import (
    FoodItem,
    LLMNutritionEstimator,
    NutritionEstimate,
    NutritionLookupError,
    NutritionLookupResult,
)
from snaphealth_api.services.ocr import OCRResult
from snaphealth_api.services.vision import VisionAnalysis, VisionAnalysisError

from .conftest import TINY_PNG_BASE64


LOW_PAYLOAD = {
    "description": "Blurry bowl of something",
    "nutrients": {"calories": 300, "protein": 10, "carbs": 40, "fat": 9},
    "detailedIngredients": [
        {"name": "noodles", "confidence": 3},
        {"name": "broth", "confidence": 4},
    ],
    "confidence": 4,
    "feedback": ["Hard to tell."],
    "suggestions": ["Retake the photo."],
}

INVALID_PAYLOAD = {
    "description": "No food visible",
    "nutrients": {"calories": 0},
    "detailedIngredients": [],
    "feedback": ["Nothing to analyze."],
    "suggestions": ["Photograph a meal."],
}


def vision_reply(payload: dict, model: str = "gpt-4o") -> VisionAnalysis:
    return VisionAnalysis(success=True, analysis=json.dumps(payload), model=model)


def lookup_result() -> NutritionLookupResult:
    return NutritionLookupResult(
        success=True,
        nutrients=[
            Nutrient(name="calories", value="520", unit="kcal", is_highlight=True, amount=520),
            Nutrient(name="protein", value="35", unit="g", is_highlight=True, amount=35),
            Nutrient(name="carbs", value="45", unit="g", is_highlight=True, amount=45),
            Nutrient(name="fat", value="20", unit="g", is_highlight=True, amount=20),
        ],
        foods=[FoodItem(name="burger"), FoodItem(name="fries")],
        provider="nutritionix",
    )


def estimate_result() -> NutritionEstimate:
    return NutritionEstimate(
        success=True,
        nutrients=[
            Nutrient(name="calories", value="610", unit="kcal", is_highlight=True, amount=610),
            Nutrient(name="protein", value="28", unit="g", is_highlight=True, amount=28),
            Nutrient(name="carbs", value="60", unit="g", is_highlight=True, amount=60),
            Nutrient(name="fat", value="27", unit="g", is_highlight=True, amount=27),
        ],
        ingredients=["burger", "fries"],
        model="gpt-4o-mini",
    )


async def hang(*args, **kwargs):
    await asyncio.sleep(30)


@pytest.fixture
def vision():
    service = MagicMock()
    service.analyze = AsyncMock()
    return service


@pytest.fixture
def ocr():
    service = MagicMock()
    service.extract_text = AsyncMock(
        return_value=OCRResult(success=True, text="Burger and fries", confidence=0.9)
    )
    return service


@pytest.fixture
def lookup():
    service = MagicMock()
    service.lookup = AsyncMock(return_value=lookup_result())
    return service


@pytest.fixture
def estimator():
    service = MagicMock()
    service.estimate = AsyncMock(return_value=estimate_result())
    return service


async def run(pipeline: AnalysisPipeline):
    return await pipeline.run(TINY_PNG_BASE64, ["weight loss"], [], "req_test")


class TestRouting:
    """Tests for the routing functions."""

    def test_entry(self):
        assert route_entry({"vision_available": True, "ocr_available": True}) == "vision"
        assert route_entry({"vision_available": False, "ocr_available": True}) == "extract_text"
        assert route_entry({"vision_available": False, "ocr_available": False}) == "fallback"

    def test_after_vision_without_result(self):
        assert route_after_vision({"classification": None, "ocr_available": True}) == "extract_text"
        assert route_after_vision({"classification": None, "ocr_available": False}) == "fallback"

    def test_after_vision_low_confidence(self, confident_result):
        engine = get_confidence_engine()
        low = confident_result.model_copy(update={"confidence": 2.0})
        classification = engine.classify(low)

        assert route_after_vision({"classification": classification, "enriched": False}) == "enrich"
        assert route_after_vision({"classification": classification, "enriched": True}) == "done"


class TestAnalysisPipeline:
    """End-to-end scenarios over the compiled graph."""

    @pytest.mark.asyncio
    async def test_confident_vision_result(
        self, settings, vision, ocr, lookup, estimator, confident_payload, confident_result
    ):
        vision.analyze.return_value = vision_reply(confident_payload)
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "vision"
        assert outcome.result.description == confident_result.description
        assert outcome.result.low_confidence is False
        assert outcome.result.fallback is False
        assert vision.analyze.await_count == 1
        ocr.extract_text.assert_not_awaited()
        assert outcome.attempts[0]["source"] == "vision"
        assert outcome.attempts[0]["outcome"] == "success"

    @pytest.mark.asyncio
    async def test_low_confidence_enriches_once(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.return_value = vision_reply(LOW_PAYLOAD)
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert vision.analyze.await_count == 2
        assert vision.analyze.await_args_list[0].kwargs["enrichment"] is False
        assert vision.analyze.await_args_list[1].kwargs["enrichment"] is True
        assert outcome.resolved_by == "enrich"
        assert outcome.result.low_confidence is True
        assert outcome.result.fallback is False
        ocr.extract_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_enrichment_keeps_primary(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = [
            vision_reply(LOW_PAYLOAD),
            VisionAnalysisError("rate limited", error_code="PROVIDER_ERROR"),
        ]
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "vision"
        assert outcome.result.description == "Blurry bowl of something"
        assert outcome.result.low_confidence is True

    @pytest.mark.asyncio
    async def test_vision_timeout_falls_through_to_database(
        self, settings, vision, ocr, lookup, estimator
    ):
        vision.analyze.side_effect = hang
        settings = settings.model_copy(update={"vision_timeout": 0.05})
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "nutritionix"
        assert outcome.result.source == "nutritionix"
        assert outcome.result.fallback is False
        assert outcome.result.model_info.used_fallback is True
        assert [i.name.casefold() for i in outcome.result.detailed_ingredients] == ["burger", "fries"]
        assert outcome.result.nutrient_amount("calories") == 520
        assert outcome.attempts[0]["outcome"] == "timeout"
        assert any("vision" in error for error in outcome.errors)

    @pytest.mark.asyncio
    async def test_slow_database_loses_race(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        lookup.lookup.side_effect = hang
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "llm_nutrition"
        assert outcome.result.nutrient_amount("calories") == 610
        assert outcome.result.fallback is False
        sources = [(a["source"], a["outcome"]) for a in outcome.attempts]
        assert ("nutritionix", "timeout") in sources
        assert ("llm_nutrition", "success") in sources

    @pytest.mark.asyncio
    async def test_database_error_uses_estimate(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        lookup.lookup.side_effect = NutritionLookupError("boom", error_code="PROVIDER_ERROR")
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "llm_nutrition"

    @pytest.mark.asyncio
    async def test_database_win_cancels_estimate(self, settings, vision, ocr, lookup):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        cancelled = asyncio.Event()

        async def slow_estimate(*args, **kwargs):
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        estimator = MagicMock()
        estimator.estimate = slow_estimate
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)
        await asyncio.sleep(0)

        assert outcome.resolved_by == "nutritionix"
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_invalid_vision_without_ocr_is_fallback(self, settings, vision):
        vision.analyze.return_value = vision_reply(INVALID_PAYLOAD)
        pipeline = AnalysisPipeline(settings, vision=vision)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "fallback"
        assert outcome.result == create_fallback_result()

    @pytest.mark.asyncio
    async def test_everything_fails(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        ocr.extract_text.return_value = OCRResult(success=False, error="No text detected")
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.result.fallback is True
        assert outcome.result.source == "fallback"
        assert outcome.result.low_confidence is True
        assert all(n.amount == 0 for n in outcome.result.nutrients)
        lookup.lookup.assert_not_awaited()
        estimator.estimate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_estimate_is_fallback(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        lookup.lookup.return_value = NutritionLookupResult(success=False, error="no match")
        estimator.estimate.return_value = NutritionEstimate(
            success=False, source="llm_nutrition_error", error="unparsable"
        )
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "fallback"
        assert outcome.result.fallback is True

    @pytest.mark.asyncio
    async def test_estimate_task_error_is_recorded(self, settings, vision, ocr, lookup, estimator):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        lookup.lookup.return_value = NutritionLookupResult(success=False, error="no match")
        estimator.estimate.side_effect = RuntimeError("estimator crashed")
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "fallback"
        assert outcome.result.fallback is True
        assert outcome.timed_out is False
        assert ("llm_nutrition", "failure") in [(a["source"], a["outcome"]) for a in outcome.attempts]

    @pytest.mark.asyncio
    async def test_estimate_with_scalar_ingredients_resolves(self, settings, vision, ocr, lookup):
        vision.analyze.side_effect = VisionAnalysisError("down", error_code="CONNECTION_ERROR")
        lookup.lookup.return_value = NutritionLookupResult(success=False, error="no match")
        llm = MagicMock()
        llm.ainvoke = AsyncMock(
            return_value=AIMessage(content=json.dumps({"calories": 610, "protein": 28, "ingredients": 5}))
        )
        estimator = LLMNutritionEstimator(llm, model_name="gpt-4o-mini")
        pipeline = AnalysisPipeline(settings, vision, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "llm_nutrition"
        assert outcome.result.fallback is False

    @pytest.mark.asyncio
    async def test_global_deadline(self, settings, vision, ocr):
        vision.analyze.side_effect = hang
        settings = settings.model_copy(update={"request_timeout": 0.1, "vision_timeout": 30.0})
        pipeline = AnalysisPipeline(settings, vision, ocr)

        started = time.monotonic()
        outcome = await run(pipeline)

        assert time.monotonic() - started < 2.0
        assert outcome.timed_out is True
        assert outcome.result.fallback is True
        assert outcome.diagnostics()["timedOut"] is True

    @pytest.mark.asyncio
    async def test_explicit_timeout_overrides_request_timeout(self, settings, vision, ocr):
        vision.analyze.side_effect = hang
        settings = settings.model_copy(update={"request_timeout": 30.0, "vision_timeout": 30.0})
        pipeline = AnalysisPipeline(settings, vision, ocr)

        started = time.monotonic()
        outcome = await pipeline.run(TINY_PNG_BASE64, [], [], "req_test", timeout=0.1)

        assert time.monotonic() - started < 2.0
        assert outcome.timed_out is True
        assert outcome.result.fallback is True

    @pytest.mark.asyncio
    async def test_ocr_only_configuration(self, settings, ocr, lookup, estimator):
        settings = settings.model_copy(update={"vision_enabled": False})
        pipeline = AnalysisPipeline(settings, None, ocr, lookup, estimator)

        outcome = await run(pipeline)

        assert outcome.resolved_by == "nutritionix"

    @pytest.mark.asyncio
    async def test_nothing_configured(self, settings):
        outcome = await run(AnalysisPipeline(settings))

        assert outcome.resolved_by == "fallback"
        assert outcome.result.fallback is True


class TestPipelineTracker:
    """Tests for best-partial bookkeeping."""

    def test_prefers_confident_results(self, confident_result):
        engine = get_confidence_engine()
        tracker = PipelineTracker(request_id="r")
        low = confident_result.model_copy(update={"confidence": 2.0, "description": "low"})

        tracker.offer(*engine.apply(confident_result))
        tracker.offer(*engine.apply(low))

        assert tracker.best.description == confident_result.description

    def test_ignores_fallback(self):
        engine = get_confidence_engine()
        tracker = PipelineTracker(request_id="r")

        tracker.offer(*engine.apply(create_fallback_result()))

        assert tracker.best is None

    @pytest.mark.asyncio
    async def test_cancel_pending(self):
        tracker = PipelineTracker(request_id="r")
        task = tracker.spawn(asyncio.sleep(30), "sleeper")

        assert tracker.cancel_pending() == 1
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not tracker.pending


@pytest.mark.asyncio
async def test_close_releases_http_clients(settings, vision, ocr, lookup):
    ocr.close = AsyncMock()
    lookup.close = AsyncMock()
    pipeline = AnalysisPipeline(settings, vision, ocr, lookup)

    await pipeline.close()

    ocr.close.assert_awaited_once()
    lookup.close.assert_awaited_once()
