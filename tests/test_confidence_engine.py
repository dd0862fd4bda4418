"""Tests for the confidence and validity classifier."""

import pytest

from snaphealth_api.models.analysis import ClassificationReason
from snaphealth_api.services.confidence_engine import ConfidenceEngine
from snaphealth_api.services.normalizer import normalize_analysis


def make_result(confidences: list[float], **extra):
    """Result with one ingredient per confidence value."""
    payload = {
        "description": "test meal",
        "detailedIngredients": [
            {"name": f"item {index}", "confidence": confidence}
            for index, confidence in enumerate(confidences)
        ],
        **extra,
    }
    return normalize_analysis(payload, source="vision")


class TestClassify:
    """Tests for ConfidenceEngine.classify."""

    @pytest.fixture
    def engine(self):
        return ConfidenceEngine()

    def test_confident_result(self, engine, confident_result):
        classification = engine.classify(confident_result)

        assert classification.is_valid is True
        assert classification.is_low_confidence is False
        assert classification.reason == ClassificationReason.OK

    def test_no_ingredients_is_invalid(self, engine):
        classification = engine.classify(make_result([]))

        assert classification.is_valid is False
        assert classification.is_low_confidence is True
        assert classification.reason == ClassificationReason.NO_INGREDIENTS

    def test_all_below_floor_is_invalid(self, engine):
        classification = engine.classify(make_result([1, 1.5, 0]))

        assert classification.is_valid is False
        assert classification.reason == ClassificationReason.ALL_BELOW_FLOOR

    def test_low_mean_confidence(self, engine):
        classification = engine.classify(make_result([3, 4]))

        assert classification.is_valid is True
        assert classification.is_low_confidence is True
        assert classification.reason == ClassificationReason.LOW_MEAN_CONFIDENCE

    def test_majority_low_with_high_mean(self, engine):
        classification = engine.classify(make_result([10, 4.5, 4.5]))

        assert classification.is_low_confidence is True
        assert classification.reason == ClassificationReason.MAJORITY_LOW_CONFIDENCE

    def test_low_overall_confidence(self, engine):
        classification = engine.classify(make_result([9, 9], confidence=3))

        assert classification.reason == ClassificationReason.LOW_OVERALL_CONFIDENCE

    def test_upstream_flag(self, engine):
        classification = engine.classify(make_result([9], lowConfidence=True))

        assert classification.reason == ClassificationReason.UPSTREAM_FLAG

    def test_image_challenges(self, engine):
        classification = engine.classify(make_result([9], imageChallenges=["glare"]))

        assert classification.reason == ClassificationReason.IMAGE_CHALLENGES

    @pytest.mark.parametrize("high", [8, 8.5, 9, 10])
    def test_all_high_confidence_never_low_from_ingredients(self, engine, high):
        classification = engine.classify(make_result([high] * 4))

        assert classification.is_low_confidence is False

    def test_raising_confidence_never_makes_result_low(self, engine):
        """Monotonic: raising any ingredient's confidence cannot flip to low."""
        base = [4, 6, 3, 7]
        before = engine.classify(make_result(base))

        for index in range(len(base)):
            raised = list(base)
            raised[index] = 10
            after = engine.classify(make_result(raised))
            if not before.is_low_confidence:
                assert after.is_low_confidence is False
            assert after.is_valid or not before.is_valid

    def test_apply_sets_flag(self, engine):
        result, classification = engine.apply(make_result([3, 3]))

        assert result.low_confidence is True
        assert classification.is_low_confidence is True


class TestEnrichment:
    """Tests for the enrichment decision and merge."""

    @pytest.fixture
    def engine(self):
        return ConfidenceEngine()

    def test_should_enrich_once(self, engine):
        classification = engine.classify(make_result([3, 4]))

        assert ConfidenceEngine.should_enrich(classification, already_enriched=False) is True
        assert ConfidenceEngine.should_enrich(classification, already_enriched=True) is False

    def test_no_enrichment_for_invalid_or_confident(self, engine, confident_result):
        invalid = engine.classify(make_result([]))
        confident = engine.classify(confident_result)

        assert ConfidenceEngine.should_enrich(invalid, already_enriched=False) is False
        assert ConfidenceEngine.should_enrich(confident, already_enriched=False) is False

    def test_merge_prefers_richer_list_and_max_confidence(self, engine):
        primary = make_result([3, 4], confidence=4)
        enriched = normalize_analysis(
            {
                "description": "enriched meal",
                "detailedIngredients": [
                    {"name": "ITEM 0", "confidence": 2},
                    {"name": "item 1", "confidence": 7},
                    {"name": "sauce", "confidence": 6},
                ],
                "confidence": 6,
            },
            source="vision",
        )

        merged = engine.merge_enriched(primary, enriched)

        assert merged.description == "enriched meal"
        assert [i.name for i in merged.detailed_ingredients] == ["ITEM 0", "item 1", "sauce"]
        assert [i.confidence for i in merged.detailed_ingredients] == [3, 7, 6]
        assert merged.confidence == 6
        assert merged.meta["enriched"] is True

    def test_merge_keeps_primary_when_richer(self, engine):
        primary = make_result([6, 6, 6])
        enriched = make_result([9])

        merged = engine.merge_enriched(primary, enriched)

        assert len(merged.detailed_ingredients) == 3
        # "item 0" appears in both; the higher confidence is kept
        assert merged.detailed_ingredients[0].confidence == 9
        assert merged.detailed_ingredients[0].confidence_emoji == "🟢"
