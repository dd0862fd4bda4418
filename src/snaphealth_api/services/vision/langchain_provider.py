"""
Vision analysis through a LangChain chat model.

Works with any vision-capable chat model (GPT-4o, Gemini) by sending the
image as a data-URL content part.
"""

import logging
import time

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .base import VisionAnalysis, VisionAnalysisError, VisionAnalysisService

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert nutritionist analyzing food images.
You have deep knowledge of nutrition, dietary patterns, food ingredients, and their impact on various health goals.

The user's health goals are: "{goals}".
The user's dietary preferences are: "{preferences}".

{goal_guidance}

Carefully analyze the image of food and provide detailed nutritional insights structured as valid JSON."""


USER_PROMPT = """Analyze this food image with respect to my health goals.
Return a JSON object with these fields:
- description: Clear description of the visible food items
- nutrients: Array of {name, value, unit} with at least calories (kcal), protein (g), carbs (g), fat (g); add fiber, sugar, sodium (mg) when you can estimate them
- detailedIngredients: Array of {name, category, confidence} where confidence is 1-10
- confidence: 1-10 score of your overall confidence in this analysis
- goalImpactScore: 1-10 score of how well this meal supports the health goals
- goalName: Short name for the main health goal
- feedback: Array of specific feedback points
- suggestions: Array of actionable suggestions
- imageChallenges: Array of any issues with the image (glare, blur, partial plate, ...)

If no food is visible, return an empty detailedIngredients array and say so in the description.
For partial or unclear images, provide your best estimate and indicate lower confidence.
IMPORTANT: Return ONLY valid JSON with no surrounding text."""


ENRICHMENT_ADDENDUM = """
A previous pass over this image was not confident. Look again more carefully:
zoom in on every region of the plate, consider garnishes, sauces, drinks and
partially hidden items, and name each ingredient you can reasonably infer."""


GOAL_GUIDANCE = {
    "sleep": (
        "Focus on nutrients that affect sleep quality: tryptophan, magnesium, "
        "caffeine, sugar and heavy late-evening meals."
    ),
    "weight": (
        "Focus on calorie density, portion size, protein and fiber content "
        "and how filling the meal is."
    ),
    "muscle": (
        "Focus on protein quantity and quality, leucine-rich foods and "
        "carbohydrates for recovery."
    ),
    "blood sugar": (
        "Focus on carbohydrate load, added sugars, fiber and glycemic impact."
    ),
}

GENERAL_GUIDANCE = "Focus on overall nutritional balance, whole foods and micronutrient variety."


def goal_guidance(health_goals: list[str]) -> str:
    """Pick goal-specific guidance for the system prompt."""
    joined = " ".join(health_goals).lower()
    if "diabetes" in joined:
        joined += " blood sugar"
    if "lose" in joined or "loss" in joined:
        joined += " weight"
    if "strength" in joined:
        joined += " muscle"

    guidance = [text for keyword, text in GOAL_GUIDANCE.items() if keyword in joined]
    return "\n".join(guidance) if guidance else GENERAL_GUIDANCE


class LangChainVisionAnalyzer(VisionAnalysisService):
    """
    Vision analysis using a LangChain chat model.

    Two models are held: the primary one and a higher-temperature one for
    the enrichment pass, which also requests high image detail.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        enrichment_llm: BaseChatModel | None = None,
        model_name: str = "unknown",
    ):
        """
        Initialize the analyzer.

        Args:
            llm: Vision-capable chat model for the primary pass
            enrichment_llm: Model for the enrichment pass (defaults to llm)
            model_name: Model identifier reported in results
        """
        self.llm = llm
        self.enrichment_llm = enrichment_llm or llm
        self.model_name = model_name

    @property
    def provider_name(self) -> str:
        return f"langchain/{self.model_name}"

    async def analyze(
        self,
        image_base64: str,
        health_goals: list[str],
        dietary_preferences: list[str],
        request_id: str,
        *,
        mime_type: str = "image/jpeg",
        enrichment: bool = False,
    ) -> VisionAnalysis:
        """Send the image to the chat model and return its raw reply."""
        start_time = time.time()

        system_content = SYSTEM_PROMPT.format(
            goals=", ".join(health_goals) or "general health",
            preferences=", ".join(dietary_preferences) or "none",
            goal_guidance=goal_guidance(health_goals),
        )
        user_text = USER_PROMPT + (ENRICHMENT_ADDENDUM if enrichment else "")

        messages = [
            SystemMessage(content=system_content),
            HumanMessage(
                content=[
                    {"type": "text", "text": user_text},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{mime_type};base64,{image_base64}",
                            "detail": "high" if enrichment else "auto",
                        },
                    },
                ]
            ),
        ]

        llm = self.enrichment_llm if enrichment else self.llm
        pass_name = "enrichment" if enrichment else "primary"

        logger.info(f"[{request_id}] Sending {pass_name} vision request ({self.model_name})")

        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            logger.exception(f"[{request_id}] Vision model call failed")
            raise VisionAnalysisError(
                message=f"Vision model call failed: {e}",
                error_code="PROVIDER_ERROR",
                provider=self.provider_name,
            ) from e

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )

        processing_time = int((time.time() - start_time) * 1000)

        if not content or not str(content).strip():
            return VisionAnalysis(
                success=False,
                error="Vision model returned an empty response",
                model=self.model_name,
                processing_time_ms=processing_time,
            )

        logger.debug(f"[{request_id}] Raw vision response: {str(content)[:500]}...")

        return VisionAnalysis(
            success=True,
            analysis=content,
            model=self.model_name,
            processing_time_ms=processing_time,
        )
