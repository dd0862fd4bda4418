"""
Base classes and models for vision analysis.

Defines the abstract interface for image-to-analysis providers plus the
standardized response model. Providers return the raw payload; the
normalizer owns turning it into an AnalysisResult.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class VisionAnalysis(BaseModel):
    """Outcome of a single vision call."""

    success: bool = Field(..., description="Whether the provider returned content")
    analysis: Any = Field(None, description="Raw, untrusted payload (string or object)")
    error: str | None = Field(None, description="Error message when unsuccessful")
    model: str = Field("unknown", description="Model that produced the payload")
    processing_time_ms: int = Field(0, ge=0)


class VisionAnalysisError(Exception):
    """Error during vision analysis."""

    def __init__(
        self,
        message: str,
        error_code: str = "VISION_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class VisionAnalysisService(ABC):
    """Abstract base class for vision analysis providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
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
        """
        Analyze a meal image.

        Args:
            image_base64: Base64-encoded image
            health_goals: User health goals
            dietary_preferences: User dietary preferences
            request_id: Request identifier for logging
            mime_type: Image MIME type
            enrichment: Use the more aggressive second-pass settings

        Returns:
            VisionAnalysis with the raw payload

        Raises:
            VisionAnalysisError: If the provider call fails
        """
        ...
