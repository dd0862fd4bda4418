"""
Base classes and models for OCR text extraction.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class OCRResult(BaseModel):
    """Text extracted from an image."""

    success: bool = Field(..., description="Whether usable text was extracted")
    text: str = Field("", description="Extracted text")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Mean recognition confidence")
    error: str | None = None
    processing_time_ms: int = Field(0, ge=0)


class OCRError(Exception):
    """Error during OCR."""

    def __init__(
        self,
        message: str,
        error_code: str = "OCR_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class OCRService(ABC):
    """Abstract base class for OCR providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def extract_text(self, image_base64: str, request_id: str) -> OCRResult:
        """
        Extract text from an image.

        Args:
            image_base64: Base64-encoded image
            request_id: Request identifier for logging

        Returns:
            OCRResult with text and confidence

        Raises:
            OCRError: If the provider call fails
        """
        ...

    async def close(self) -> None:
        """Release provider resources."""
        return None
