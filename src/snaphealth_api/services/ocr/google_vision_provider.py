"""
Google Cloud Vision provider for OCR.

Calls the images:annotate REST endpoint with DOCUMENT_TEXT_DETECTION.
API Documentation: https://cloud.google.com/vision/docs/ocr
"""

import logging
import time

import httpx

from .base import OCRError, OCRResult, OCRService

logger = logging.getLogger(__name__)


# Reported when the service returns text without page confidences
DEFAULT_CONFIDENCE = 0.85

# Below the threshold, text longer than this is still accepted
MIN_LOW_CONFIDENCE_TEXT_LENGTH = 10


class GoogleVisionOCR(OCRService):
    """
    OCR using the Google Cloud Vision REST API.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://vision.googleapis.com/v1",
        confidence_threshold: float = 0.7,
        timeout: float = 15.0,
    ):
        """
        Initialize Google Vision provider.

        Args:
            api_key: Google Cloud API key with Vision enabled
            base_url: API base URL
            confidence_threshold: Minimum confidence for short text
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.confidence_threshold = confidence_threshold
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "google_vision"

    async def extract_text(self, image_base64: str, request_id: str) -> OCRResult:
        """Run document text detection on the image."""
        start_time = time.time()

        try:
            logger.info(f"[{request_id}] Sending OCR request to Google Vision")

            response = await self._client.post(
                f"{self.base_url}/images:annotate",
                params={"key": self.api_key},
                json={
                    "requests": [
                        {
                            "image": {"content": image_base64},
                            "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
                        }
                    ]
                },
            )

            if response.status_code != 200:
                raise OCRError(
                    message=f"Google Vision API error: {response.status_code}",
                    error_code="PROVIDER_ERROR",
                    provider=self.provider_name,
                    details={"status_code": response.status_code, "body": response.text[:500]},
                )

            responses = response.json().get("responses") or [{}]
            annotation = responses[0]

            if "error" in annotation:
                raise OCRError(
                    message=f"Google Vision error: {annotation['error'].get('message', 'unknown')}",
                    error_code="PROVIDER_ERROR",
                    provider=self.provider_name,
                    details=annotation["error"],
                )

            full_text = annotation.get("fullTextAnnotation") or {}
            text = (full_text.get("text") or "").strip()
            confidence = self._mean_page_confidence(full_text) if text else 0.0
            processing_time = int((time.time() - start_time) * 1000)

            if not text:
                return OCRResult(
                    success=False,
                    error="No text detected",
                    processing_time_ms=processing_time,
                )

            if confidence < self.confidence_threshold:
                if len(text) <= MIN_LOW_CONFIDENCE_TEXT_LENGTH:
                    logger.info(
                        f"[{request_id}] OCR confidence {confidence:.2f} too low for short text"
                    )
                    return OCRResult(
                        success=False,
                        text=text,
                        confidence=confidence,
                        error="OCR confidence below threshold",
                        processing_time_ms=processing_time,
                    )
                logger.info(
                    f"[{request_id}] OCR confidence {confidence:.2f} below threshold, "
                    f"accepting {len(text)} characters"
                )

            return OCRResult(
                success=True,
                text=text,
                confidence=confidence,
                processing_time_ms=processing_time,
            )

        except httpx.RequestError as e:
            raise OCRError(
                message=f"Failed to connect to Google Vision: {e}",
                error_code="CONNECTION_ERROR",
                provider=self.provider_name,
            ) from e
        except OCRError:
            raise
        except Exception as e:
            logger.exception("Unexpected error in OCR")
            raise OCRError(
                message=f"Unexpected error: {e}",
                error_code="UNEXPECTED_ERROR",
                provider=self.provider_name,
            ) from e

    @staticmethod
    def _mean_page_confidence(full_text: dict) -> float:
        scores = [
            page["confidence"]
            for page in full_text.get("pages", [])
            if isinstance(page.get("confidence"), (int, float))
        ]
        if not scores:
            return DEFAULT_CONFIDENCE
        return max(0.0, min(1.0, sum(scores) / len(scores)))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
