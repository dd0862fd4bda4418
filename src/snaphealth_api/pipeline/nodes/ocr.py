"""OCR node - pulls meal text out of the image for the nutrition tiers."""

import asyncio
import logging
import time

from snaphealth_api.pipeline.state import AnalysisState, PipelineTracker
from snaphealth_api.services.ocr import OCRError, OCRService

logger = logging.getLogger(__name__)


class ExtractTextNode:
    """Extract text with the OCR service; empty text ends in the fallback."""

    def __init__(self, service: OCRService | None, timeout: float = 15.0):
        self.service = service
        self.timeout = timeout

    async def __call__(self, state: AnalysisState) -> dict:
        tracker: PipelineTracker = state["tracker"]
        started = time.monotonic()

        if self.service is None:
            tracker.record("ocr", "skipped", started, "OCR service not configured")
            return {"ocr_text": None, "errors": ["ocr: not configured"]}

        try:
            async with asyncio.timeout(self.timeout):
                ocr = await self.service.extract_text(state["image_base64"], state["request_id"])
        except TimeoutError:
            tracker.record("ocr", "timeout", started, f"no response within {self.timeout}s")
            return {"ocr_text": None, "errors": ["ocr: timeout"]}
        except OCRError as e:
            tracker.record("ocr", "failure", started, f"{e.error_code}: {e.message}")
            return {"ocr_text": None, "errors": [f"ocr: {e.message}"]}

        text = ocr.text.strip() if ocr.success else ""
        if not text:
            tracker.record("ocr", "failure", started, ocr.error or "no text found")
            return {"ocr_text": None, "errors": [f"ocr: {ocr.error or 'no text found'}"]}

        tracker.record("ocr", "success", started, f"{len(text)} chars, confidence {ocr.confidence:.2f}")
        return {"ocr_text": text, "ocr_confidence": ocr.confidence}
