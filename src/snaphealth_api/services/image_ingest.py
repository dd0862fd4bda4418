"""
Image ingestion.

Normalizes every transport encoding a client may send (upload object,
stream, raw bytes, data URL, bare base64) into one base64 string.
"""

import base64
import binascii
import inspect
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from snaphealth_api.core.exceptions import ImageExtractionError

logger = logging.getLogger(__name__)


DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024

# Magic-byte signatures for MIME sniffing
_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
]


@dataclass
class IngestedImage:
    """An image normalized to bytes plus base64."""

    base64: str
    data: bytes
    mime_type: str
    strategy: str
    size_bytes: int
    quality: str

    @property
    def data_url(self) -> str:
        """Data URL suitable for vision model requests."""
        return f"data:{self.mime_type};base64,{self.base64}"


def sniff_mime_type(data: bytes) -> str:
    """Detect the image type from magic bytes."""
    for signature, mime_type in _SIGNATURES:
        if data.startswith(signature):
            return mime_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:12] in (b"ftypheic", b"ftypheix", b"ftypmif1"):
        return "image/heic"
    return "application/octet-stream"


def assess_image_quality(size_bytes: int) -> str:
    """
    Rough quality estimate from file size.

    Very small files are usually thumbnails; very large ones are often
    unprocessed camera output that vision models downscale heavily.
    """
    size_kb = size_bytes / 1024
    if size_kb < 10:
        return "low"
    if size_kb > 5000:
        return "low"
    if size_kb > 100:
        return "high"
    return "medium"


async def ingest_image(
    source: Any,
    *,
    declared_type: str | None = None,
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> IngestedImage:
    """
    Convert an uploaded image into base64.

    Strategies are tried from most to least specific:
    read() method, stream interface, byte buffer, data URL, raw base64,
    and finally stringification. A strategy that yields zero bytes counts
    as a failure and the next one is tried.

    Args:
        source: Upload object, stream, bytes, data URL or base64 string
        declared_type: Client-declared MIME type (not trusted)
        max_bytes: Upper bound on decoded image size

    Returns:
        IngestedImage with bytes, base64 and sniffed MIME type

    Raises:
        ImageExtractionError: With one reason per failed strategy
    """
    if source is None:
        raise ImageExtractionError("No image uploaded", reasons=["no image provided"])

    if declared_type and not declared_type.startswith("image/"):
        logger.warning(f"Declared content type '{declared_type}' is not an image type, continuing")

    reasons: list[str] = []

    for strategy, extractor in _STRATEGIES:
        try:
            data = await extractor(source)
        except Exception as e:
            reasons.append(f"{strategy}: {e}")
            continue

        if data is None:
            reasons.append(f"{strategy}: not applicable")
            continue
        if not data:
            reasons.append(f"{strategy}: produced zero bytes")
            continue
        if len(data) > max_bytes:
            raise ImageExtractionError(
                f"Image is too large ({len(data)} bytes, limit {max_bytes})",
                reasons=reasons + [f"{strategy}: exceeds size limit"],
            )

        mime_type = sniff_mime_type(data)
        if mime_type == "application/octet-stream":
            logger.warning("Could not identify image type from content, sending as JPEG")
            mime_type = "image/jpeg"

        logger.info(f"Image extracted via '{strategy}' ({len(data)} bytes, {mime_type})")

        return IngestedImage(
            base64=base64.b64encode(data).decode("ascii"),
            data=data,
            mime_type=mime_type,
            strategy=strategy,
            size_bytes=len(data),
            quality=assess_image_quality(len(data)),
        )

    raise ImageExtractionError("Image could not be converted to base64", reasons=reasons)


# =============================================================================
# Strategies (each returns None when it does not apply)
# =============================================================================


async def _from_read_method(source: Any) -> bytes | None:
    read = getattr(source, "read", None)
    if not callable(read):
        return None
    data = read()
    if inspect.isawaitable(data):
        data = await data
    return _as_bytes(data)


async def _from_stream(source: Any) -> bytes | None:
    stream = getattr(source, "stream", None)
    iterable = stream() if callable(stream) else source

    chunks: list[bytes] = []
    if hasattr(iterable, "__aiter__"):
        async for chunk in iterable:
            chunks.append(_as_bytes(chunk) or b"")
        return b"".join(chunks)

    if callable(stream) and hasattr(iterable, "__iter__") and not isinstance(iterable, (str, bytes)):
        for chunk in iterable:
            chunks.append(_as_bytes(chunk) or b"")
        return b"".join(chunks)

    return None


async def _from_buffer(source: Any) -> bytes | None:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    return None


async def _from_data_url(source: Any) -> bytes | None:
    if not isinstance(source, str) or not source.startswith("data:"):
        return None
    header, sep, payload = source.partition(",")
    if not sep:
        raise ValueError("data URL has no payload")
    if ";base64" not in header:
        raise ValueError("data URL is not base64 encoded")
    return _decode_base64(payload)


async def _from_base64(source: Any) -> bytes | None:
    if not isinstance(source, str) or source.startswith("data:"):
        return None
    return _decode_base64(source)


async def _from_string(source: Any) -> bytes | None:
    if isinstance(source, (str, bytes, bytearray, memoryview)):
        return None
    text = str(source).strip()
    if text.startswith("data:"):
        return await _from_data_url(text)
    return _decode_base64(text)


_STRATEGIES = [
    ("read", _from_read_method),
    ("stream", _from_stream),
    ("buffer", _from_buffer),
    ("data_url", _from_data_url),
    ("base64", _from_base64),
    ("stringify", _from_string),
]


def _decode_base64(text: str) -> bytes:
    compact = "".join(text.split())
    compact += "=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def _as_bytes(data: Any) -> bytes | None:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return data.encode("latin-1", errors="ignore")
    raise TypeError(f"read() returned {type(data).__name__}")


# =============================================================================
# Remote images
# =============================================================================



class _ServerError(Exception):
    """5xx answer from the image host; retried like a connection error."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


async def fetch_image(
    url: str,
    client: httpx.AsyncClient,
    *,
    retries: int = 1,
    backoff: float = 0.5,
) -> bytes:
    """
    Download an image by URL.

    Connection errors and 5xx responses are retried up to `retries`
    times with exponential backoff. 4xx responses are not retried.

    Raises:
        ImageExtractionError: If the image cannot be downloaded
    """
    reasons: list[str] = []

    async def get_once() -> bytes:
        label = f"attempt {len(reasons) + 1}"
        try:
            response = await client.get(url, follow_redirects=True)
        except httpx.RequestError as e:
            reasons.append(f"{label}: {e}")
            raise
        if response.status_code >= 500:
            reasons.append(f"{label}: HTTP {response.status_code}")
            raise _ServerError(response.status_code)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageExtractionError(
                f"Image URL returned HTTP {response.status_code}",
                reasons=reasons + [f"{label}: HTTP {response.status_code}"],
            ) from e
        return response.content

    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff, max=10),
        retry=retry_if_exception_type((httpx.RequestError, _ServerError)),
        reraise=True,
    )
    try:
        return await retrying(get_once)
    except (httpx.RequestError, _ServerError) as e:
        logger.warning(f"Image fetch failed after {len(reasons)} attempts: {url}")
        raise ImageExtractionError("Image could not be downloaded", reasons=reasons) from e
