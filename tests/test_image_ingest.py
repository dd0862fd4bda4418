"""Tests for image ingestion."""

import time

import httpx
import pytest

from snaphealth_api.core.exceptions import ImageExtractionError
from snaphealth_api.services.image_ingest import (
    assess_image_quality,
    fetch_image,
    ingest_image,
    sniff_mime_type,
)

from .conftest import TINY_PNG_BASE64, TINY_PNG_BYTES

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class FakeUpload:
    """Upload object with an async read(), like Starlette's UploadFile."""

    def __init__(self, data: bytes):
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeStream:
    """Object exposing only an async chunk stream."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = chunks

    async def stream(self):
        for chunk in self._chunks:
            yield chunk


class Opaque:
    """Object whose string form is a data URL."""

    def __str__(self) -> str:
        return f"data:image/png;base64,{TINY_PNG_BASE64}"


class TestIngestImage:
    """Tests for ingest_image strategy cascade."""

    @pytest.mark.asyncio
    async def test_upload_with_read_method(self):
        image = await ingest_image(FakeUpload(TINY_PNG_BYTES))

        assert image.strategy == "read"
        assert image.data == TINY_PNG_BYTES
        assert image.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_stream(self):
        image = await ingest_image(FakeStream([JPEG_BYTES[:10], JPEG_BYTES[10:]]))

        assert image.strategy == "stream"
        assert image.data == JPEG_BYTES
        assert image.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_raw_bytes(self):
        image = await ingest_image(bytearray(TINY_PNG_BYTES))

        assert image.strategy == "buffer"
        assert image.size_bytes == len(TINY_PNG_BYTES)

    @pytest.mark.asyncio
    async def test_data_url(self):
        image = await ingest_image(f"data:image/png;base64,{TINY_PNG_BASE64}")

        assert image.strategy == "data_url"
        assert image.data == TINY_PNG_BYTES
        assert image.data_url.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_bare_base64(self):
        image = await ingest_image(TINY_PNG_BASE64)

        assert image.strategy == "base64"
        assert image.data == TINY_PNG_BYTES

    @pytest.mark.asyncio
    async def test_stringified_object(self):
        image = await ingest_image(Opaque())

        assert image.strategy == "stringify"
        assert image.data == TINY_PNG_BYTES

    @pytest.mark.asyncio
    async def test_missing_image(self):
        with pytest.raises(ImageExtractionError) as exc_info:
            await ingest_image(None)

        assert exc_info.value.message == "No image uploaded"

    @pytest.mark.asyncio
    async def test_empty_upload_fails_every_strategy(self):
        with pytest.raises(ImageExtractionError) as exc_info:
            await ingest_image(FakeUpload(b""))

        reasons = exc_info.value.reasons
        assert any(reason.startswith("read: produced zero bytes") for reason in reasons)
        assert len(reasons) == 6

    @pytest.mark.asyncio
    async def test_invalid_base64(self):
        with pytest.raises(ImageExtractionError):
            await ingest_image("not an image at all!")

    @pytest.mark.asyncio
    async def test_oversized_image(self):
        with pytest.raises(ImageExtractionError) as exc_info:
            await ingest_image(JPEG_BYTES, max_bytes=10)

        assert "too large" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_image_declared_type_only_warns(self):
        image = await ingest_image(TINY_PNG_BYTES, declared_type="application/octet-stream")

        assert image.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_unknown_bytes_default_to_jpeg(self):
        image = await ingest_image(b"plain bytes that are not an image")

        assert image.mime_type == "image/jpeg"


@pytest.mark.parametrize(
    "data,expected",
    [
        (JPEG_BYTES, "image/jpeg"),
        (TINY_PNG_BYTES, "image/png"),
        (b"GIF89a...", "image/gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"hello", "application/octet-stream"),
    ],
)
def test_sniff_mime_type(data, expected):
    assert sniff_mime_type(data) == expected


@pytest.mark.parametrize(
    "size_bytes,expected",
    [(5 * 1024, "low"), (50 * 1024, "medium"), (500 * 1024, "high"), (6000 * 1024, "low")],
)
def test_assess_image_quality(size_bytes, expected):
    assert assess_image_quality(size_bytes) == expected


class TestFetchImage:
    """Tests for fetch_image retry behavior."""

    @pytest.mark.asyncio
    async def test_retries_server_error_once(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, content=JPEG_BYTES)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            data = await fetch_image("https://img.test/meal.jpg", client, retries=1, backoff=0)

        assert data == JPEG_BYTES
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ImageExtractionError) as exc_info:
                await fetch_image("https://img.test/meal.jpg", client, retries=1, backoff=0)

        assert len(calls) == 2
        assert len(exc_info.value.reasons) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ImageExtractionError):
                await fetch_image("https://img.test/missing.jpg", client, retries=1, backoff=0)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_backs_off_between_attempts(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(time.monotonic())
            return httpx.Response(502)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ImageExtractionError) as exc_info:
                await fetch_image("https://img.test/meal.jpg", client, retries=2, backoff=0.05)

        assert len(calls) == 3
        assert exc_info.value.reasons == [
            "attempt 1: HTTP 502",
            "attempt 2: HTTP 502",
            "attempt 3: HTTP 502",
        ]
        assert calls[1] - calls[0] >= 0.04
        assert calls[2] - calls[1] >= 0.09

    @pytest.mark.asyncio
    async def test_no_retries_configured(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ImageExtractionError):
                await fetch_image("https://img.test/meal.jpg", client, retries=0, backoff=0)

        assert len(calls) == 1
