"""Tests for GridFS image storage with a mocked bucket."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from snaphealth_api.services.storage import ImageStorageError, ImageStorageService

from .conftest import TINY_PNG_BASE64, TINY_PNG_BYTES

FILE_ID = ObjectId("65f1c2a4e4b0a1b2c3d4e5f6")


@pytest.fixture
def service():
    storage = ImageStorageService(MagicMock(), timeout=0.1)
    storage._bucket = MagicMock()
    storage._bucket.upload_from_stream = AsyncMock(return_value=FILE_ID)
    return storage


class TestImageStorageService:
    """Tests for ImageStorageService."""

    @pytest.mark.asyncio
    async def test_upload(self, service):
        uri = await service.upload(TINY_PNG_BASE64, "user_1", "req_1", content_type="image/png")

        assert uri == f"gridfs://meal_images/{FILE_ID}"
        args = service._bucket.upload_from_stream.await_args
        assert args.args[0] == "user_1_req_1"
        assert args.args[1] == TINY_PNG_BYTES
        assert args.kwargs["metadata"]["content_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_upload_failure_returns_none(self, service):
        service._bucket.upload_from_stream.side_effect = RuntimeError("disk full")

        assert await service.upload(TINY_PNG_BASE64, "user_1", "req_1") is None

    @pytest.mark.asyncio
    async def test_upload_timeout_returns_none(self, service):
        async def slow(*args, **kwargs):
            await asyncio.sleep(5)

        service._bucket.upload_from_stream.side_effect = slow

        assert await service.upload(TINY_PNG_BASE64, "user_1", "req_1") is None

    @pytest.mark.asyncio
    async def test_download(self, service):
        grid_out = MagicMock()
        grid_out.read = AsyncMock(return_value=TINY_PNG_BYTES)
        service._bucket.open_download_stream = AsyncMock(return_value=grid_out)

        data = await service.download_by_uri(f"gridfs://meal_images/{FILE_ID}")

        assert data == TINY_PNG_BYTES
        service._bucket.open_download_stream.assert_awaited_once_with(FILE_ID)

    @pytest.mark.asyncio
    async def test_download_rejects_foreign_bucket(self, service):
        with pytest.raises(ImageStorageError):
            await service.download_by_uri(f"gridfs://other/{FILE_ID}")

    @pytest.mark.asyncio
    async def test_download_rejects_bad_id(self, service):
        service._bucket.open_download_stream = AsyncMock()

        with pytest.raises(ImageStorageError):
            await service.download_by_uri("gridfs://meal_images/not-an-id")

    def test_parse_storage_uri(self):
        assert ImageStorageService.parse_storage_uri("gridfs://meal_images/abc") == ("meal_images", "abc")
        assert ImageStorageService.parse_storage_uri("https://example.com/a.png") is None
        assert ImageStorageService.parse_storage_uri("gridfs://meal_images/") is None
