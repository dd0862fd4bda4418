"""GridFS storage for meal images.

Uploaded meal photos are stored in a GridFS bucket and referenced from
saved meals by a gridfs:// URI.
"""

import asyncio
import base64
import logging
from datetime import UTC, datetime

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

logger = logging.getLogger(__name__)

# Default bucket name for meal images
GRIDFS_BUCKET_NAME = "meal_images"


class ImageStorageError(Exception):
    """Exception raised for image storage operations."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ImageStorageService:
    """
    Service for storing meal images in MongoDB GridFS.

    upload() never raises: a failed or slow upload returns None so the
    analysis response is not held up by storage.

    Usage:
        service = ImageStorageService(db)
        uri = await service.upload(image_b64, "user_1", "req_1")
        data = await service.download_by_uri(uri)
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bucket_name: str = GRIDFS_BUCKET_NAME,
        timeout: float = 10.0,
    ):
        """
        Initialize image storage service.

        Args:
            db: Motor database instance
            bucket_name: Name of the GridFS bucket
            timeout: Upload timeout in seconds
        """
        self._db = db
        self._bucket_name = bucket_name
        self._bucket: AsyncIOMotorGridFSBucket | None = None
        self.timeout = timeout

    @property
    def bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create the GridFS bucket (lazy initialization)."""
        if self._bucket is None:
            self._bucket = AsyncIOMotorGridFSBucket(
                self._db,
                bucket_name=self._bucket_name,
            )
        return self._bucket

    def generate_storage_uri(self, file_id: ObjectId | str) -> str:
        """
        Generate a storage URI for a GridFS file.

        Returns:
            URI in format: gridfs://bucket_name/{file_id}
        """
        return f"gridfs://{self._bucket_name}/{str(file_id)}"

    @staticmethod
    def parse_storage_uri(uri: str) -> tuple[str, str] | None:
        """
        Parse a GridFS storage URI.

        Returns:
            Tuple of (bucket_name, file_id) or None if invalid
        """
        if not uri.startswith("gridfs://"):
            return None

        parts = uri[9:].split("/", 1)
        if len(parts) != 2 or not parts[1]:
            return None

        return parts[0], parts[1]

    async def upload(
        self,
        image_base64: str,
        user_id: str,
        request_id: str,
        content_type: str = "image/jpeg",
    ) -> str | None:
        """
        Upload a meal image.

        Args:
            image_base64: Base64-encoded image
            user_id: Owner of the image
            request_id: Analysis request ID
            content_type: Image MIME type

        Returns:
            GridFS storage URI, or None if the upload failed or timed out
        """
        try:
            data = base64.b64decode(image_base64)
            metadata = {
                "user_id": user_id,
                "request_id": request_id,
                "content_type": content_type,
                "uploaded_at": datetime.now(UTC),
            }

            async with asyncio.timeout(self.timeout):
                file_id = await self.bucket.upload_from_stream(
                    f"{user_id}_{request_id}",
                    data,
                    metadata=metadata,
                )

            storage_uri = self.generate_storage_uri(file_id)
            logger.info(f"[{request_id}] Uploaded meal image: {len(data)} bytes -> {storage_uri}")
            return storage_uri

        except TimeoutError:
            logger.warning(f"[{request_id}] Image upload timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.error(f"[{request_id}] Image upload failed: {e}")
            return None

    async def download_by_uri(self, uri: str) -> bytes:
        """
        Download an image by its storage URI.

        Raises:
            ImageStorageError: If the URI is invalid or the file is missing
        """
        parsed = self.parse_storage_uri(uri)
        if parsed is None or parsed[0] != self._bucket_name:
            raise ImageStorageError(f"Invalid storage URI: {uri}", details={"uri": uri})

        try:
            grid_out = await self.bucket.open_download_stream(ObjectId(parsed[1]))
            return await grid_out.read()
        except InvalidId as e:
            raise ImageStorageError(f"Invalid file id in URI: {uri}", details={"uri": uri}) from e
        except Exception as e:
            logger.error(f"GridFS download failed for {uri}: {e}")
            raise ImageStorageError(
                message=f"Failed to download image: {e}",
                details={"uri": uri},
            ) from e
