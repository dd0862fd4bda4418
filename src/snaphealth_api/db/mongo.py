"""MongoDB connection management using Motor async driver.

The analysis endpoint works without a database; saving meals and storing
images need one. `connect()` only builds the client, `ping()` decides
whether the server is actually reachable.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class MongoDB:
    """
    Process-wide Motor client.

    `reachable` is set by ping(); dependencies hand out the persistence
    gate and image storage only while it is True.
    """

    client: AsyncIOMotorClient | None = None
    reachable: bool = False
    _db_name: str = "snaphealth"

    @classmethod
    def connect(cls, uri: str, db_name: str = "snaphealth", timeout_ms: int = 3000) -> None:
        """
        Create the client (no network I/O happens here).

        Args:
            uri: MongoDB connection URI
            db_name: Default database
            timeout_ms: Server selection timeout, keeps an absent server from stalling saves
        """
        cls.client = AsyncIOMotorClient(uri, serverSelectionTimeoutMS=timeout_ms)
        cls._db_name = db_name
        cls.reachable = False

    @classmethod
    async def ping(cls) -> bool:
        """Check the server answers and remember the result."""
        if cls.client is None:
            cls.reachable = False
            return False
        try:
            await cls.client.admin.command("ping")
            cls.reachable = True
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            cls.reachable = False
        return cls.reachable

    @classmethod
    async def ensure_indexes(cls) -> None:
        """Index saved meals for the per-user, newest-first listing."""
        await cls.get_database()["meals"].create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)]
        )

    @classmethod
    def close(cls) -> None:
        if cls.client is not None:
            cls.client.close()
        cls.client = None
        cls.reachable = False

    @classmethod
    def get_client(cls) -> AsyncIOMotorClient:
        """
        Get the MongoDB client.

        Raises:
            RuntimeError: If connect() has not been called
        """
        if cls.client is None:
            raise RuntimeError("MongoDB not connected. Call MongoDB.connect() first.")
        return cls.client

    @classmethod
    def get_database(cls, name: str | None = None) -> AsyncIOMotorDatabase:
        return cls.get_client()[name or cls._db_name]

    @classmethod
    def is_connected(cls) -> bool:
        """True once a client exists and the last ping succeeded."""
        return cls.client is not None and cls.reachable
