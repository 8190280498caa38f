"""
Instance Metadata Store for Kesher.

Persists instance records (family, gateway addressing, webhook
subscriptions) so instances and webhook ids survive process restarts.

Backends:
- InMemoryMetadataStore: tests and single-process runs
- MongoMetadataStore: MongoDB via motor ('instances' collection)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from .schemas import InstanceRecord

logger = logging.getLogger(__name__)


class MetadataStoreError(Exception):
    """Raised when the metadata backend fails. The registry logs and continues."""


@runtime_checkable
class MetadataStore(Protocol):
    async def save(self, record: InstanceRecord) -> None: ...

    async def get(self, instance_id: str) -> InstanceRecord | None: ...

    async def delete(self, instance_id: str) -> bool: ...

    async def list_all(self) -> list[InstanceRecord]: ...

    async def close(self) -> None: ...


class InMemoryMetadataStore:
    """
    In-memory metadata store.

    Records are kept as documents, the same shape MongoDB stores.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def save(self, record: InstanceRecord) -> None:
        record.updated_at = datetime.now(UTC)
        self._documents[record.instance_id] = record.to_document()

    async def get(self, instance_id: str) -> InstanceRecord | None:
        doc = self._documents.get(instance_id)
        return InstanceRecord.from_document(doc) if doc is not None else None

    async def delete(self, instance_id: str) -> bool:
        return self._documents.pop(instance_id, None) is not None

    async def list_all(self) -> list[InstanceRecord]:
        return [InstanceRecord.from_document(doc) for doc in self._documents.values()]

    async def close(self) -> None:
        pass


class MongoMetadataStore:
    """
    MongoDB metadata store.

    Example:
        store = MongoMetadataStore("mongodb://localhost:27017", "kesher")
        await store.save(record)
        records = await store.list_all()
    """

    def __init__(
        self,
        mongodb_url: str,
        database_name: str = "kesher",
        collection_name: str = "instances",
    ):
        """
        Initialize metadata store.

        Args:
            mongodb_url: MongoDB connection URL
            database_name: Database name
            collection_name: Collection holding instance records
        """
        self._mongodb_url = mongodb_url
        self._database_name = database_name
        self._collection_name = collection_name
        self._client = None
        self._db = None

    async def connect(self) -> None:
        """Connect to MongoDB."""
        try:
            from motor.motor_asyncio import AsyncIOMotorClient

            self._client = AsyncIOMotorClient(self._mongodb_url)
            self._db = self._client[self._database_name]
            logger.info(f"[metadata:mongodb] Connected to database: {self._database_name}")
        except ImportError:
            raise ImportError(
                "motor package is required for MongoDB. Install with: pip install motor"
            )

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None

    async def _collection(self) -> Any:
        if self._db is None:
            await self.connect()
        return self._db[self._collection_name]

    async def save(self, record: InstanceRecord) -> None:
        from pymongo.errors import PyMongoError

        collection = await self._collection()
        record.updated_at = datetime.now(UTC)
        try:
            await collection.update_one(
                {"instance_id": record.instance_id},
                {"$set": record.to_document()},
                upsert=True,
            )
        except PyMongoError as e:
            raise MetadataStoreError(f"Save failed for {record.instance_id}: {e}") from e

    async def get(self, instance_id: str) -> InstanceRecord | None:
        from pymongo.errors import PyMongoError

        collection = await self._collection()
        try:
            doc = await collection.find_one({"instance_id": instance_id})
        except PyMongoError as e:
            raise MetadataStoreError(f"Read failed for {instance_id}: {e}") from e
        return InstanceRecord.from_document(doc) if doc is not None else None

    async def delete(self, instance_id: str) -> bool:
        from pymongo.errors import PyMongoError

        collection = await self._collection()
        try:
            result = await collection.delete_one({"instance_id": instance_id})
        except PyMongoError as e:
            raise MetadataStoreError(f"Delete failed for {instance_id}: {e}") from e
        return result.deleted_count > 0

    async def list_all(self) -> list[InstanceRecord]:
        from pymongo.errors import PyMongoError

        collection = await self._collection()
        records = []
        try:
            async for doc in collection.find({}):
                records.append(InstanceRecord.from_document(doc))
        except PyMongoError as e:
            raise MetadataStoreError(f"Listing failed: {e}") from e
        return records
