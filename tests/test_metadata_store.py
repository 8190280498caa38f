"""
Tests for instance metadata stores.
"""

import pytest
from pydantic import SecretStr
from pymongo.errors import PyMongoError

from kesher.config import GatewaySettings, InstanceRecord
from kesher.config.service import (
    InMemoryMetadataStore,
    MetadataStoreError,
    MongoMetadataStore,
)
from kesher.webhooks import Webhook


def gateway_record():
    return InstanceRecord(
        instance_id="support",
        family="gateway",
        gateway=GatewaySettings(instance_id="G1", token=SecretStr("T1")),
        webhooks=[Webhook(url="https://hooks.example/a", events=["message"])],
    )


class FakeDeleteResult:
    def __init__(self, deleted_count):
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._docs:
            raise StopAsyncIteration
        return self._docs.pop(0)


class FakeCollection:
    """In-memory stand-in for a motor collection."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise PyMongoError("mongo down")

    async def update_one(self, query, update, upsert=False):
        self._check()
        doc = {"_id": f"oid-{query['instance_id']}", **update["$set"]}
        self.docs[query["instance_id"]] = doc

    async def find_one(self, query):
        self._check()
        return self.docs.get(query["instance_id"])

    async def delete_one(self, query):
        self._check()
        return FakeDeleteResult(1 if self.docs.pop(query["instance_id"], None) else 0)

    def find(self, query):
        self._check()
        return FakeCursor(self.docs.values())


class TestInMemoryMetadataStore:
    @pytest.mark.asyncio
    async def test_save_get_list_delete(self):
        store = InMemoryMetadataStore()
        record = gateway_record()

        await store.save(record)
        loaded = await store.get("support")

        assert loaded.gateway.token.get_secret_value() == "T1"
        assert loaded.webhooks[0].id == record.webhooks[0].id
        assert [r.instance_id for r in await store.list_all()] == ["support"]
        assert await store.delete("support") is True
        assert await store.get("support") is None


class TestMongoMetadataStore:
    @pytest.fixture
    def collection(self):
        return FakeCollection()

    @pytest.fixture
    def store(self, collection):
        store = MongoMetadataStore("mongodb://unused", "kesher")
        store._db = {"instances": collection}
        return store

    @pytest.mark.asyncio
    async def test_upsert_keyed_by_instance_id(self, store, collection):
        record = gateway_record()

        await store.save(record)
        await store.save(record)

        assert list(collection.docs) == ["support"]
        assert collection.docs["support"]["gateway"]["token"] == "T1"

    @pytest.mark.asyncio
    async def test_get_drops_mongo_id(self, store):
        await store.save(gateway_record())

        loaded = await store.get("support")

        assert loaded.instance_id == "support"
        assert loaded.family == "gateway"

    @pytest.mark.asyncio
    async def test_list_and_delete(self, store):
        await store.save(gateway_record())
        await store.save(InstanceRecord(instance_id="sales"))

        records = await store.list_all()

        assert sorted(r.instance_id for r in records) == ["sales", "support"]
        assert await store.delete("sales") is True
        assert await store.delete("sales") is False

    @pytest.mark.asyncio
    async def test_backend_errors_wrapped(self, store, collection):
        collection.fail = True

        with pytest.raises(MetadataStoreError):
            await store.save(gateway_record())
        with pytest.raises(MetadataStoreError):
            await store.get("support")
