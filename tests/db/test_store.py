"""Tests for the MongoDB record store adapter, against a mocked motor database."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from splitsync.core.exceptions import Forbidden, NotFound
from splitsync.db.store import MongoRecordStore, Predicate, serialize_document
from splitsync.services.view_store import DerivedViewStore, SliceKind


class FakeChangeStream:
    """Async context manager and iterator standing in for a motor change stream."""

    def __init__(self, events, error=None, hang=True):
        self.events = list(events)
        self.error = error
        # A live stream waits for the next change instead of ending
        self.hang = hang

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.events:
            return self.events.pop(0)
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def mongo_store(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    return MongoRecordStore(db, limit=2, retry_delay=0)


def test_predicates():
    member = Predicate.contains("members", "alice")
    payer = Predicate.equals("paid_by", "alice")

    assert member.to_filter() == {"members": "alice"}
    assert member.matches({"members": ["alice", "bob"]})
    assert not member.matches({"members": "alice"})
    assert payer.matches({"paid_by": "alice"})
    assert payer.describe() == "paid_by eq alice"


def test_serialize_document():
    oid = ObjectId()

    doc = serialize_document({"_id": oid, "name": "Trip"})

    assert doc == {"id": str(oid), "name": "Trip"}


@pytest.mark.asyncio
async def test_get_by_object_id(mongo_store, collection):
    oid = ObjectId()
    collection.find_one = AsyncMock(return_value={"_id": oid, "name": "Trip"})

    doc = await mongo_store.get("groups", str(oid))

    assert doc["id"] == str(oid)
    collection.find_one.assert_awaited_once_with({"_id": {"$in": [str(oid), oid]}})


@pytest.mark.asyncio
async def test_get_by_provider_id(mongo_store, collection):
    collection.find_one = AsyncMock(return_value={"_id": "alice", "display_name": "Alice"})

    doc = await mongo_store.get("users", "alice")

    assert doc == {"id": "alice", "display_name": "Alice"}
    collection.find_one.assert_awaited_once_with({"_id": "alice"})


@pytest.mark.asyncio
async def test_get_missing(mongo_store, collection):
    collection.find_one = AsyncMock(return_value=None)

    with pytest.raises(NotFound) as exc_info:
        await mongo_store.get("users", "ghost")

    assert exc_info.value.document_id == "ghost"


@pytest.mark.asyncio
async def test_create_sets_created_at(mongo_store, collection):
    oid = ObjectId()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=oid))

    created = await mongo_store.create("expenses", {"amount_cents": 100})

    assert created == str(oid)
    inserted = collection.insert_one.await_args.args[0]
    assert inserted["amount_cents"] == 100
    assert inserted["created_at"] is not None


@pytest.mark.asyncio
async def test_delete_missing(mongo_store, collection):
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))

    with pytest.raises(NotFound):
        await mongo_store.delete("expenses", str(ObjectId()))


@pytest.mark.asyncio
async def test_query_warns_at_cap(mongo_store, collection, caplog):
    docs = [{"_id": ObjectId(), "amount_cents": 1}, {"_id": ObjectId(), "amount_cents": 2}]
    cursor = collection.find.return_value.sort.return_value.limit.return_value
    cursor.to_list = AsyncMock(return_value=docs)

    result = await mongo_store.query("expenses", Predicate.contains("participants", "alice"))

    assert [doc["amount_cents"] for doc in result] == [1, 2]
    collection.find.assert_called_once_with({"participants": "alice"})
    assert "hit the cap" in caplog.text


@pytest.mark.asyncio
async def test_delete_by_owner(mongo_store, collection):
    oid = ObjectId()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))

    await mongo_store.delete("expenses", str(oid), owner=Predicate.equals("paid_by", "alice"))

    collection.delete_one.assert_awaited_once_with({"_id": {"$in": [str(oid), oid]}, "paid_by": "alice"})


@pytest.mark.asyncio
async def test_delete_by_someone_else(mongo_store, collection):
    oid = ObjectId()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
    collection.find_one = AsyncMock(return_value={"_id": oid, "paid_by": "alice"})

    with pytest.raises(Forbidden) as exc_info:
        await mongo_store.delete("expenses", str(oid), owner=Predicate.equals("paid_by", "mallory"))

    assert exc_info.value.user_id == "mallory"


async def settle():
    for _ in range(50):
        await asyncio.sleep(0)


async def close_and_wait(subscription):
    subscription.close()
    with pytest.raises(asyncio.CancelledError):
        await subscription.task


@pytest.mark.asyncio
async def test_subscription_requeries_on_every_change(mongo_store, collection):
    collection.watch.return_value = FakeChangeStream([{"operationType": "insert"}])
    mongo_store.query = AsyncMock(side_effect=[[{"id": "e1"}], [{"id": "e1"}, {"id": "e2"}]])
    snapshots = []
    errors = []

    subscription = mongo_store.subscribe("expenses", Predicate.equals("paid_by", "alice"), snapshots.append, errors.append)
    await settle()

    assert snapshots == [[{"id": "e1"}], [{"id": "e1"}, {"id": "e2"}]]
    assert errors == []
    await close_and_wait(subscription)


@pytest.mark.asyncio
async def test_subscription_recovers_after_driver_error(mongo_store, collection, make_expense):
    first = make_expense("e1", 100, "alice", ["alice", "bob"])
    second = make_expense("e2", 40, "alice", ["carol"], minutes=1)
    collection.watch.side_effect = [
        FakeChangeStream([], error=OperationFailure("not authorized"), hang=False),
        FakeChangeStream([]),
    ]
    mongo_store.query = AsyncMock(side_effect=[[first], [second, first]])
    view = DerivedViewStore()
    statuses = []
    view.on_status_change(statuses.append)
    errors = []

    def on_error(error):
        errors.append(error)
        view.mark_stale(SliceKind.PAYER_EXPENSES, None, error)

    subscription = mongo_store.subscribe(
        "expenses",
        Predicate.equals("paid_by", "alice"),
        lambda docs: view.apply_snapshot(SliceKind.PAYER_EXPENSES, None, docs),
        on_error,
    )
    await settle()

    assert len(errors) == 1
    assert isinstance(errors[0].cause, OperationFailure)
    assert [status.paused for status in statuses] == [True, False]
    assert not view.paused
    assert view.balance(None).owed("carol", "alice") == 40
    assert collection.watch.call_count == 2
    await close_and_wait(subscription)


@pytest.mark.asyncio
async def test_ended_stream_is_reported_and_reopened(mongo_store, collection):
    collection.watch.side_effect = [FakeChangeStream([], hang=False), FakeChangeStream([])]
    mongo_store.query = AsyncMock(side_effect=[[], [{"id": "e1"}]])
    snapshots = []
    errors = []

    subscription = mongo_store.subscribe("groups", Predicate.contains("members", "alice"), snapshots.append, errors.append)
    await settle()

    assert snapshots == [[], [{"id": "e1"}]]
    assert len(errors) == 1
    assert errors[0].source == "groups[members contains alice]"
    await close_and_wait(subscription)


def test_backoff_is_capped():
    store = MongoRecordStore(MagicMock(), retry_delay=1.0, retry_max_delay=8.0)

    assert [store.retry_after(failures) for failures in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]


@pytest.mark.asyncio
async def test_closed_subscription_delivers_nothing(mongo_store, collection):
    collection.watch.return_value = FakeChangeStream([{"operationType": "insert"}])
    mongo_store.query = AsyncMock(return_value=[{"id": "e1"}])
    snapshots = []
    errors = []

    subscription = mongo_store.subscribe("expenses", Predicate.equals("paid_by", "alice"), snapshots.append, errors.append)
    subscription.close()
    subscription.close()

    with pytest.raises(asyncio.CancelledError):
        await subscription.task
    assert snapshots == []
    assert errors == []
