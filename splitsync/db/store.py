"""
Record store adapter - the only way the ledger engine talks to the document store.

Operations:
1. subscribe: full result-set snapshots, pushed again on every change;
   failed streams are reported and reopened with backoff
2. get: single document by id
3. create / delete: single document writes; delete can require an owner

No business logic lives here. Documents come back as plain dicts with the
store id under "id" as a string.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, List, Literal, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, ConfigDict
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from splitsync.core.config import settings
from splitsync.core.exceptions import Forbidden, NotFound, StreamError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[dict]], None]
ErrorCallback = Callable[[StreamError], None]

# Change stream events that can alter a query's result set
_WATCHED_OPERATIONS = ["insert", "update", "replace", "delete"]


class Predicate(BaseModel):
    """Filter of a subscription: exact match, or array membership."""
    field: str
    op: Literal["eq", "contains"]
    value: Any

    model_config = ConfigDict(frozen=True)

    @classmethod
    def equals(cls, field: str, value: Any) -> "Predicate":
        return cls(field=field, op="eq", value=value)

    @classmethod
    def contains(cls, field: str, value: Any) -> "Predicate":
        return cls(field=field, op="contains", value=value)

    def to_filter(self) -> dict:
        # MongoDB equality on an array field already means "array contains"
        return {self.field: self.value}

    def matches(self, doc: dict) -> bool:
        current = doc.get(self.field)
        if self.op == "contains":
            return isinstance(current, (list, tuple, set)) and self.value in current
        return current == self.value

    def describe(self) -> str:
        return f"{self.field} {self.op} {self.value}"


class Subscription:
    """Handle of one open subscription. close() is immediate and idempotent."""

    def __init__(self, collection: str, predicate: Predicate):
        self.collection = collection
        self.predicate = predicate
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def source(self) -> str:
        return f"{self.collection}[{self.predicate.describe()}]"

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close()

    def _on_close(self) -> None:
        pass

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Subscription {self.source} {state}>"


class RecordStore(ABC):
    """Narrow interface over the document store."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        predicate: Predicate,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        """Start pushing full snapshots of the matching documents."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> dict:
        """Fetch one document or raise NotFound."""

    @abstractmethod
    async def create(self, collection: str, fields: dict) -> str:
        """Insert a document and return its assigned id."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str, owner: Optional[Predicate] = None) -> None:
        """
        Delete one document or raise NotFound.

        With an owner predicate the document is only deleted if it matches;
        an existing document that does not match raises Forbidden.
        """


def serialize_document(doc: dict) -> dict:
    """Convert a raw MongoDB document to the adapter's dict shape."""
    result = dict(doc)
    result["id"] = str(result.pop("_id"))
    return result


def _id_filter(document_id: str) -> dict:
    # Users are keyed by the provider's string id, everything else by ObjectId
    if ObjectId.is_valid(document_id):
        return {"_id": {"$in": [document_id, ObjectId(document_id)]}}
    return {"_id": document_id}


class MongoSubscription(Subscription):
    """Subscription backed by a change stream and a background task."""

    def __init__(self, collection: str, predicate: Predicate):
        super().__init__(collection, predicate)
        self.task: Optional[asyncio.Task] = None

    def _on_close(self) -> None:
        # Teardown finishes asynchronously; the closed flag already stops delivery
        if self.task is not None and not self.task.done():
            self.task.cancel()


class MongoRecordStore(RecordStore):
    """RecordStore over MongoDB. Subscriptions need a replica set (change streams)."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        limit: Optional[int] = None,
        retry_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
    ):
        self.db = db
        self.limit = limit or settings.SNAPSHOT_LIMIT
        self.retry_delay = settings.STREAM_RETRY_SECONDS if retry_delay is None else retry_delay
        self.retry_max_delay = settings.STREAM_RETRY_MAX_SECONDS if retry_max_delay is None else retry_max_delay

    def subscribe(self, collection, predicate, on_snapshot, on_error) -> Subscription:
        subscription = MongoSubscription(collection, predicate)
        subscription.task = asyncio.get_running_loop().create_task(
            self._run(subscription, on_snapshot, on_error)
        )
        return subscription

    async def query(self, collection: str, predicate: Predicate) -> List[dict]:
        """Current result set of a predicate, most recent first, capped."""
        cursor = (
            self.db[collection]
            .find(predicate.to_filter())
            .sort("created_at", DESCENDING)
            .limit(self.limit)
        )
        docs = await cursor.to_list(self.limit)
        if len(docs) >= self.limit:
            logger.warning(
                f"Snapshot of {collection}[{predicate.describe()}] hit the cap of "
                f"{self.limit} documents; older records are not visible"
            )
        return [serialize_document(doc) for doc in docs]

    async def _run(self, subscription: MongoSubscription, on_snapshot, on_error) -> None:
        """
        Deliver snapshots until the subscription is closed.

        A failed or ended change stream is reported through on_error, then
        reopened after an exponential backoff. Every reopen starts with a
        fresh query, so the first snapshot after a failure covers whatever
        changed while the stream was down.
        """
        failures = 0

        def deliver(snapshot: List[dict]) -> None:
            nonlocal failures
            failures = 0
            on_snapshot(snapshot)

        while not subscription.closed:
            try:
                await self._stream(subscription, deliver)
                # Stream invalidated (collection dropped or renamed)
                cause: BaseException = RuntimeError("change stream closed")
            except PyMongoError as exc:
                cause = exc
            if subscription.closed:
                return

            on_error(StreamError(subscription.source, cause))
            delay = self.retry_after(failures)
            failures += 1
            logger.warning(f"Reopening {subscription.source} in {delay:.1f}s after: {cause}")
            await asyncio.sleep(delay)

    def retry_after(self, failures: int) -> float:
        """Seconds to wait before reopening a stream that failed this many times in a row."""
        return min(self.retry_delay * 2 ** failures, self.retry_max_delay)

    async def _stream(self, subscription: MongoSubscription, deliver: SnapshotCallback) -> None:
        pipeline = [{"$match": {"operationType": {"$in": _WATCHED_OPERATIONS}}}]
        # Open the stream before the first query so no change falls in between
        async with self.db[subscription.collection].watch(pipeline) as stream:
            snapshot = await self.query(subscription.collection, subscription.predicate)
            if subscription.closed:
                return
            deliver(snapshot)

            async for _change in stream:
                if subscription.closed:
                    return
                snapshot = await self.query(subscription.collection, subscription.predicate)
                if subscription.closed:
                    return
                deliver(snapshot)

    async def get(self, collection: str, document_id: str) -> dict:
        doc = await self.db[collection].find_one(_id_filter(document_id))
        if doc is None:
            raise NotFound(collection, document_id)
        return serialize_document(doc)

    async def create(self, collection: str, fields: dict) -> str:
        doc = dict(fields)
        doc.setdefault("created_at", datetime.now(timezone.utc))
        result = await self.db[collection].insert_one(doc)
        return str(result.inserted_id)

    async def delete(self, collection: str, document_id: str, owner: Optional[Predicate] = None) -> None:
        query = _id_filter(document_id)
        if owner is not None:
            query = {**query, **owner.to_filter()}
        result = await self.db[collection].delete_one(query)
        if result.deleted_count:
            return
        if owner is not None and await self.db[collection].find_one(_id_filter(document_id)) is not None:
            raise Forbidden(collection, document_id, owner.value)
        raise NotFound(collection, document_id)
