import asyncio
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from splitsync.core.exceptions import Forbidden, NotFound, StreamError
from splitsync.db.store import Predicate, RecordStore, Subscription
from splitsync.models.expense import ExpenseRecord, SettlementRecord

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeSubscription(Subscription):
    """Subscription whose snapshots and errors are pushed by hand."""

    def __init__(self, collection, predicate, on_snapshot, on_error):
        super().__init__(collection, predicate)
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.close_calls = 0

    def _on_close(self):
        self.close_calls += 1

    def push(self, docs: List[dict]):
        # Delivers even when closed, like a teardown racing a late event
        self.on_snapshot([dict(doc) for doc in docs])

    def fail(self, cause: Exception):
        self.on_error(StreamError(self.source, cause))


class FakeRecordStore(RecordStore):
    """In-memory RecordStore. Writes re-publish snapshots to open subscriptions."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self.subscriptions: List[FakeSubscription] = []
        self.get_calls = Counter()
        self.gate: Optional[asyncio.Event] = None
        self._next_id = 0

    @property
    def open_subscriptions(self) -> List[FakeSubscription]:
        return [sub for sub in self.subscriptions if not sub.closed]

    def find(self, collection: str, field: str, value) -> FakeSubscription:
        """The open subscription on collection filtered by field == / contains value."""
        for sub in self.open_subscriptions:
            if sub.collection == collection and sub.predicate.field == field and sub.predicate.value == value:
                return sub
        raise LookupError(f"No open subscription on {collection}.{field}={value}")

    def put(self, collection: str, doc: dict) -> dict:
        self.collections[collection][doc["id"]] = dict(doc)
        return doc

    def matching(self, collection: str, predicate: Predicate) -> List[dict]:
        return [dict(doc) for doc in self.collections[collection].values() if predicate.matches(doc)]

    def publish(self):
        for sub in self.open_subscriptions:
            sub.push(self.matching(sub.collection, sub.predicate))

    def subscribe(self, collection, predicate, on_snapshot, on_error):
        sub = FakeSubscription(collection, predicate, on_snapshot, on_error)
        self.subscriptions.append(sub)
        return sub

    async def get(self, collection, document_id):
        self.get_calls[(collection, document_id)] += 1
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        doc = self.collections[collection].get(document_id)
        if doc is None:
            raise NotFound(collection, document_id)
        return dict(doc)

    async def create(self, collection, fields):
        self._next_id += 1
        doc_id = f"{collection}-{self._next_id}"
        doc = dict(fields)
        doc["id"] = doc_id
        doc.setdefault("created_at", BASE_TIME)
        self.collections[collection][doc_id] = doc
        self.publish()
        return doc_id

    async def delete(self, collection, document_id, owner=None):
        doc = self.collections[collection].get(document_id)
        if doc is None:
            raise NotFound(collection, document_id)
        if owner is not None and not owner.matches(doc):
            raise Forbidden(collection, document_id, owner.value)
        del self.collections[collection][document_id]
        self.publish()


def expense(record_id, amount_cents, paid_by, participants, group_id=None, minutes=0, **extra):
    """Stored expense document."""
    return {
        "id": record_id,
        "kind": "expense",
        "description": extra.pop("description", "Dinner"),
        "amount_cents": amount_cents,
        "paid_by": paid_by,
        "participants": list(participants),
        "group_id": group_id,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
        **extra,
    }


def settlement(record_id, amount_cents, debtor, creditor, group_id=None, minutes=0):
    """Stored settlement document."""
    return {
        "id": record_id,
        "kind": "settlement",
        "description": "Settlement",
        "amount_cents": amount_cents,
        "paid_by": debtor,
        "participants": [creditor],
        "group_id": group_id,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }


def group(group_id, members, created_by=None, name="Trip"):
    """Stored group document."""
    return {
        "id": group_id,
        "name": name,
        "members": list(members),
        "created_by": created_by or members[0],
        "created_at": BASE_TIME,
    }


def profile(user_id, display_name=None):
    """Stored user profile document."""
    return {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "display_name": display_name or user_id.title(),
        "created_at": BASE_TIME,
    }


@pytest.fixture
def fake_store():
    """In-memory record store."""
    return FakeRecordStore()


@pytest.fixture
def expense_record():
    """Factory for validated ExpenseRecord objects."""
    def make(record_id, amount_cents, paid_by, participants, group_id=None):
        return ExpenseRecord.model_validate(expense(record_id, amount_cents, paid_by, participants, group_id))
    return make


@pytest.fixture
def settlement_record():
    """Factory for validated SettlementRecord objects."""
    def make(record_id, amount_cents, debtor, creditor, group_id=None):
        return SettlementRecord.model_validate(settlement(record_id, amount_cents, debtor, creditor, group_id))
    return make


@pytest.fixture
def make_expense():
    return expense


@pytest.fixture
def make_settlement():
    return settlement


@pytest.fixture
def make_group():
    return group


@pytest.fixture
def make_profile():
    return profile
