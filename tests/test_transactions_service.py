import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from models.transaction import TransactionCreate
from services import transactions_service
from services.stats_service import compute_stats


def _create(collection, user_id="u1", **fields):
    payload = TransactionCreate(**{"type": "expense", "category": "Food", **fields})
    return asyncio.run(transactions_service.create_transaction(collection, user_id, payload))


def test_create_assigns_id_and_timestamps(tx_collection):
    occurred = datetime(2026, 10, 10, 9, 0, tzinfo=timezone.utc)
    tx = _create(tx_collection, amount=42.5, description="Lunch", occurred_at=occurred)

    assert ObjectId.is_valid(tx.id)
    assert tx.amount == 42.5
    assert tx.occurred_at == occurred
    assert tx.created_at.tzinfo is not None
    stored = tx_collection.docs[0]
    assert stored["user_id"] == "u1"
    assert str(stored["_id"]) == tx.id


def test_occurred_at_defaults_to_creation_time(tx_collection):
    tx = _create(tx_collection, amount=1)
    assert tx.occurred_at == tx.created_at


def test_missing_amount_is_rejected_before_insert(tx_collection):
    with pytest.raises(ValueError, match="Amount is required"):
        _create(tx_collection, amount=None)
    assert tx_collection.docs == []


@pytest.mark.parametrize("amount", [-1, float("inf")])
def test_invalid_amount_is_rejected(tx_collection, amount):
    with pytest.raises(ValueError):
        _create(tx_collection, amount=amount)
    assert tx_collection.docs == []


def test_category_must_match_type(tx_collection):
    with pytest.raises(ValueError, match="Invalid category"):
        _create(tx_collection, amount=10, type="income", category="Food")
    assert tx_collection.docs == []


def test_list_is_newest_first_and_scoped_to_user(tx_collection):
    base = datetime(2026, 10, 1, tzinfo=timezone.utc)
    _create(tx_collection, amount=1, occurred_at=base)
    _create(tx_collection, amount=2, occurred_at=base + timedelta(days=2))
    _create(tx_collection, amount=3, occurred_at=base + timedelta(days=1))
    _create(tx_collection, user_id="someone-else", amount=99)

    listed = asyncio.run(transactions_service.list_transactions(tx_collection, "u1"))

    assert [t.amount for t in listed] == [2, 3, 1]


def test_invalid_documents_are_skipped(tx_collection):
    _create(tx_collection, amount=5)
    tx_collection.docs.append({"_id": ObjectId(), "user_id": "u1", "amount": "lots", "type": "expense"})

    listed = asyncio.run(transactions_service.list_transactions(tx_collection, "u1"))

    assert len(listed) == 1


def test_delete_removes_only_the_target(tx_collection):
    keep = _create(tx_collection, amount=100, type="income", category="Salary")
    drop = _create(tx_collection, amount=40)

    result = asyncio.run(transactions_service.delete_transaction(tx_collection, "u1", drop.id))

    assert result == {"status": "success", "deleted_count": 1}
    remaining = asyncio.run(transactions_service.list_transactions(tx_collection, "u1"))
    assert [t.id for t in remaining] == [keep.id]
    assert compute_stats(remaining).balance == 100


@pytest.mark.parametrize("transaction_id", [str(ObjectId()), "not-an-object-id"])
def test_delete_unknown_id_is_a_noop(tx_collection, transaction_id):
    _create(tx_collection, amount=7)

    result = asyncio.run(transactions_service.delete_transaction(tx_collection, "u1", transaction_id))

    assert result["deleted_count"] == 0
    assert len(tx_collection.docs) == 1


def test_delete_is_scoped_to_user(tx_collection):
    tx = _create(tx_collection, amount=7)
    result = asyncio.run(transactions_service.delete_transaction(tx_collection, "intruder", tx.id))
    assert result["deleted_count"] == 0


def test_snapshots_fall_back_to_polling_and_replace_state(tx_collection):
    first_tx = _create(tx_collection, amount=10)

    async def scenario():
        stream = transactions_service.stream_snapshots(tx_collection, "u1", poll_interval=0)
        first = await stream.__anext__()
        payload = TransactionCreate(amount=20, type="expense", category="Food")
        await transactions_service.create_transaction(tx_collection, "u1", payload)
        second = await stream.__anext__()
        await stream.aclose()
        return first, second

    first, second = asyncio.run(scenario())

    assert [t.id for t in first] == [first_tx.id]
    assert len(second) == 2
    assert {t.amount for t in second} == {10, 20}


def test_change_stream_event_delivers_replacement_snapshot(tx_collection):
    _create(tx_collection, amount=10)
    tx_collection.change_events = []

    async def scenario():
        stream = transactions_service.stream_snapshots(tx_collection, "u1", poll_interval=60)
        first = await stream.__anext__()
        payload = TransactionCreate(amount=5, type="income", category="Gift")
        await transactions_service.create_transaction(tx_collection, "u1", payload)
        tx_collection.change_events.append({"operationType": "insert"})
        second = await stream.__anext__()
        await stream.aclose()
        return first, second

    first, second = asyncio.run(scenario())

    assert len(first) == 1
    assert sorted(t.amount for t in second) == [5, 10]
    assert tx_collection.streams[0].closed


def test_change_stream_failure_surfaces_as_connection_error(tx_collection):
    tx_collection.change_events = [PyMongoError("cursor killed")]

    async def scenario():
        stream = transactions_service.stream_snapshots(tx_collection, "u1", poll_interval=60)
        await stream.__anext__()
        await stream.__anext__()

    with pytest.raises(ConnectionError):
        asyncio.run(scenario())
