"""Service layer for storing, deleting and watching a user's transactions."""
import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pydantic import ValidationError
from pymongo.errors import OperationFailure, PyMongoError

from models.transaction import CATEGORIES, Transaction, TransactionCreate, is_valid_category

logger = logging.getLogger(__name__)

SORT_ORDER = [("occurred_at", -1), ("created_at", -1)]


def _to_model(doc: Dict[str, Any]) -> Transaction:
    if '_id' in doc: doc['id'] = str(doc.pop('_id'))
    doc.pop('user_id', None)
    return Transaction(**doc)


async def list_transactions(collection: AsyncIOMotorCollection, user_id: str) -> List[Transaction]:
    """Fetches all of a user's transactions, newest occurrence first."""
    transactions = []
    try:
        cursor = collection.find({"user_id": user_id}).sort(SORT_ORDER)
        async for doc in cursor:
            try:
                transactions.append(_to_model(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('id', 'N/A')}: {e}")
                continue
    except PyMongoError as e:
        logger.error(f"Database error fetching transactions for user '{user_id}': {e}")
        raise ConnectionError(f"Database error fetching transactions: {e}")
    logger.debug(f"Fetched {len(transactions)} transactions for user '{user_id}'.")
    return transactions


def _validate(payload: TransactionCreate) -> float:
    if payload.amount is None:
        raise ValueError("Amount is required.")
    amount = float(payload.amount)
    if not math.isfinite(amount) or amount < 0:
        raise ValueError("Amount must be a non-negative number.")
    if not is_valid_category(payload.type, payload.category):
        allowed = ", ".join(CATEGORIES[payload.type])
        raise ValueError(f"Invalid category '{payload.category}' for {payload.type}. Allowed: {allowed}")
    return amount


async def create_transaction(
    collection: AsyncIOMotorCollection,
    user_id: str,
    payload: TransactionCreate,
) -> Transaction:
    """
    Validates and stores a manually submitted (or accepted draft) transaction.
    Raises ValueError on invalid input before touching the database.
    """
    amount = _validate(payload)
    now = datetime.now(timezone.utc)
    doc = {
        "user_id": user_id,
        "amount": amount,
        "type": payload.type,
        "category": payload.category,
        "description": payload.description,
        "occurred_at": payload.occurred_at or now,
        "created_at": now,
    }
    try:
        result = await collection.insert_one(doc)
    except PyMongoError as e:
        logger.error(f"Database error inserting transaction: {e}")
        raise ConnectionError(f"Database error inserting transaction: {e}")

    doc.pop('_id', None)
    doc.pop('user_id')
    transaction = Transaction(id=str(result.inserted_id), **doc)
    logger.info(f"Created {transaction.type} transaction {transaction.id} ({transaction.category}, {transaction.amount}) for user '{user_id}'.")
    return transaction


async def delete_transaction(collection: AsyncIOMotorCollection, user_id: str, transaction_id: str) -> Dict[str, Any]:
    """Deletes one transaction by id. Unknown or malformed ids delete nothing."""
    try:
        object_id = ObjectId(transaction_id)
    except (InvalidId, TypeError):
        logger.warning(f"Delete requested for malformed transaction id '{transaction_id}'; nothing deleted.")
        return {"status": "success", "deleted_count": 0}

    try:
        result = await collection.delete_one({"_id": object_id, "user_id": user_id})
    except PyMongoError as e:
        logger.error(f"Database error deleting transaction {transaction_id}: {e}")
        raise ConnectionError(f"Database error deleting transaction: {e}")

    if result.deleted_count == 0:
        logger.info(f"Transaction {transaction_id} not found for user '{user_id}'; nothing deleted.")
    else:
        logger.info(f"Deleted transaction {transaction_id} for user '{user_id}'.")
    return {"status": "success", "deleted_count": result.deleted_count}


async def stream_snapshots(
    collection: AsyncIOMotorCollection,
    user_id: str,
    poll_interval: float,
) -> AsyncIterator[List[Transaction]]:
    """
    Yields the user's full transaction list, then a full replacement list each
    time the collection changes. Uses a change stream when the deployment
    supports one and falls back to polling otherwise. A snapshot equal to the
    previous delivery is not yielded again.
    """
    last = await list_transactions(collection, user_id)
    yield last

    try:
        async with collection.watch() as stream:
            logger.info(f"Watching change stream on '{collection.name}' for user '{user_id}'.")
            async for _change in stream:
                snapshot = await list_transactions(collection, user_id)
                if snapshot != last:
                    last = snapshot
                    yield snapshot
    except OperationFailure as e:
        logger.warning(f"Change streams unavailable ({e}); polling every {poll_interval}s instead.")
    except PyMongoError as e:
        logger.error(f"Change stream for user '{user_id}' failed: {e}")
        raise ConnectionError(f"Database error watching transactions: {e}")

    while True:
        await asyncio.sleep(poll_interval)
        snapshot = await list_transactions(collection, user_id)
        if snapshot != last:
            last = snapshot
            yield snapshot
