"""API Routes for transactions, statistics and the assistant"""
import asyncio
from fastapi import APIRouter, HTTPException, Body, Depends, Header, Query, Request, WebSocket, WebSocketDisconnect, WebSocketException, status
from starlette.requests import HTTPConnection
from typing import List, Annotated, Optional
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError
import logging

import config
from models.assistant import AdviceResponse, DraftRequest, DraftResult
from models.transaction import CATEGORIES, Stats, Transaction, TransactionCreate
from services import assistant_service, transactions_service
from services.stats_service import compute_stats
from utils.rate_limit import limiter

router = APIRouter()
logger = logging.getLogger(__name__)

# --- Dependency Functions ---

def get_transactions_collection(conn: HTTPConnection) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB transactions collection from the application state."""
    collection = getattr(conn.app.state, "transactions_collection", None)
    if collection is None:
        logger.error("Transactions collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_advice_collection(conn: HTTPConnection) -> AsyncIOMotorCollection:
    collection = getattr(conn.app.state, "advice_collection", None)
    if collection is None:
        logger.error("Advice collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_live_collection(websocket: WebSocket) -> AsyncIOMotorCollection:
    collection = getattr(websocket.app.state, "transactions_collection", None)
    if collection is None:
        logger.error("Live feed requested but the transactions collection is unavailable.")
        raise WebSocketException(code=status.WS_1011_INTERNAL_ERROR, reason="Database service not available.")
    return collection


def get_user_id(x_user_id: Annotated[Optional[str], Header()] = None) -> str:
    """Identifies the account whose data is read and written. Authentication happens upstream."""
    return x_user_id or config.DEFAULT_USER_ID


TransactionsCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_transactions_collection)]
AdviceCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_advice_collection)]
UserIdDep = Annotated[str, Depends(get_user_id)]

# --- Transactions ---

@router.get("/categories", summary="Get Categories", description="Returns the fixed category sets for income and expense transactions.")
async def get_categories():
    return CATEGORIES


@router.get("/transactions", response_model=List[Transaction], summary="Get Transactions", description="Retrieves all of the user's transactions, newest first.")
async def get_transactions(collection: TransactionsCollectionDep, user_id: UserIdDep) -> List[Transaction]:
    logger.info(f"GET /transactions called for user '{user_id}'.")
    try:
        return await transactions_service.list_transactions(collection, user_id)
    except ConnectionError as ce:
        logger.error(f"Connection error fetching transactions: {ce}")
        raise HTTPException(status_code=503, detail=f"Database connection error: {ce}")
    except Exception as e:
        logger.exception(f"Unexpected error fetching transactions: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while fetching transactions.")


@router.post("/transactions", response_model=Transaction, status_code=201, summary="Create Transaction", description="Stores a manually entered (or accepted draft) transaction.")
async def create_transaction(
    collection: TransactionsCollectionDep,
    user_id: UserIdDep,
    payload: Annotated[TransactionCreate, Body(...)],
) -> Transaction:
    logger.info(f"POST /transactions called for user '{user_id}': {payload.type} {payload.amount} ({payload.category})")
    try:
        return await transactions_service.create_transaction(collection, user_id, payload)
    except ValueError as ve:
        logger.warning(f"Rejected transaction submission: {ve}")
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"ConnectionError creating transaction: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    except Exception as e:
        logger.exception(f"Unexpected error creating transaction: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while saving the transaction.")


@router.delete("/transactions/{transaction_id}", summary="Delete Transaction", description="Deletes one transaction. Unknown ids are a no-op.")
async def delete_transaction(transaction_id: str, collection: TransactionsCollectionDep, user_id: UserIdDep):
    logger.info(f"DELETE /transactions/{transaction_id} called for user '{user_id}'.")
    try:
        return await transactions_service.delete_transaction(collection, user_id, transaction_id)
    except ConnectionError as ce:
        logger.error(f"ConnectionError deleting transaction: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    except Exception as e:
        logger.exception(f"Unexpected error deleting transaction {transaction_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while deleting the transaction.")


@router.get("/stats", response_model=Stats, summary="Get Statistics", description="Totals, balance and expenses per category over all of the user's transactions.")
async def get_stats(collection: TransactionsCollectionDep, user_id: UserIdDep) -> Stats:
    try:
        transactions = await transactions_service.list_transactions(collection, user_id)
    except ConnectionError as ce:
        logger.error(f"Connection error computing stats: {ce}")
        raise HTTPException(status_code=503, detail=f"Database connection error: {ce}")
    except Exception as e:
        logger.exception(f"Unexpected error computing stats: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while computing statistics.")
    return compute_stats(transactions)


async def _send_snapshots(websocket: WebSocket, collection: AsyncIOMotorCollection, user_id: str) -> None:
    snapshots = transactions_service.stream_snapshots(collection, user_id, config.SNAPSHOT_POLL_INTERVAL)
    try:
        async for snapshot in snapshots:
            await websocket.send_json({
                "transactions": [tx.model_dump(mode='json') for tx in snapshot],
                "stats": compute_stats(snapshot).model_dump(mode='json'),
            })
    finally:
        await snapshots.aclose()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Client messages are ignored; reading is what surfaces a disconnect
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/transactions/live")
async def live_transactions(
    websocket: WebSocket,
    collection: Annotated[AsyncIOMotorCollection, Depends(get_live_collection)],
    user_id: Optional[str] = Query(None),
):
    """Pushes the full transaction list and stats on connect and after every change."""
    user_id = user_id or config.DEFAULT_USER_ID
    await websocket.accept()
    logger.info(f"Live feed opened for user '{user_id}'.")

    sender = asyncio.create_task(_send_snapshots(websocket, collection, user_id))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if sender in done:
            sender.result()
        else:
            logger.info(f"Live feed closed by client for user '{user_id}'.")
    except WebSocketDisconnect:
        logger.info(f"Live feed closed by client for user '{user_id}'.")
    except ConnectionError as ce:
        logger.error(f"Live feed for user '{user_id}' lost its database connection: {ce}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        sender.cancel()
        receiver.cancel()

# --- Assistant ---

@router.post("/assistant/draft", response_model=DraftResult, summary="Draft Transaction From Text", description="Turns free text into a proposed transaction. Nothing is stored.")
@limiter.limit(config.ASSISTANT_RATE_LIMIT)
async def draft_transaction(request: Request, body: Annotated[DraftRequest, Body(...)]) -> DraftResult:
    logger.info(f"POST /assistant/draft called with text: {body.text[:50]}...")
    if not body.text or not body.text.strip():
        raise HTTPException(status_code=400, detail="Text input cannot be empty.")

    result = await assistant_service.extract_draft(body.text.strip(), body.now)
    if result.success:
        return result
    if result.reason == "no_response":
        raise HTTPException(status_code=502, detail=result.model_dump())
    raise HTTPException(status_code=422, detail=result.model_dump())


async def _advice(kind: str, tx_collection, advice_collection, user_id: str) -> AdviceResponse:
    try:
        return await assistant_service.generate_advice(tx_collection, advice_collection, user_id, kind)
    except ConnectionError as ce:
        logger.error(f"ConnectionError generating {kind} advice: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    except Exception as e:
        logger.exception(f"Unexpected error generating {kind} advice: {e}")
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while generating {kind} advice.")


@router.post("/assistant/forecast", response_model=AdviceResponse, summary="Budget Forecast", description="Short-term forecast based on recent figures.")
@limiter.limit(config.ASSISTANT_RATE_LIMIT)
async def forecast(request: Request, tx_collection: TransactionsCollectionDep, advice_collection: AdviceCollectionDep, user_id: UserIdDep) -> AdviceResponse:
    logger.info(f"POST /assistant/forecast called for user '{user_id}'.")
    return await _advice("forecast", tx_collection, advice_collection, user_id)


@router.post("/assistant/analysis", response_model=AdviceResponse, summary="Spending Analysis", description="General analysis of spending habits.")
@limiter.limit(config.ASSISTANT_RATE_LIMIT)
async def analysis(request: Request, tx_collection: TransactionsCollectionDep, advice_collection: AdviceCollectionDep, user_id: UserIdDep) -> AdviceResponse:
    logger.info(f"POST /assistant/analysis called for user '{user_id}'.")
    return await _advice("analysis", tx_collection, advice_collection, user_id)

# --- Health ---

@router.get("/health", summary="Health Check", description="Reports whether the database answers a ping.")
async def health(request: Request):
    client = getattr(request.app.state, "db_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Database service not available.")
    try:
        await client.admin.command('ping')
    except PyMongoError as e:
        logger.error(f"Health check ping failed: {e}")
        raise HTTPException(status_code=503, detail="Database ping failed.")
    return {"status": "ok"}
