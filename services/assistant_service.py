"""Service layer bridging user data and the text-generation model.

Two request shapes are supported:

- Draft extraction: free text is turned into a proposed transaction whose
  fields are validated against the category sets before it is offered to the
  user. Nothing is stored; accepting a draft is an ordinary create.
- Advisory text: a forecast or a spending analysis built from aggregated
  figures and a capped slice of recent transactions. The latest non-empty
  answer is kept per user and kind, so a failed call leaves the previous
  advice in place.
"""
import json
import logging
import math
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

import config
from models.assistant import AdviceResponse, DraftResult, TransactionDraft
from models.transaction import CATEGORIES, Stats, Transaction
from services import transactions_service
from services.stats_service import compute_stats
from utils.assistant_agent import (
    analysis_agent,
    draft_extractor_agent,
    forecast_agent,
    run_text_agent,
    strip_code_fence,
)

logger = logging.getLogger(__name__)

ADVICE_AGENTS = {
    "forecast": forecast_agent,
    "analysis": analysis_agent,
}

ADVICE_TASKS = {
    "forecast": "Forecast my income, spending and balance for the next month.",
    "analysis": "Analyse my spending and suggest where I could save.",
}

# --- Draft extraction ---

def build_draft_prompt(text: str, now: datetime) -> str:
    income = ", ".join(CATEGORIES["income"])
    expense = ", ".join(CATEGORIES["expense"])
    return (
        f"Current time: {now.isoformat()}\n"
        f"Allowed income categories: {income}\n"
        f"Allowed expense categories: {expense}\n"
        "--- Start of User-Provided Text ---\n"
        f"{text}\n"
        "--- End of User-Provided Text ---"
    )


def _parse_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount):
        return None
    return abs(amount)


def _parse_occurred_at(value: Any, now: datetime) -> datetime:
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        if len(raw) > 10:
            try:
                parsed = datetime.fromisoformat(raw)
            except ValueError:
                pass
            else:
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=now.tzinfo)
                return parsed
        # Bare dates keep the time of day of the reference time
        try:
            parsed = date.fromisoformat(raw[:10])
            return datetime.combine(parsed, now.timetz())
        except ValueError:
            logger.warning(f"Unparseable draft date '{value}', using current time.")
    return now


def parse_draft(raw: str, now: datetime) -> DraftResult:
    """
    Maps the model's reply onto a TransactionDraft.
    A missing or non-numeric amount rejects the whole draft; an unknown
    category is replaced by the first category for the inferred type.
    """
    if not raw or not raw.strip():
        return DraftResult.failed("no_response")

    try:
        data = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse draft JSON from model output: {e}. Output: {raw[:200]}")
        return DraftResult.failed("unparsable")
    if not isinstance(data, dict):
        logger.warning(f"Draft output is not a JSON object: {type(data).__name__}")
        return DraftResult.failed("unparsable")

    amount = _parse_amount(data.get("amount"))
    if amount is None:
        logger.warning(f"Draft rejected: missing or non-numeric amount ({data.get('amount')!r}).")
        return DraftResult.failed("missing_amount")

    tx_type = data.get("type")
    if not isinstance(tx_type, str) or tx_type not in CATEGORIES:
        tx_type = "expense"

    category = data.get("category")
    if category not in CATEGORIES[tx_type]:
        fallback = CATEGORIES[tx_type][0]
        logger.info(f"Draft category {category!r} not valid for {tx_type}; using '{fallback}'.")
        category = fallback

    description = data.get("description")
    if description is not None:
        description = str(description).strip() or None

    draft = TransactionDraft(
        amount=amount,
        type=tx_type,
        category=category,
        description=description,
        occurred_at=_parse_occurred_at(data.get("date"), now),
    )
    return DraftResult.ok(draft)


async def extract_draft(text: str, now: Optional[datetime] = None) -> DraftResult:
    """Asks the model for a draft transaction. Never raises for model failures."""
    now = now or datetime.now(timezone.utc)
    raw = await run_text_agent(draft_extractor_agent, build_draft_prompt(text, now))
    result = parse_draft(raw, now)
    if result.success:
        logger.info(f"Draft extracted: {result.draft.type} {result.draft.amount} ({result.draft.category}).")
    else:
        logger.warning(f"Draft extraction failed: {result.reason}")
    return result

# --- Advisory text ---

def build_summary(stats: Stats) -> str:
    lines = [
        f"Total income: {stats.total_income:.2f}",
        f"Total expenses: {stats.total_expense:.2f}",
        f"Balance: {stats.balance:.2f}",
    ]
    if stats.expenses_by_category:
        lines.append("Expenses by category:")
        ranked = sorted(stats.expenses_by_category.items(), key=lambda item: item[1], reverse=True)
        lines.extend(f"- {name}: {total:.2f}" for name, total in ranked)
    else:
        lines.append("No expenses recorded.")
    return "\n".join(lines)


def _format_transaction(tx: Transaction) -> str:
    line = f"{tx.occurred_at.date().isoformat()} | {tx.type} | {tx.category} | {tx.amount:.2f}"
    if tx.description:
        line += f" | {tx.description}"
    return line


def build_advice_prompt(kind: str, stats: Stats, recent: List[Transaction], limit: Optional[int] = None) -> str:
    limit = config.ADVICE_TRANSACTION_LIMIT if limit is None else limit
    recent = recent[:limit]
    listing = "\n".join(_format_transaction(tx) for tx in recent) or "(none)"
    return (
        f"{ADVICE_TASKS[kind]}\n\n"
        f"Summary:\n{build_summary(stats)}\n\n"
        f"Most recent {len(recent)} transactions (date | type | category | amount | description):\n"
        f"{listing}"
    )


async def _previous_advice(advice_collection: AsyncIOMotorCollection, user_id: str, kind: str) -> Optional[dict]:
    try:
        return await advice_collection.find_one({"user_id": user_id, "kind": kind})
    except PyMongoError as e:
        logger.error(f"Database error reading stored {kind} advice: {e}")
        raise ConnectionError(f"Database error reading advice: {e}")


async def generate_advice(
    tx_collection: AsyncIOMotorCollection,
    advice_collection: AsyncIOMotorCollection,
    user_id: str,
    kind: str,
) -> AdviceResponse:
    """
    Generates forecast or analysis prose. Non-empty output replaces the stored
    advice; an empty or failed response returns the previous advice unchanged.
    """
    if kind not in ADVICE_AGENTS:
        raise ValueError(f"Unknown advice kind: {kind}")

    transactions = await transactions_service.list_transactions(tx_collection, user_id)
    stats = compute_stats(transactions)
    prompt = build_advice_prompt(kind, stats, transactions)
    text = await run_text_agent(ADVICE_AGENTS[kind], prompt)

    if not text:
        previous = await _previous_advice(advice_collection, user_id, kind)
        logger.warning(f"No new {kind} advice for user '{user_id}'; keeping previous text.")
        return AdviceResponse(
            kind=kind,
            text=previous.get("text") if previous else None,
            updated=False,
            generated_at=previous.get("generated_at") if previous else None,
            message="No new advice is available right now.",
        )

    generated_at = datetime.now(timezone.utc)
    try:
        await advice_collection.update_one(
            {"user_id": user_id, "kind": kind},
            {"$set": {"text": text, "generated_at": generated_at}},
            upsert=True,
        )
    except PyMongoError as e:
        logger.error(f"Database error storing {kind} advice: {e}")
        raise ConnectionError(f"Database error storing advice: {e}")

    logger.info(f"Stored new {kind} advice for user '{user_id}' ({len(text)} chars).")
    return AdviceResponse(kind=kind, text=text, updated=True, generated_at=generated_at)
