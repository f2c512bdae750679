"""Aggregation of transactions into totals and a per-category expense breakdown."""
import logging
from collections.abc import Mapping
from typing import Any, Iterable, Union

from models.transaction import Stats, Transaction

logger = logging.getLogger(__name__)

TransactionLike = Union[Transaction, Mapping]

# Bucket for expense records stored without a category string
UNCATEGORIZED = "Uncategorized"


def _field(tx: TransactionLike, name: str) -> Any:
    if isinstance(tx, Mapping):
        return tx.get(name)
    return getattr(tx, name, None)


def _amount(value: Any) -> float:
    """Numeric value of an amount; anything non-numeric counts as zero."""
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compute_stats(transactions: Iterable[TransactionLike]) -> Stats:
    """
    Computes total income, total expense, balance and expenses per category
    over the full sequence. Records of any other type are ignored; categories
    are grouped by whatever string is present.
    """
    total_income = 0.0
    total_expense = 0.0
    by_category = {}
    count = 0

    for tx in transactions:
        count += 1
        amount = _amount(_field(tx, 'amount'))
        tx_type = _field(tx, 'type')
        if tx_type == 'income':
            total_income += amount
        elif tx_type == 'expense':
            total_expense += amount
            category = _field(tx, 'category')
            if not isinstance(category, str):
                category = UNCATEGORIZED
            by_category[category] = by_category.get(category, 0.0) + amount

    logger.debug(f"Computed stats over {count} transactions: income={total_income} expense={total_expense}")
    return Stats(
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        expenses_by_category=by_category,
    )
