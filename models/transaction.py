"""Pydantic models for transaction data and derived statistics"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Literal, Optional

TransactionType = Literal['income', 'expense']

# Fixed category sets per transaction type. The first entry of each list is
# the fallback used when an assistant-proposed category is not recognised.
CATEGORIES: Dict[str, List[str]] = {
    "income": ["Salary", "Freelance", "Investment", "Gift", "Other"],
    "expense": [
        "Food",
        "Transport",
        "Housing",
        "Utilities",
        "Entertainment",
        "Health",
        "Shopping",
        "Education",
        "Other",
    ],
}


def is_valid_category(tx_type: str, category: Optional[str]) -> bool:
    return category in CATEGORIES.get(tx_type, [])


class Transaction(BaseModel):
    """
    Represents a single income or expense record as stored for a user.
    """
    id: Optional[str] = None
    amount: float = Field(..., ge=0)
    type: TransactionType
    category: str
    description: Optional[str] = None
    occurred_at: datetime
    created_at: datetime

    class Config:
        populate_by_name = True
        from_attributes = True


class TransactionCreate(BaseModel):
    """Manual submission payload. Amount presence is checked by the service."""
    amount: Optional[float] = None
    type: TransactionType
    category: str
    description: Optional[str] = None
    occurred_at: Optional[datetime] = None


class Stats(BaseModel):
    total_income: float = 0.0
    total_expense: float = 0.0
    balance: float = 0.0
    expenses_by_category: Dict[str, float] = Field(default_factory=dict)
