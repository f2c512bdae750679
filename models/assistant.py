"""Pydantic models for the assistant endpoints"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal, Optional

from models.transaction import TransactionType

AdviceKind = Literal['forecast', 'analysis']
DraftFailure = Literal['no_response', 'unparsable', 'missing_amount']


class DraftRequest(BaseModel):
    text: str
    now: Optional[datetime] = Field(default=None, description="Reference time for relative dates. Defaults to server time.")


class TransactionDraft(BaseModel):
    """A proposed transaction, offered to the user for confirmation. Never stored directly."""
    amount: float
    type: TransactionType
    category: str
    description: Optional[str] = None
    occurred_at: datetime


class DraftResult(BaseModel):
    success: bool
    draft: Optional[TransactionDraft] = None
    reason: Optional[DraftFailure] = None

    @classmethod
    def ok(cls, draft: TransactionDraft) -> "DraftResult":
        return cls(success=True, draft=draft)

    @classmethod
    def failed(cls, reason: str) -> "DraftResult":
        return cls(success=False, reason=reason)


class AdviceResponse(BaseModel):
    kind: AdviceKind
    text: Optional[str] = None
    updated: bool = False
    generated_at: Optional[datetime] = None
    message: Optional[str] = None
