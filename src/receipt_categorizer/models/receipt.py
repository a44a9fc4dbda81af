"""Pydantic records for receipts, predictions and queue bookkeeping."""

import datetime as _dt
import hashlib
import uuid
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from receipt_categorizer.errors import InvalidTransition


def _now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    OCR_DONE = "ocr_done"
    CATEGORIZED = "categorized"
    FAILED = "failed"

    def can_transition_to(self, target: "ReceiptStatus") -> bool:
        return target in _TRANSITIONS[self]


# Forward-only; FAILED is terminal for one attempt but a later retry may still succeed
_TRANSITIONS: dict[ReceiptStatus, frozenset[ReceiptStatus]] = {
    ReceiptStatus.PENDING: frozenset({ReceiptStatus.OCR_DONE, ReceiptStatus.FAILED}),
    ReceiptStatus.OCR_DONE: frozenset({ReceiptStatus.CATEGORIZED, ReceiptStatus.FAILED}),
    ReceiptStatus.FAILED: frozenset({ReceiptStatus.CATEGORIZED}),
    ReceiptStatus.CATEGORIZED: frozenset(),
}


class CategoryMethod(str, Enum):
    RULE = "rule"
    HEURISTIC = "heuristic"
    MODEL = "model"


class LineItem(BaseModel):
    description: str = ""
    amount: Decimal = Decimal("0")
    quantity: Optional[Decimal] = None


class Receipt(BaseModel):
    """A user-submitted receipt with its extracted fields and category."""

    id: str = Field(default_factory=_new_id)
    owner_id: str = ""
    merchant: str = ""
    total: Decimal = Field(default=Decimal("0"), ge=0)
    subtotal: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    receipt_date: Optional[_dt.date] = None
    raw_text: str = ""
    line_items: list[LineItem] = Field(default_factory=list)
    status: ReceiptStatus = ReceiptStatus.PENDING
    category: Optional[str] = None
    category_id: Optional[str] = None
    category_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    category_method: Optional[CategoryMethod] = None
    source_hash: str = ""
    created_at: _dt.datetime = Field(default_factory=_now)
    updated_at: _dt.datetime = Field(default_factory=_now)

    @property
    def has_content(self) -> bool:
        """False when there is nothing any stage could classify on."""
        merchant = self.merchant.strip().lower()
        if merchant and merchant != "unknown":
            return True
        if self.raw_text.strip():
            return True
        return any(item.description.strip() for item in self.line_items)

    def transition(self, target: ReceiptStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransition(self.status.value, target.value)
        self.status = target
        self.updated_at = _now()


class Prediction(BaseModel):
    """Audit row for one stage attempt. Never updated after insert."""

    id: str = Field(default_factory=_new_id)
    subject_id: str
    method: CategoryMethod
    category_id: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: _dt.datetime = Field(default_factory=_now)


class QueueItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    receipt_id: str
    processed: bool = False
    attempts: int = Field(default=0, ge=0)
    last_error: str = ""
    enqueued_at: _dt.datetime = Field(default_factory=_now)
    failed_at: Optional[_dt.datetime] = None


def file_hash(path: str | Path) -> str:
    """SHA-256 hash of a file for deduplication."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()
