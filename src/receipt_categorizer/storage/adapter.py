"""Abstract storage adapter — swap the local JSON tables for a real database later."""

from abc import ABC, abstractmethod
from typing import Any, Iterable

from receipt_categorizer.models.receipt import Prediction, QueueItem, Receipt, ReceiptStatus


class StorageAdapter(ABC):
    # receipts

    @abstractmethod
    def load_receipts(self, status: ReceiptStatus | None = None) -> list[Receipt]:
        """Load all receipts, optionally only those in *status*."""

    @abstractmethod
    def save_receipt(self, receipt: Receipt) -> None:
        """Insert or replace a receipt (upsert by id)."""

    @abstractmethod
    def find_receipt(self, receipt_id: str) -> Receipt | None:
        """Find a receipt by id, or by a unique id prefix."""

    @abstractmethod
    def find_receipt_by_hash(self, source_hash: str) -> Receipt | None:
        """Find a receipt by the hash of its extraction file (dedup check)."""

    @abstractmethod
    def update_receipt_if(
        self, receipt_id: str, expected: Iterable[ReceiptStatus], **changes: Any,
    ) -> Receipt | None:
        """Apply *changes* atomically if the stored status is in *expected*.

        Returns the updated receipt, or None when the receipt is missing or its
        status no longer matches.
        """

    # predictions

    @abstractmethod
    def add_prediction(self, prediction: Prediction) -> None:
        """Append one audit row."""

    @abstractmethod
    def list_predictions(self, receipt_id: str) -> list[Prediction]:
        """All predictions for a receipt, oldest first."""

    # queue

    @abstractmethod
    def enqueue(self, receipt_id: str) -> QueueItem:
        """Queue a receipt; reuses an existing unprocessed item for the same id."""

    @abstractmethod
    def pending_queue_items(self, max_attempts: int, limit: int) -> list[QueueItem]:
        """Unprocessed items below *max_attempts*, oldest first, one per receipt."""

    @abstractmethod
    def save_queue_item(self, item: QueueItem) -> None:
        """Persist changes to a queue item."""

    @abstractmethod
    def dead_letter(self, item: QueueItem) -> None:
        """Move an exhausted item from the queue to the dead-letter table."""

    @abstractmethod
    def list_dead_letters(self) -> list[QueueItem]:
        """Everything currently dead-lettered."""

    @abstractmethod
    def requeue(self, receipt_id: str) -> QueueItem | None:
        """Move a dead-lettered receipt back to the queue with attempts reset."""
