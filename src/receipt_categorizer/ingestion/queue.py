"""Queue worker: at-least-once delivery of receipts to the categorizer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from receipt_categorizer import config
from receipt_categorizer.classification.pipeline import Categorizer
from receipt_categorizer.models.outcome import CategorizationResult
from receipt_categorizer.models.receipt import QueueItem, ReceiptStatus
from receipt_categorizer.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)


@dataclass
class QueueRunSummary:
    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    results: list[CategorizationResult] = field(default_factory=list)


class QueueWorker:
    def __init__(
        self,
        storage: StorageAdapter,
        categorizer: Categorizer,
        max_attempts: int = config.MAX_ATTEMPTS,
    ) -> None:
        self.storage = storage
        self.categorizer = categorizer
        self.max_attempts = max_attempts

    def run_once(self, limit: int = 10) -> QueueRunSummary:
        summary = QueueRunSummary()
        items = self.storage.pending_queue_items(self.max_attempts, limit)
        logger.info("Queue: %d items ready", len(items))
        for item in items:
            self._handle(item, summary)
        return summary

    def _handle(self, item: QueueItem, summary: QueueRunSummary) -> None:
        # Count the attempt before the call so a worker crash still uses it up
        item.attempts += 1
        self.storage.save_queue_item(item)
        result = self.categorizer.categorize(item.receipt_id)
        summary.results.append(result)

        if result.ok or not result.retryable:
            item.processed = True
            item.last_error = "" if result.ok else result.reason or ""
            self.storage.save_queue_item(item)
            summary.processed += 1
            return

        item.last_error = result.reason or "unknown"
        if item.attempts < self.max_attempts:
            logger.warning(
                "Receipt %s attempt %d/%d failed (%s), will retry",
                item.receipt_id, item.attempts, self.max_attempts, item.last_error,
            )
            self.storage.save_queue_item(item)
            summary.retried += 1
            return

        logger.error(
            "Receipt %s failed %d times (%s), moving to dead letters",
            item.receipt_id, item.attempts, item.last_error,
        )
        self.storage.dead_letter(item)
        self.storage.update_receipt_if(
            item.receipt_id, [ReceiptStatus.OCR_DONE], status=ReceiptStatus.FAILED,
        )
        summary.dead_lettered += 1
