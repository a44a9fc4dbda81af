"""Local JSON tables with file locking for concurrent access.

Each table is one JSON array on disk guarded by a sidecar ``.lock`` file.
Writers hold an exclusive lock across the whole read-modify-write, which is
what makes ``update_receipt_if`` a single atomic conditional update between
threads and processes alike.
"""

from __future__ import annotations

import datetime as _dt
import fcntl
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from pydantic import BaseModel

from receipt_categorizer.config import DATA_DIR
from receipt_categorizer.errors import StorageError
from receipt_categorizer.models.receipt import Prediction, QueueItem, Receipt, ReceiptStatus
from receipt_categorizer.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)

RECEIPTS = "receipts.json"
PREDICTIONS = "predictions.json"
QUEUE = "receipt_queue.json"
DEAD_LETTERS = "receipt_queue_dlq.json"


def _dump(record: BaseModel) -> dict:
    return json.loads(record.model_dump_json())


class _Table:
    """One JSON array on disk. Use ``read()`` or ``with table.locked() as rows``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lock_path = path.with_name(path.name + ".lock")

    @contextmanager
    def _lock(self, mode: int) -> Iterator[None]:
        try:
            with open(self.lock_path, "a") as lf:
                fcntl.flock(lf, mode)
                try:
                    yield
                finally:
                    fcntl.flock(lf, fcntl.LOCK_UN)
        except OSError as e:
            raise StorageError(f"{self.path.name}: {e}") from e

    def _load(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r") as f:
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                raise StorageError(f"{self.path.name} is not valid JSON: {e}") from e

    def _store(self, rows: list[dict]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w") as f:
            json.dump(rows, f, indent=2, default=str)
        os.replace(tmp, self.path)

    def read(self) -> list[dict]:
        with self._lock(fcntl.LOCK_SH):
            return self._load()

    @contextmanager
    def locked(self) -> Iterator[list[dict]]:
        """Exclusive read-modify-write; the yielded list is written back on exit."""
        with self._lock(fcntl.LOCK_EX):
            rows = self._load()
            yield rows
            self._store(rows)


class LocalJsonStorage(StorageAdapter):
    def __init__(self, directory: Path | None = None):
        self.directory = Path(directory or DATA_DIR)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._receipts = _Table(self.directory / RECEIPTS)
        self._predictions = _Table(self.directory / PREDICTIONS)
        self._queue = _Table(self.directory / QUEUE)
        self._dlq = _Table(self.directory / DEAD_LETTERS)

    # receipts

    def load_receipts(self, status: ReceiptStatus | None = None) -> list[Receipt]:
        receipts = [Receipt.model_validate(r) for r in self._receipts.read()]
        if status is not None:
            receipts = [r for r in receipts if r.status == status]
        return receipts

    def save_receipt(self, receipt: Receipt) -> None:
        dump = _dump(receipt)
        with self._receipts.locked() as rows:
            for i, r in enumerate(rows):
                if r.get("id") == receipt.id:
                    rows[i] = dump
                    return
            rows.append(dump)

    def find_receipt(self, receipt_id: str) -> Receipt | None:
        rows = self._receipts.read()
        for r in rows:
            if r.get("id") == receipt_id:
                return Receipt.model_validate(r)
        matches = [r for r in rows if r.get("id", "").startswith(receipt_id)]
        if receipt_id and len(matches) == 1:
            return Receipt.model_validate(matches[0])
        return None

    def find_receipt_by_hash(self, source_hash: str) -> Receipt | None:
        for r in self._receipts.read():
            if source_hash and r.get("source_hash") == source_hash:
                return Receipt.model_validate(r)
        return None

    def update_receipt_if(
        self, receipt_id: str, expected: Iterable[ReceiptStatus], **changes: Any,
    ) -> Receipt | None:
        allowed = {ReceiptStatus(s) for s in expected}
        with self._receipts.locked() as rows:
            for i, r in enumerate(rows):
                if r.get("id") != receipt_id:
                    continue
                current = Receipt.model_validate(r)
                if current.status not in allowed:
                    return None
                if "status" in changes:
                    current.transition(ReceiptStatus(changes.pop("status")))
                data = current.model_dump()
                data.update(changes)
                data["updated_at"] = _dt.datetime.now(_dt.timezone.utc)
                updated = Receipt.model_validate(data)
                rows[i] = _dump(updated)
                return updated
        return None

    # predictions

    def add_prediction(self, prediction: Prediction) -> None:
        with self._predictions.locked() as rows:
            rows.append(_dump(prediction))

    def list_predictions(self, receipt_id: str) -> list[Prediction]:
        return [
            Prediction.model_validate(r)
            for r in self._predictions.read()
            if r.get("subject_id") == receipt_id
        ]

    # queue

    def enqueue(self, receipt_id: str) -> QueueItem:
        with self._queue.locked() as rows:
            for r in rows:
                if r.get("receipt_id") == receipt_id and not r.get("processed"):
                    return QueueItem.model_validate(r)
            item = QueueItem(receipt_id=receipt_id)
            rows.append(_dump(item))
        logger.debug("Enqueued receipt %s", receipt_id)
        return item

    def pending_queue_items(self, max_attempts: int, limit: int) -> list[QueueItem]:
        items = [
            QueueItem.model_validate(r)
            for r in self._queue.read()
            if not r.get("processed") and r.get("attempts", 0) < max_attempts
        ]
        items.sort(key=lambda i: i.enqueued_at)
        seen: set[str] = set()
        result: list[QueueItem] = []
        for item in items:
            if item.receipt_id in seen:
                continue
            seen.add(item.receipt_id)
            result.append(item)
        return result[:limit]

    def save_queue_item(self, item: QueueItem) -> None:
        dump = _dump(item)
        with self._queue.locked() as rows:
            for i, r in enumerate(rows):
                if r.get("id") == item.id:
                    rows[i] = dump
                    return
            rows.append(dump)

    def dead_letter(self, item: QueueItem) -> None:
        item.failed_at = item.failed_at or _dt.datetime.now(_dt.timezone.utc)
        # Lock order is always queue, then dead letters
        with self._queue.locked() as rows, self._dlq.locked() as dead:
            rows[:] = [r for r in rows if r.get("id") != item.id]
            dead.append(_dump(item))

    def list_dead_letters(self) -> list[QueueItem]:
        return [QueueItem.model_validate(r) for r in self._dlq.read()]

    def requeue(self, receipt_id: str) -> QueueItem | None:
        with self._queue.locked() as rows, self._dlq.locked() as dead:
            for i, r in enumerate(dead):
                if r.get("receipt_id") != receipt_id:
                    continue
                item = QueueItem.model_validate(dead.pop(i))
                item.attempts = 0
                item.processed = False
                item.failed_at = None
                rows.append(_dump(item))
                return item
        return None
