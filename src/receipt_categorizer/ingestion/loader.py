"""Turn extraction-service output (one JSON document per receipt) into receipts."""

from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from receipt_categorizer.errors import IngestError
from receipt_categorizer.models.receipt import LineItem, Receipt, ReceiptStatus, file_hash
from receipt_categorizer.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Extraction payloads name the same field differently across versions."""
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return default


def _amount(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value).replace(",", "").lstrip("$"))
    except InvalidOperation as e:
        raise IngestError(f"not an amount: {value!r}") from e


def _line_items(raw: Any) -> list[LineItem]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise IngestError(f"line_items must be a list, got {type(raw).__name__}")
    items: list[LineItem] = []
    for entry in raw:
        if isinstance(entry, str):
            items.append(LineItem(description=entry))
            continue
        if not isinstance(entry, dict):
            raise IngestError(f"line item must be an object or a string: {entry!r}")
        qty = entry.get("quantity")
        items.append(LineItem(
            description=str(entry.get("description") or ""),
            amount=_amount(_first(entry, "amount", "price", "total")),
            quantity=_amount(qty) if qty not in (None, "") else None,
        ))
    return items


def parse_extraction(data: dict[str, Any], source_hash: str = "") -> Receipt:
    """Build an ``ocr_done`` receipt from an extraction payload."""
    receipt_date = None
    raw_date = _first(data, "date", "receipt_date")
    if raw_date:
        try:
            receipt_date = date.fromisoformat(str(raw_date)[:10])
        except ValueError:
            logger.warning("Ignoring unparseable receipt date %r", raw_date)

    try:
        return Receipt(
            owner_id=str(_first(data, "owner_id", "user_id", default="")),
            merchant=str(_first(data, "merchant", "merchant_name", "vendor_text", default="Unknown")),
            total=_amount(_first(data, "total", "total_amount")),
            subtotal=_amount(data.get("subtotal")),
            tax=_amount(data.get("tax")),
            receipt_date=receipt_date,
            raw_text=str(_first(data, "raw_text", "raw_ocr", default="")),
            line_items=_line_items(_first(data, "line_items", "items")),
            status=ReceiptStatus.OCR_DONE,
            source_hash=source_hash,
        )
    except ValidationError as e:
        raise IngestError(str(e).splitlines()[0]) from e


def load_extraction(path: str | Path) -> Receipt:
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise IngestError(f"{path.name}: {e}") from e
    if not isinstance(data, dict):
        raise IngestError(f"{path.name}: expected a JSON object")
    return parse_extraction(data, file_hash(path))


def ingest_file(storage: StorageAdapter, path: str | Path, force: bool = False) -> tuple[Receipt, bool]:
    """Store and enqueue one extraction file. Returns ``(receipt, created)``."""
    receipt = load_extraction(path)
    existing = storage.find_receipt_by_hash(receipt.source_hash)
    if existing and not force:
        logger.info("Skipping %s, already ingested as %s", path, existing.id)
        return existing, False
    if existing and existing.status == ReceiptStatus.CATEGORIZED:
        # Categorized is final; a fresh ocr_done copy would roll it back
        logger.warning("Not re-ingesting %s, receipt %s is already categorized", path, existing.id)
        return existing, False
    if existing and force:
        receipt.id = existing.id
        receipt.created_at = existing.created_at
        if existing.status == ReceiptStatus.FAILED:
            receipt.status = ReceiptStatus.FAILED

    storage.save_receipt(receipt)
    storage.enqueue(receipt.id)
    logger.info("Ingested %s as receipt %s", path, receipt.id)
    return receipt, True
