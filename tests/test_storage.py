"""LocalJsonStorage tests."""
from decimal import Decimal

import pytest

from receipt_categorizer.errors import InvalidTransition, StorageError
from receipt_categorizer.models.receipt import CategoryMethod, Prediction, Receipt, ReceiptStatus
from receipt_categorizer.storage.local_json import RECEIPTS, LocalJsonStorage


class TestReceipts:
    def test_save_and_load(self, storage):
        receipt = Receipt(merchant="Staples", total=Decimal("12.50"), status=ReceiptStatus.OCR_DONE)
        storage.save_receipt(receipt)
        [loaded] = storage.load_receipts()
        assert loaded.merchant == "Staples"
        assert loaded.total == Decimal("12.50")

    def test_save_replaces_by_id(self, storage):
        receipt = Receipt(merchant="Staples")
        storage.save_receipt(receipt)
        receipt.merchant = "Staples Inc"
        storage.save_receipt(receipt)
        assert [r.merchant for r in storage.load_receipts()] == ["Staples Inc"]

    def test_filter_by_status(self, storage, make_receipt):
        make_receipt(status=ReceiptStatus.OCR_DONE)
        make_receipt(status=ReceiptStatus.PENDING)
        assert len(storage.load_receipts(ReceiptStatus.PENDING)) == 1

    def test_find_by_prefix(self, storage, make_receipt):
        receipt = make_receipt()
        assert storage.find_receipt(receipt.id[:8]).id == receipt.id
        assert storage.find_receipt("") is None
        assert storage.find_receipt("nope") is None

    def test_find_by_hash(self, storage, make_receipt):
        receipt = make_receipt(source_hash="abc")
        assert storage.find_receipt_by_hash("abc").id == receipt.id
        assert storage.find_receipt_by_hash("") is None

    def test_corrupt_table(self, tmp_path):
        storage = LocalJsonStorage(tmp_path)
        (tmp_path / RECEIPTS).write_text("{not json")
        with pytest.raises(StorageError):
            storage.load_receipts()


class TestConditionalUpdate:
    def test_applies_when_status_matches(self, storage, make_receipt):
        receipt = make_receipt()
        updated = storage.update_receipt_if(
            receipt.id, [ReceiptStatus.OCR_DONE],
            status=ReceiptStatus.CATEGORIZED, category="Meals", category_id="meals",
            category_confidence=0.9, category_method=CategoryMethod.MODEL,
        )
        assert updated.status == ReceiptStatus.CATEGORIZED
        assert updated.updated_at > receipt.updated_at
        assert storage.find_receipt(receipt.id).category_id == "meals"

    def test_skipped_when_status_differs(self, storage, make_receipt):
        receipt = make_receipt(status=ReceiptStatus.CATEGORIZED)
        result = storage.update_receipt_if(receipt.id, [ReceiptStatus.OCR_DONE], category_id="meals")
        assert result is None
        assert storage.find_receipt(receipt.id).category_id is None

    def test_missing_receipt(self, storage):
        assert storage.update_receipt_if("missing", [ReceiptStatus.OCR_DONE]) is None

    def test_backward_transition_rejected(self, storage, make_receipt):
        receipt = make_receipt(status=ReceiptStatus.OCR_DONE)
        with pytest.raises(InvalidTransition):
            storage.update_receipt_if(receipt.id, [ReceiptStatus.OCR_DONE], status=ReceiptStatus.PENDING)
        assert storage.find_receipt(receipt.id).status == ReceiptStatus.OCR_DONE

    def test_out_of_range_confidence_rejected(self, storage, make_receipt):
        receipt = make_receipt()
        with pytest.raises(ValueError):
            storage.update_receipt_if(receipt.id, [ReceiptStatus.OCR_DONE], category_confidence=1.5)


class TestPredictions:
    def test_append_only_log(self, storage):
        storage.add_prediction(Prediction(subject_id="r1", method=CategoryMethod.RULE))
        storage.add_prediction(Prediction(subject_id="r1", method=CategoryMethod.HEURISTIC, category_id="meals", confidence=0.7))
        storage.add_prediction(Prediction(subject_id="r2", method=CategoryMethod.RULE))
        assert [p.method for p in storage.list_predictions("r1")] == [CategoryMethod.RULE, CategoryMethod.HEURISTIC]


class TestQueueTables:
    def test_pending_skips_exhausted(self, storage):
        item = storage.enqueue("r1")
        item.attempts = 3
        storage.save_queue_item(item)
        assert storage.pending_queue_items(3, 10) == []
        assert len(storage.pending_queue_items(4, 10)) == 1

    def test_requeue_unknown(self, storage):
        assert storage.requeue("r1") is None
