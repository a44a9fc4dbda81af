import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest

from receipt_categorizer.models.categories import find_category
from receipt_categorizer.models.outcome import FailureReason, ModelFailure, ModelSuccess
from receipt_categorizer.models.receipt import LineItem, Receipt, ReceiptStatus
from receipt_categorizer.storage.local_json import LocalJsonStorage


class FakeModel:
    """Scripted stand-in for ModelClassifier; replays outcomes in order."""

    version = "fake@test"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [ModelSuccess(find_category("meals"), 0.8, "groceries")]
        self.calls = 0
        self.snippets = []
        self._lock = threading.Lock()

    def classify(self, snippet):
        with self._lock:
            self.calls += 1
            self.snippets.append(snippet)
            index = min(self.calls - 1, len(self.outcomes) - 1)
            return self.outcomes[index]


def fake_client(text=None, exc=None, delay=0.0):
    """Object shaped like ``anthropic.Anthropic`` for ``messages.create``."""
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if delay:
            threading.Event().wait(delay)
        if exc is not None:
            raise exc
        return SimpleNamespace(content=[SimpleNamespace(text=text)])

    return SimpleNamespace(messages=SimpleNamespace(create=create), calls=calls)


@pytest.fixture
def storage(tmp_path):
    return LocalJsonStorage(tmp_path / "data")


@pytest.fixture
def make_receipt(storage):
    def _make(merchant="Shell Gas Station", raw_text="", items=(), status=ReceiptStatus.OCR_DONE, **kw):
        receipt = Receipt(
            merchant=merchant,
            raw_text=raw_text,
            line_items=[LineItem(description=d, amount=Decimal("1.00")) for d in items],
            total=kw.pop("total", Decimal("42.10")),
            status=status,
            **kw,
        )
        storage.save_receipt(receipt)
        return receipt
    return _make


@pytest.fixture
def model_success():
    def _success(category_id="meals", confidence=0.8, reasoning="groceries"):
        return ModelSuccess(find_category(category_id), confidence, reasoning)
    return _success


@pytest.fixture
def model_failure():
    def _failure(reason=FailureReason.TIMEOUT, detail=""):
        return ModelFailure(reason, detail)
    return _failure
