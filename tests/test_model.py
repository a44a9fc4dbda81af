"""Unit tests for the model fallback adapter. No network: the client is faked."""
import time
from datetime import date
from decimal import Decimal

import anthropic
import httpx
import pytest

from conftest import fake_client
from receipt_categorizer.classification.model import (
    ModelClassifier,
    ReceiptSnippet,
    build_prompt,
    build_snippet,
    parse_reply,
    strip_pii,
)
from receipt_categorizer.models.categories import list_categories
from receipt_categorizer.models.outcome import FailureReason, ModelFailure, ModelSuccess
from receipt_categorizer.models.receipt import LineItem, Receipt

SNIPPET = ReceiptSnippet(merchant="XYZ Unknown Store", total=Decimal("10.77"), raw_text="Hummus 3.99")


# =====================================================================
# Snippet and prompt
# =====================================================================
class TestSnippet:
    def test_pii_is_masked(self):
        text = strip_pii("Call 555-123-4567 or mail joe@example.com, 90210")
        assert "555-123-4567" not in text
        assert "joe@example.com" not in text
        assert "[PHONE]" in text
        assert "[EMAIL]" in text
        assert "[ZIP]" in text

    def test_bounded(self):
        receipt = Receipt(
            merchant="Market",
            raw_text="x" * 5000,
            line_items=[LineItem(description="y" * 200, amount=Decimal("1")) for _ in range(30)],
        )
        snippet = build_snippet(receipt, max_items=5, max_description=20, max_raw_text=100)
        assert len(snippet.line_items) == 5
        assert all(len(d) <= 21 for d, _ in snippet.line_items)
        assert len(snippet.raw_text) <= 101

    def test_empty_merchant_becomes_unknown(self):
        snippet = build_snippet(Receipt(merchant="  ", receipt_date=date(2024, 3, 1)))
        assert snippet.merchant == "Unknown"
        assert snippet.date == "2024-03-01"

    def test_prompt_lists_every_category(self):
        prompt = build_prompt(SNIPPET)
        for category in list_categories():
            assert category.name in prompt
        assert "XYZ Unknown Store" in prompt
        assert "Hummus 3.99" in prompt


# =====================================================================
# Reply parsing
# =====================================================================
class TestParseReply:
    def test_valid(self):
        outcome = parse_reply('{"category": "Meals", "confidence": 0.82, "reasoning": "food"}')
        assert isinstance(outcome, ModelSuccess)
        assert outcome.category.id == "meals"
        assert outcome.confidence == pytest.approx(0.82)
        assert outcome.reasoning == "food"

    def test_json_inside_prose(self):
        outcome = parse_reply('Sure! {"category": "travel", "confidence": 0.9} hope that helps')
        assert isinstance(outcome, ModelSuccess)
        assert outcome.category.id == "travel"

    def test_category_name_is_case_insensitive(self):
        outcome = parse_reply('{"category": "  office expenses ", "confidence": 0.7}')
        assert outcome.category.id == "office"

    @pytest.mark.parametrize("raw,expected", [(1.7, 1.0), (-0.2, 0.0)])
    def test_confidence_clamped(self, raw, expected):
        outcome = parse_reply(f'{{"category": "Meals", "confidence": {raw}}}')
        assert outcome.confidence == expected

    def test_unknown_category(self):
        outcome = parse_reply('{"category": "NotARealCategory", "confidence": 0.9}')
        assert isinstance(outcome, ModelFailure)
        assert outcome.reason == FailureReason.UNKNOWN_CATEGORY
        assert outcome.detail == "NotARealCategory"

    @pytest.mark.parametrize("text", [
        "",
        "I think it's meals",
        '{"category": "Meals", "confidence": }',
        '{"category": "Meals"}',
        '{"category": "Meals", "confidence": "very"}',
        '{"category": "Meals", "confidence": NaN}',
        '{"category": "Meals", "confidence": Infinity}',
    ])
    def test_invalid_json(self, text):
        outcome = parse_reply(text)
        assert isinstance(outcome, ModelFailure)
        assert outcome.reason == FailureReason.INVALID_JSON


# =====================================================================
# Classifier
# =====================================================================
class TestClassifier:
    def test_success(self):
        client = fake_client('{"category": "Meals", "confidence": 0.8, "reasoning": "groceries"}')
        outcome = ModelClassifier(client=client, model="test-model").classify(SNIPPET)
        assert isinstance(outcome, ModelSuccess)
        assert outcome.category.id == "meals"
        [call] = client.calls
        assert call["model"] == "test-model"
        assert call["temperature"] == 0

    def test_version(self):
        assert ModelClassifier(api_key="k", model="m").version == "claude@m"

    def test_missing_key(self):
        outcome = ModelClassifier(api_key="").classify(SNIPPET)
        assert outcome.reason == FailureReason.UPSTREAM_ERROR
        assert "ANTHROPIC_API_KEY" in outcome.detail

    def test_client_error(self):
        client = fake_client(exc=RuntimeError("connection reset"))
        outcome = ModelClassifier(client=client).classify(SNIPPET)
        assert isinstance(outcome, ModelFailure)
        assert outcome.reason == FailureReason.UPSTREAM_ERROR

    def test_sdk_timeout(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = fake_client(exc=anthropic.APITimeoutError(request=request))
        outcome = ModelClassifier(client=client).classify(SNIPPET)
        assert outcome.reason == FailureReason.TIMEOUT

    def test_non_2xx_status(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(529, request=request)
        exc = anthropic.APIStatusError("overloaded", response=response, body=None)
        outcome = ModelClassifier(client=fake_client(exc=exc)).classify(SNIPPET)
        assert outcome.reason == FailureReason.UPSTREAM_ERROR
        assert outcome.detail == "HTTP 529"

    def test_nan_confidence(self):
        client = fake_client('{"category": "Meals", "confidence": NaN}')
        outcome = ModelClassifier(client=client).classify(SNIPPET)
        assert outcome.reason == FailureReason.INVALID_JSON

    def test_garbage_reply(self):
        outcome = ModelClassifier(client=fake_client("no idea")).classify(SNIPPET)
        assert outcome.reason == FailureReason.INVALID_JSON

    def test_timeout_is_bounded(self):
        client = fake_client('{"category": "Meals", "confidence": 0.8}', delay=2.0)
        started = time.monotonic()
        outcome = ModelClassifier(client=client, timeout=0.2).classify(SNIPPET)
        elapsed = time.monotonic() - started
        assert outcome.reason == FailureReason.TIMEOUT
        assert elapsed < 0.2 + 0.5
