"""Stage 3: Claude fallback for receipts the rules and heuristics cannot place."""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from receipt_categorizer import config
from receipt_categorizer.models.categories import find_category, list_categories
from receipt_categorizer.models.outcome import (
    FailureReason,
    ModelFailure,
    ModelOutcome,
    ModelSuccess,
)
from receipt_categorizer.models.receipt import Receipt

logger = logging.getLogger(__name__)

GUIDANCE = """\
- Meals: restaurants, cafes, bars, food service, dining establishments
- Supplies: retail stores, supermarkets, hardware stores, merchandise
- Travel: flights, hotels, transportation, lodging
- Utilities: telecom, ISP, power, phone services
- Office Expenses: office supplies, software, SaaS, shipping, office services
- Car and Truck Expenses: gas, fuel, parking, vehicle maintenance and repairs
- Taxes and Licenses: permits, registrations, government fees
- Advertising: ads, marketing, promotion
- Other: anything that doesn't fit above"""

_PII_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[PHONE]"),
    (re.compile(r"\b\d{5}(?:-\d{4})?\b"), "[ZIP]"),
    (re.compile(r"\b[A-Z]{2}\s\d{5}\b"), "[ADDRESS]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

# Shared by all classifiers; a call that outlives its timeout keeps its thread
# until the HTTP client gives up, the caller does not wait for it.
_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="model-call")


def strip_pii(text: str) -> str:
    for pattern, token in _PII_PATTERNS:
        text = pattern.sub(token, text)
    return text


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit].rstrip() + "…"


@dataclass(frozen=True)
class ReceiptSnippet:
    """The bounded slice of a receipt that is sent to the model."""

    merchant: str
    total: Decimal
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    date: str = ""
    line_items: list[tuple[str, Decimal]] = field(default_factory=list)
    raw_text: str = ""


def build_snippet(
    receipt: Receipt,
    max_items: int = config.SNIPPET_MAX_LINE_ITEMS,
    max_description: int = config.SNIPPET_MAX_DESCRIPTION_CHARS,
    max_raw_text: int = config.SNIPPET_MAX_RAW_TEXT_CHARS,
) -> ReceiptSnippet:
    return ReceiptSnippet(
        merchant=strip_pii(receipt.merchant.strip() or "Unknown"),
        total=receipt.total,
        subtotal=receipt.subtotal,
        tax=receipt.tax,
        date=receipt.receipt_date.isoformat() if receipt.receipt_date else "",
        line_items=[
            (_truncate(item.description, max_description), item.amount)
            for item in receipt.line_items[:max_items]
        ],
        raw_text=_truncate(strip_pii(receipt.raw_text), max_raw_text),
    )


def build_prompt(snippet: ReceiptSnippet) -> str:
    names = "\n".join(f"- {c.name}" for c in list_categories())
    lines = [f"- Vendor: {snippet.merchant}", f"- Total: {snippet.total}"]
    if snippet.subtotal:
        lines.append(f"- Subtotal: {snippet.subtotal}")
    if snippet.tax:
        lines.append(f"- Tax: {snippet.tax}")
    if snippet.date:
        lines.append(f"- Date: {snippet.date}")
    for description, amount in snippet.line_items:
        lines.append(f"- Item: {description} ({amount})")
    receipt_block = "\n".join(lines)
    if snippet.raw_text:
        receipt_block += f"\n\nRaw OCR text:\n{snippet.raw_text}"

    return f"""\
You are an expert receipt categorizer for business expenses. Output only strict JSON:
{{"category": "<one of the allowed names>", "confidence": 0.0-1.0, "reasoning": "<short rationale>"}}

Allowed categories:
{names}

Guidance:
{GUIDANCE}

Receipt data:
{receipt_block}

Be confident (0.65-0.95) if the category is clear. Return ONLY valid JSON."""


class ModelReply(BaseModel):
    category: str
    confidence: float = Field(allow_inf_nan=False)
    reasoning: str = ""


def parse_reply(text: str) -> ModelOutcome:
    """Validate the raw model text into a tagged outcome."""
    m = _JSON_BLOCK.search(text or "")
    if not m:
        return ModelFailure(FailureReason.INVALID_JSON, "no JSON object in reply")
    try:
        reply = ModelReply.model_validate(json.loads(m.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        return ModelFailure(FailureReason.INVALID_JSON, str(e).splitlines()[0])

    category = find_category(reply.category)
    if category is None:
        return ModelFailure(FailureReason.UNKNOWN_CATEGORY, reply.category)
    confidence = min(max(reply.confidence, 0.0), 1.0)
    return ModelSuccess(category, confidence, reply.reasoning)


class ModelClassifier:
    """Narrow wrapper around the Anthropic Messages API.

    ``classify`` always returns within ``timeout`` seconds (plus scheduling
    overhead) and never raises; every failure comes back as a ``ModelFailure``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = config.MODEL_NAME,
        timeout: float = config.MODEL_TIMEOUT_SECONDS,
        client: Any = None,
    ) -> None:
        self.api_key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def version(self) -> str:
        return f"claude@{self.model}"

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic

            self._client = anthropic.Anthropic(
                api_key=self.api_key, timeout=self.timeout, max_retries=0,
            )
        return self._client

    def _complete(self, prompt: str) -> str:
        message = self._get_client().messages.create(
            model=self.model,
            max_tokens=config.MODEL_MAX_TOKENS,
            temperature=0,
            messages=[{"role": "user", "content": prompt}],
        )
        return message.content[0].text

    def classify(self, snippet: ReceiptSnippet) -> ModelOutcome:
        if self._client is None and not self.api_key:
            return ModelFailure(FailureReason.UPSTREAM_ERROR, "ANTHROPIC_API_KEY not set")

        future = _EXECUTOR.submit(self._complete, build_prompt(snippet))
        try:
            text = future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Model call exceeded %.1fs", self.timeout)
            return ModelFailure(FailureReason.TIMEOUT, f"no reply within {self.timeout}s")
        except Exception as e:
            return self._failure_from(e)

        outcome = parse_reply(text)
        if isinstance(outcome, ModelFailure):
            logger.warning("Model reply rejected (%s): %.200s", outcome.reason.value, text)
        return outcome

    @staticmethod
    def _failure_from(exc: Exception) -> ModelFailure:
        import anthropic

        if isinstance(exc, anthropic.APITimeoutError):
            return ModelFailure(FailureReason.TIMEOUT, str(exc))
        if isinstance(exc, anthropic.APIStatusError):
            logger.warning("Model API returned %s", exc.status_code)
            return ModelFailure(FailureReason.UPSTREAM_ERROR, f"HTTP {exc.status_code}")
        logger.warning("Model call failed: %s", exc)
        return ModelFailure(FailureReason.UPSTREAM_ERROR, f"{type(exc).__name__}: {exc}")
