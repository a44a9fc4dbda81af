"""3-stage categorization pipeline: rules -> context heuristics -> model.

Stages run strictly in that order and stop at the first accepted answer; the
model is the only slow and paid stage, so it only sees what the first two
could not place. Every attempted stage leaves a Prediction row behind.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from receipt_categorizer import config
from receipt_categorizer.classification.context import pick_category, score_categories
from receipt_categorizer.classification.model import ModelClassifier, build_snippet
from receipt_categorizer.classification.rules import classify_by_rule
from receipt_categorizer.errors import StorageError
from receipt_categorizer.models.categories import Category, find_category, get_category
from receipt_categorizer.models.outcome import (
    CategorizationResult,
    CategoryScore,
    HeuristicPick,
    ModelFailure,
    RuleMatch,
    StageTrace,
)
from receipt_categorizer.models.receipt import (
    CategoryMethod,
    LineItem,
    Prediction,
    Receipt,
    ReceiptStatus,
)
from receipt_categorizer.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)

CATEGORIZABLE = (ReceiptStatus.OCR_DONE, ReceiptStatus.FAILED)


def _top_scores(scores: list[CategoryScore], n: int = 3) -> list[dict[str, Any]]:
    return [{"category_id": s.category.id, "score": round(s.score, 3)} for s in scores[:n]]


class Categorizer:
    """Drives one receipt from ``ocr_done`` to ``categorized``.

    ``categorize`` never raises: bad input, model failures, storage faults and
    bugs all come back as a ``CategorizationResult`` with ``ok=False`` and a
    reason code.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        model: ModelClassifier | None = None,
        threshold: float = config.HEURISTIC_THRESHOLD,
        default_category_id: str = config.DEFAULT_CATEGORY_ID,
        classify_rule: Callable[[str], RuleMatch | None] = classify_by_rule,
        score: Callable[..., list[CategoryScore]] = score_categories,
    ) -> None:
        if get_category(default_category_id) is None:
            raise ValueError(f"unknown default category {default_category_id!r}")
        self.storage = storage
        self.model = model or ModelClassifier()
        self.threshold = threshold
        self.default_category_id = default_category_id
        self._classify_rule = classify_rule
        self._score = score

    # public API

    def categorize(self, receipt_id: str) -> CategorizationResult:
        try:
            return self._categorize(receipt_id)
        except StorageError as e:
            logger.error("Storage failure while categorizing %s: %s", receipt_id, e)
            return CategorizationResult(receipt_id, ok=False, reason="storage_error")
        except Exception:
            logger.exception("Unexpected failure while categorizing %s", receipt_id)
            return CategorizationResult(receipt_id, ok=False, reason="internal_error")

    def categorize_pending(self, limit: int = config.BATCH_LIMIT) -> list[CategorizationResult]:
        """Categorize every receipt currently waiting in ``ocr_done``."""
        receipts = self.storage.load_receipts(ReceiptStatus.OCR_DONE)[:limit]
        logger.info("Batch: %d receipts to categorize", len(receipts))
        return [self.categorize(r.id) for r in receipts]

    def explain(
        self,
        merchant: str,
        raw_text: str = "",
        line_items: Iterable[LineItem | str] = (),
    ) -> tuple[RuleMatch | None, list[CategoryScore], HeuristicPick]:
        """Dry run of the two deterministic stages; nothing is persisted."""
        items = list(line_items)
        match = self._classify_rule(merchant)
        scores = self._score(merchant, raw_text, items)
        return match, scores, pick_category(scores, self.threshold, self.default_category_id)

    # stages

    def _categorize(self, receipt_id: str) -> CategorizationResult:
        receipt = self.storage.find_receipt(receipt_id)
        if receipt is None:
            logger.warning("Receipt not found: %s", receipt_id)
            return CategorizationResult(receipt_id, ok=False, reason="not_found")

        if receipt.status == ReceiptStatus.CATEGORIZED:
            logger.info("Receipt %s already categorized, nothing to do", receipt.id)
            return self._stored_result(receipt, [])

        if receipt.status not in CATEGORIZABLE:
            logger.error("Receipt %s is %s, expected ocr_done", receipt.id, receipt.status.value)
            return CategorizationResult(receipt.id, ok=False, reason="invalid_state")

        trace: list[StageTrace] = []

        # Stage 1: rules are trusted as ground truth, any hit is accepted
        match = self._classify_rule(receipt.merchant)
        if match is not None:
            details = {"source": match.source, "pattern": match.pattern}
            self._record(receipt, CategoryMethod.RULE, match.category, match.confidence, details, trace)
            return self._commit(receipt, match.category, match.confidence, CategoryMethod.RULE, trace)
        self._record(receipt, CategoryMethod.RULE, None, None, {"reason": "no_match"}, trace)

        # Stage 2: context heuristics, accepted unless we fell back to the default
        scores = self._score(receipt.merchant, receipt.raw_text, receipt.line_items)
        pick = pick_category(scores, self.threshold, self.default_category_id)
        details = {"top_scores": _top_scores(scores), "threshold": self.threshold}
        if not pick.low_confidence:
            self._record(receipt, CategoryMethod.HEURISTIC, pick.category, pick.confidence, details, trace)
            return self._commit(receipt, pick.category, pick.confidence, CategoryMethod.HEURISTIC, trace)
        details.update(reason="below_threshold", default_category_id=pick.category.id)
        self._record(receipt, CategoryMethod.HEURISTIC, None, None, details, trace)

        # Stage 3: model fallback
        outcome = self.model.classify(build_snippet(receipt))
        if isinstance(outcome, ModelFailure):
            details = {"reason": outcome.reason.value, "detail": outcome.detail, "version": self.model.version}
            self._record(receipt, CategoryMethod.MODEL, None, None, details, trace, outcome="failed")
            reason = outcome.reason.value if receipt.has_content else "insufficient_data"
            logger.warning("Receipt %s not categorized: %s", receipt.id, reason)
            return CategorizationResult(receipt.id, ok=False, reason=reason, trace=trace)

        details = {"reasoning": outcome.reasoning, "version": self.model.version}
        self._record(receipt, CategoryMethod.MODEL, outcome.category, outcome.confidence, details, trace)
        return self._commit(receipt, outcome.category, outcome.confidence, CategoryMethod.MODEL, trace)

    def _record(
        self,
        receipt: Receipt,
        method: CategoryMethod,
        category: Category | None,
        confidence: float | None,
        details: dict[str, Any],
        trace: list[StageTrace],
        outcome: str | None = None,
    ) -> None:
        if outcome is None:
            outcome = "accepted" if category is not None else "rejected"
        category_id = category.id if category else None
        self.storage.add_prediction(Prediction(
            subject_id=receipt.id,
            method=method,
            category_id=category_id,
            confidence=confidence,
            details=details,
        ))
        trace.append(StageTrace(method, outcome, category_id, confidence, details))
        logger.info(
            "Receipt %s %s stage %s%s", receipt.id, method.value, outcome,
            f" -> {category_id} ({confidence:.2f})" if category_id else "",
        )

    def _commit(
        self,
        receipt: Receipt,
        category: Category,
        confidence: float,
        method: CategoryMethod,
        trace: list[StageTrace],
    ) -> CategorizationResult:
        # Status and category fields go in one conditional write, keyed on the
        # status we started from
        updated = self.storage.update_receipt_if(
            receipt.id,
            [receipt.status],
            status=ReceiptStatus.CATEGORIZED,
            category=category.name,
            category_id=category.id,
            category_confidence=confidence,
            category_method=method,
        )
        if updated is not None:
            return self._stored_result(updated, trace, idempotent=False)

        current = self.storage.find_receipt(receipt.id)
        if current is not None and current.status == ReceiptStatus.CATEGORIZED:
            logger.info("Receipt %s was categorized concurrently, keeping stored result", receipt.id)
            return self._stored_result(current, trace)
        logger.warning("Receipt %s changed state during categorization", receipt.id)
        return CategorizationResult(receipt.id, ok=False, reason="conflict", trace=trace)

    @staticmethod
    def _stored_result(
        receipt: Receipt, trace: list[StageTrace], idempotent: bool = True,
    ) -> CategorizationResult:
        category = find_category(receipt.category_id) if receipt.category_id else None
        return CategorizationResult(
            receipt.id,
            ok=True,
            category=category.name if category else receipt.category,
            category_id=receipt.category_id,
            confidence=receipt.category_confidence,
            method=receipt.category_method,
            idempotent=idempotent,
            trace=trace,
        )
