"""Stage results and the orchestrator's outcome record."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from receipt_categorizer.models.categories import Category
from receipt_categorizer.models.receipt import CategoryMethod


@dataclass(frozen=True)
class RuleMatch:
    category: Category
    confidence: float
    source: str  # "vendor" | "keyword"
    pattern: str


@dataclass(frozen=True)
class CategoryScore:
    category: Category
    score: float


@dataclass(frozen=True)
class HeuristicPick:
    category: Category
    confidence: float
    score: float
    low_confidence: bool


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    INVALID_JSON = "invalid_json"
    UNKNOWN_CATEGORY = "unknown_category"
    UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True)
class ModelSuccess:
    category: Category
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True)
class ModelFailure:
    reason: FailureReason
    detail: str = ""


ModelOutcome = ModelSuccess | ModelFailure


# Outcomes a later queue attempt might turn into a success
RETRYABLE_REASONS = frozenset({
    FailureReason.TIMEOUT.value,
    FailureReason.UPSTREAM_ERROR.value,
    "storage_error",
    "internal_error",
    "conflict",
})


@dataclass(frozen=True)
class StageTrace:
    stage: CategoryMethod
    outcome: str  # "accepted" | "rejected" | "failed"
    category_id: str | None = None
    confidence: float | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CategorizationResult:
    receipt_id: str
    ok: bool
    category: str | None = None
    category_id: str | None = None
    confidence: float | None = None
    method: CategoryMethod | None = None
    reason: str | None = None
    idempotent: bool = False
    trace: list[StageTrace] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return not self.ok and self.reason in RETRYABLE_REASONS

    def to_payload(self) -> dict[str, Any]:
        """Inbound trigger response shape."""
        payload: dict[str, Any] = {"ok": self.ok}
        if self.ok:
            payload.update(
                category=self.category,
                category_id=self.category_id,
                confidence=self.confidence,
                method=self.method.value if self.method else None,
            )
        else:
            payload["reason"] = self.reason
        return payload
