"""Stage 1: deterministic vendor / keyword rules.

Pure lookup against the merchant name. A hit here is trusted as ground truth
by the orchestrator, so both tables only hold well-known vendors and
unambiguous keywords.
"""

from __future__ import annotations

import re

from receipt_categorizer.models.categories import get_category
from receipt_categorizer.models.outcome import RuleMatch

# (fragment, category id, confidence). First fragment contained in the
# lower-cased merchant wins, so order matters: "shell" must beat "gas".
VENDOR_RULES: tuple[tuple[str, str, float], ...] = (
    # Meals
    ("mcdonalds", "meals", 0.95),
    ("starbucks", "meals", 0.95),
    ("chipotle", "meals", 0.95),
    ("subway", "meals", 0.95),
    ("pizza", "meals", 0.90),
    ("restaurant", "meals", 0.85),
    ("cafe", "meals", 0.85),
    ("diner", "meals", 0.85),
    ("bar", "meals", 0.80),
    # Office
    ("staples", "office", 0.95),
    ("office depot", "office", 0.95),
    ("fedex", "office", 0.85),
    ("ups", "office", 0.85),
    # Car and truck
    ("shell", "car_and_truck", 0.95),
    ("chevron", "car_and_truck", 0.95),
    ("exxon", "car_and_truck", 0.95),
    ("bp", "car_and_truck", 0.95),
    ("mobil", "car_and_truck", 0.95),
    ("texaco", "car_and_truck", 0.95),
    ("gas station", "car_and_truck", 0.90),
    ("auto", "car_and_truck", 0.80),
    ("mechanic", "car_and_truck", 0.85),
    # Travel
    ("hotel", "travel", 0.95),
    ("marriott", "travel", 0.95),
    ("hilton", "travel", 0.95),
    ("airbnb", "travel", 0.95),
    ("airline", "travel", 0.95),
    ("united", "travel", 0.90),
    ("delta", "travel", 0.90),
    ("southwest", "travel", 0.90),
    # Supplies
    ("amazon", "supplies", 0.70),
    ("walmart", "supplies", 0.65),
    ("target", "supplies", 0.65),
    ("costco", "supplies", 0.65),
    ("home depot", "supplies", 0.75),
    ("lowes", "supplies", 0.75),
    # Utilities
    ("electric", "utilities", 0.95),
    ("water", "utilities", 0.95),
    ("gas", "utilities", 0.90),
    ("internet", "utilities", 0.95),
    ("phone", "utilities", 0.90),
    # Advertising
    ("facebook", "advertising", 0.90),
    ("google", "advertising", 0.80),
    ("instagram", "advertising", 0.90),
)

# (pattern, category id, confidence). Only consulted when no vendor fragment
# matched; the most confident matching pattern wins, earlier entries on ties.
KEYWORD_RULES: tuple[tuple[re.Pattern[str], str, float], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), category_id, confidence)
    for pattern, category_id, confidence in (
        (r"fuel|gas|petrol|diesel", "car_and_truck", 0.90),
        (r"hotel|motel|inn|lodge", "travel", 0.90),
        (r"flight|airline|airport", "travel", 0.95),
        (r"office|desk|chair|supplies", "office", 0.85),
        (r"food|restaurant|cafe|coffee|lunch|dinner", "meals", 0.85),
        (r"electricity|power|utility|water|sewer", "utilities", 0.90),
        (r"repair|maintenance|service|mechanic", "car_and_truck", 0.80),
    )
)


def _norm(s: str | None) -> str:
    if not s:
        return ""
    return re.sub(r"\s+", " ", s.lower().strip())


def match_vendor(merchant: str | None) -> RuleMatch | None:
    """First vendor fragment contained in the merchant name."""
    name = _norm(merchant)
    if not name:
        return None
    for fragment, category_id, confidence in VENDOR_RULES:
        if fragment in name:
            return RuleMatch(get_category(category_id), confidence, "vendor", fragment)
    return None


def match_keywords(merchant: str | None) -> RuleMatch | None:
    """Most confident keyword pattern found in the merchant name."""
    name = _norm(merchant)
    if not name:
        return None
    best: RuleMatch | None = None
    for pattern, category_id, confidence in KEYWORD_RULES:
        if pattern.search(name) and (best is None or confidence > best.confidence):
            best = RuleMatch(get_category(category_id), confidence, "keyword", pattern.pattern)
    return best


def classify_by_rule(merchant: str | None) -> RuleMatch | None:
    """Vendor table first, keyword patterns second. None when neither hits."""
    return match_vendor(merchant) or match_keywords(merchant)
