"""Stage 2: weighted keyword scoring across merchant, line items and OCR text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from receipt_categorizer.config import DEFAULT_CATEGORY_ID, HEURISTIC_THRESHOLD
from receipt_categorizer.models.categories import get_category
from receipt_categorizer.models.outcome import CategoryScore, HeuristicPick
from receipt_categorizer.models.receipt import LineItem

MERCHANT_FACTOR = 2.0
LINE_ITEM_FACTOR = 1.5
MISSING_REQUIRED_PENALTY = 0.5
EXCLUDED_PENALTY = 0.3

DEFAULT_CONFIDENCE = 0.5
MAX_CONFIDENCE = 0.85


@dataclass(frozen=True)
class KeywordProfile:
    category_id: str
    weight: float
    keywords: tuple[str, ...]
    required: tuple[str, ...] = ()
    excluded: tuple[str, ...] = ()


# Declared order is the tie-break order of the final ranking
CATEGORY_KEYWORDS: tuple[KeywordProfile, ...] = (
    KeywordProfile(
        "advertising", 1.2,
        ("advertising", "marketing", "promotion", "ad spend", "campaign", "media buy",
         "social media", "facebook ads", "google ads", "billboard", "seo", "ppc",
         "branding", "agency", "creative", "design"),
        required=("ad", "campaign", "marketing"),
        excluded=("food", "restaurant"),
    ),
    KeywordProfile(
        "car_and_truck", 1.1,
        ("fuel", "gas", "parking", "toll", "maintenance", "repair", "tire", "oil change",
         "car wash", "vehicle", "auto parts", "automotive", "mechanic", "smog",
         "transmission", "brake", "engine", "shell", "chevron", "exxon", "mobil",
         "valvoline", "autozone", "pep boys", "jiffy lube"),
        required=("auto", "car", "vehicle", "gas"),
        excluded=("restaurant", "food"),
    ),
    KeywordProfile(
        "office", 1.0,
        ("office", "supplies", "stationery", "printer", "ink", "paper", "desk",
         "staples", "office depot", "filing", "storage", "computer", "software",
         "hardware", "monitor", "keyboard", "mouse", "office max", "workspace",
         "ergonomic", "chair", "furniture"),
    ),
    KeywordProfile(
        "travel", 1.2,
        ("hotel", "flight", "airline", "airfare", "lodging", "taxi", "uber",
         "lyft", "rental car", "train", "transportation", "booking.com", "expedia",
         "airbnb", "marriott", "hilton", "delta", "united", "american airlines",
         "southwest", "enterprise", "hertz", "avis", "travelocity"),
        excluded=("food delivery", "restaurant"),
    ),
    KeywordProfile(
        "meals", 1.0,
        ("restaurant", "cafe", "coffee", "food", "lunch", "dinner", "breakfast",
         "meal", "dining", "takeout", "delivery", "grocery", "pizzeria", "bistro",
         "bakery", "deli", "steakhouse", "sushi", "burger", "sandwich", "bar",
         "grill", "kitchen", "seafood", "mcdonalds", "wendys", "subway", "chipotle",
         "starbucks", "dunkin", "dominos", "pizza hut"),
        required=("food", "restaurant", "cafe", "bar", "grill"),
    ),
    KeywordProfile(
        "utilities", 1.3,
        ("electricity", "water", "gas", "internet", "phone", "utility",
         "power", "energy", "waste", "sewage", "telecom", "cable", "broadband",
         "verizon", "at&t", "comcast", "spectrum", "pg&e", "water bill",
         "electric bill", "utility bill"),
        required=("bill", "utility", "service"),
        excluded=("restaurant", "food"),
    ),
    KeywordProfile(
        "taxes", 1.4,
        ("tax", "license", "permit", "registration", "certification", "fee",
         "government", "state", "federal", "municipal", "dmv", "treasury",
         "customs", "duty", "toll", "levy", "excise", "filing fee"),
        required=("tax", "license", "permit", "registration"),
        excluded=("sales tax", "food"),
    ),
    KeywordProfile(
        "supplies", 0.8,
        ("supplies", "equipment", "tools", "hardware", "materials", "parts",
         "inventory", "stock", "wholesale", "retail", "consumables", "goods",
         "merchandise", "items", "products", "accessories"),
    ),
)


def _score_profile(profile: KeywordProfile, merchant: str, items_text: str, context: str) -> float:
    score = 0.0
    for keyword in profile.keywords:
        kw = keyword.lower()
        if kw in merchant:
            score += MERCHANT_FACTOR * profile.weight
        if kw in items_text:
            score += LINE_ITEM_FACTOR * profile.weight
        score += len(re.findall(re.escape(kw), context)) * profile.weight

    # Required check runs before the excluded check; both penalties compound
    if profile.required and not any(r.lower() in context for r in profile.required):
        score *= MISSING_REQUIRED_PENALTY
    if profile.excluded and any(e.lower() in context for e in profile.excluded):
        score *= EXCLUDED_PENALTY
    return score


def score_categories(
    merchant: str | None,
    raw_text: str | None,
    line_items: Iterable[LineItem | str] = (),
    table: tuple[KeywordProfile, ...] = CATEGORY_KEYWORDS,
) -> list[CategoryScore]:
    """Score every profile in *table*, highest first (stable on ties)."""
    merchant_l = (merchant or "").lower()
    descriptions = [i if isinstance(i, str) else i.description for i in line_items]
    items_text = " ".join(d.lower() for d in descriptions)
    context = f"{(raw_text or '').lower()} {merchant_l} {items_text}"

    scores = [
        CategoryScore(get_category(p.category_id), _score_profile(p, merchant_l, items_text, context))
        for p in table
    ]
    return sorted(scores, key=lambda s: s.score, reverse=True)


def heuristic_confidence(scores: list[CategoryScore]) -> float:
    """Map the winner's margin over the runner-up into [0.5, 0.85]."""
    if not scores or scores[0].score <= 0:
        return DEFAULT_CONFIDENCE
    top = scores[0].score
    runner_up = scores[1].score if len(scores) > 1 else 0.0
    margin = (top - runner_up) / top
    return round(DEFAULT_CONFIDENCE + (MAX_CONFIDENCE - DEFAULT_CONFIDENCE) * margin, 2)


def pick_category(
    scores: list[CategoryScore],
    threshold: float = HEURISTIC_THRESHOLD,
    default_category_id: str = DEFAULT_CATEGORY_ID,
) -> HeuristicPick:
    """Top category when its score clears *threshold*, else the flagged default."""
    if scores and scores[0].score > threshold:
        return HeuristicPick(scores[0].category, heuristic_confidence(scores), scores[0].score, False)
    default = get_category(default_category_id)
    if default is None:
        raise ValueError(f"unknown default category {default_category_id!r}")
    top_score = scores[0].score if scores else 0.0
    return HeuristicPick(default, DEFAULT_CONFIDENCE, top_score, True)
