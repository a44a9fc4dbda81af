"""Unit tests for the context scorer."""
import pytest

from receipt_categorizer.classification.context import (
    CATEGORY_KEYWORDS,
    KeywordProfile,
    heuristic_confidence,
    pick_category,
    score_categories,
)
from receipt_categorizer.models.categories import get_category
from receipt_categorizer.models.outcome import CategoryScore
from receipt_categorizer.models.receipt import LineItem


def _scores(*pairs):
    return [CategoryScore(get_category(cid), score) for cid, score in pairs]


def _by_id(scores):
    return {s.category.id: s.score for s in scores}


# =====================================================================
# Scoring
# =====================================================================
class TestScoring:
    def test_every_profile_is_scored(self):
        scores = score_categories("Anything", "")
        assert len(scores) == len(CATEGORY_KEYWORDS)

    def test_raw_text_counts_occurrences(self):
        table = (KeywordProfile("meals", 1.0, ("pizza",)),)
        [score] = score_categories("", "pizza and more pizza", table=table)
        assert score.score == pytest.approx(2.0)

    def test_merchant_factor(self):
        table = (KeywordProfile("meals", 1.0, ("pizza",)),)
        [score] = score_categories("Pizza Place", "", table=table)
        # 2.0 for the merchant plus the occurrence in the merchant context
        assert score.score == pytest.approx(3.0)

    def test_line_item_factor(self):
        table = (KeywordProfile("meals", 2.0, ("pizza",)),)
        [score] = score_categories("", "", [LineItem(description="Pizza slice")], table=table)
        assert score.score == pytest.approx((1.5 + 1) * 2.0)

    def test_plain_string_line_items(self):
        table = (KeywordProfile("meals", 1.0, ("pizza",)),)
        [score] = score_categories("", "", ["pizza"], table=table)
        assert score.score == pytest.approx(2.5)

    def test_required_then_excluded_penalties_compound(self):
        table = (KeywordProfile("meals", 1.0, ("pizza",), required=("burger",), excluded=("pizza",)),)
        [score] = score_categories("", "pizza", table=table)
        assert score.score == pytest.approx(1.0 * 0.5 * 0.3)

    def test_keywords_are_literal(self):
        table = (KeywordProfile("office", 1.0, ("booking.com",)),)
        [score] = score_categories("", "bookingxcom", table=table)
        assert score.score == 0

    def test_excluded_keyword_suppresses(self):
        table = (
            KeywordProfile("meals", 1.0, ("grill",), excluded=("diner",)),
            KeywordProfile("supplies", 1.0, ("grill",)),
        )
        scores = _by_id(score_categories("Grill Diner", "", table=table))
        assert scores["meals"] < scores["supplies"]

    def test_ties_keep_declared_order(self):
        scores = score_categories("", "")
        assert [s.category.id for s in scores] == [p.category_id for p in CATEGORY_KEYWORDS]

    def test_sorted_descending(self):
        scores = score_categories("Joe's Pizzeria", "Dinner for two, food", ["Margherita"])
        values = [s.score for s in scores]
        assert values == sorted(values, reverse=True)
        assert scores[0].category.id == "meals"

    def test_deterministic(self):
        args = ("Shell", "fuel 40.00 car wash", ["Regular unleaded"])
        assert score_categories(*args) == score_categories(*args)

    def test_groceries_score_nothing(self):
        scores = score_categories("XYZ Unknown Store", "Hummus 3.99\nBread 2.49\nMilk 4.29")
        assert all(s.score == 0 for s in scores)


# =====================================================================
# Confidence and threshold
# =====================================================================
class TestPick:
    def test_confidence_from_margin(self):
        assert heuristic_confidence(_scores(("meals", 4.0), ("office", 0.0))) == pytest.approx(0.85)
        assert heuristic_confidence(_scores(("meals", 4.0), ("office", 4.0))) == pytest.approx(0.5)
        assert heuristic_confidence(_scores(("meals", 5.0), ("office", 4.0))) == pytest.approx(0.57)

    def test_confidence_without_scores(self):
        assert heuristic_confidence([]) == 0.5
        assert heuristic_confidence(_scores(("meals", 0.0))) == 0.5

    def test_above_threshold(self):
        pick = pick_category(_scores(("travel", 2.0), ("meals", 1.0)), threshold=0.5)
        assert pick.category.id == "travel"
        assert not pick.low_confidence
        assert 0.5 <= pick.confidence <= 0.85

    def test_threshold_is_strict(self):
        pick = pick_category(_scores(("travel", 0.5)), threshold=0.5)
        assert pick.low_confidence
        assert pick.category.id == "supplies"
        assert pick.confidence == 0.5

    def test_configurable_default(self):
        pick = pick_category(_scores(("travel", 0.1)), threshold=0.5, default_category_id="other")
        assert pick.category.id == "other"
        assert pick.low_confidence

    def test_unknown_default(self):
        with pytest.raises(ValueError):
            pick_category([], default_category_id="nope")

    def test_groceries_fall_back_to_default(self):
        scores = score_categories("XYZ Unknown Store", "Hummus 3.99\nBread 2.49\nMilk 4.29")
        pick = pick_category(scores)
        assert pick.category.name == "Supplies"
        assert pick.low_confidence
