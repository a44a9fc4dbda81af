"""Expense categories — closed taxonomy used by every classification stage."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    description: str


# Declared order is the display order and the tie-break order for scoring
CATEGORIES: tuple[Category, ...] = (
    Category("advertising", "Advertising", "Ads, marketing, promotion"),
    Category("car_and_truck", "Car and Truck Expenses", "Fuel, parking, tolls, vehicle repairs"),
    Category("office", "Office Expenses", "Office supplies, shipping, software"),
    Category("travel", "Travel", "Flights, hotels, lodging, transportation"),
    Category("meals", "Meals", "Restaurants, cafes, food service"),
    Category("utilities", "Utilities", "Power, water, phone, internet"),
    Category("taxes", "Taxes and Licenses", "Permits, registrations, government fees"),
    Category("supplies", "Supplies", "Retail merchandise, materials, tools"),
    Category("other", "Other", "Anything that fits nowhere else"),
)

_BY_ID: dict[str, Category] = {c.id: c for c in CATEGORIES}
_BY_KEY: dict[str, Category] = {
    **{c.name.lower(): c for c in CATEGORIES},
    **{c.id: c for c in CATEGORIES},
}


def get_category(category_id: str) -> Category | None:
    return _BY_ID.get(category_id)


def find_category(name_or_id: str | None) -> Category | None:
    """Resolve a category by display name or id, ignoring case and padding."""
    if not name_or_id:
        return None
    return _BY_KEY.get(name_or_id.strip().lower())


def list_categories() -> list[Category]:
    return list(CATEGORIES)


def confidence_label(confidence: float | None) -> str:
    if confidence is None:
        return "—"
    if confidence >= 0.85:
        return "High"
    if confidence >= 0.70:
        return "Medium"
    return "Low"
