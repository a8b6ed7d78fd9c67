from __future__ import annotations

# Closed category set. The last entry doubles as the placeholder category of
# expenses that are still being processed.
DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Meals",
    "Travel",
    "Lodging",
    "Transport",
    "Fuel",
    "Office Supplies",
    "Software",
    "Utilities",
    "Entertainment",
    "Miscellaneous",
)

PLACEHOLDER_CATEGORY = DEFAULT_CATEGORIES[-1]

_BY_LOWER = {c.lower(): c for c in DEFAULT_CATEGORIES}


def normalize_category(value: str | None) -> str | None:
    """Map a category to its canonical spelling, or None if it is not in the set."""
    if not isinstance(value, str):
        return None
    return _BY_LOWER.get(value.strip().lower())
