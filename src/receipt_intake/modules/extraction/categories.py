from __future__ import annotations

from receipt_intake.modules.extraction.schemas import Category

# Lookup order matters: the substring pass takes the first key that matches.
CATEGORY_SYNONYMS: dict[str, Category] = {
    "food": Category.FOOD,
    "beverage": Category.FOOD,
    "restaurant": Category.FOOD,
    "cafe": Category.FOOD,
    "lunch": Category.FOOD,
    "dinner": Category.FOOD,
    "breakfast": Category.FOOD,
    "meal": Category.FOOD,
    "groceries": Category.FOOD,
    "food & beverage": Category.FOOD,
    "food and beverage": Category.FOOD,
    "travel": Category.TRAVEL,
    "transport": Category.TRAVEL,
    "flight": Category.TRAVEL,
    "taxi": Category.TRAVEL,
    "uber": Category.TRAVEL,
    "lyft": Category.TRAVEL,
    "train": Category.TRAVEL,
    "bus": Category.TRAVEL,
    "fuel": Category.TRAVEL,
    "parking": Category.TRAVEL,
    "accommodation": Category.ACCOMMODATION,
    "hotel": Category.ACCOMMODATION,
    "lodging": Category.ACCOMMODATION,
    "airbnb": Category.ACCOMMODATION,
    "hostel": Category.ACCOMMODATION,
    "supplies": Category.SUPPLIES,
    "consumables": Category.SUPPLIES,
    "office": Category.OFFICE_SUPPLIES,
    "office supplies": Category.OFFICE_SUPPLIES,
    "office-supplies": Category.OFFICE_SUPPLIES,
    "stationery": Category.OFFICE_SUPPLIES,
    "stationary": Category.OFFICE_SUPPLIES,
    "printer": Category.OFFICE_SUPPLIES,
    "ink": Category.OFFICE_SUPPLIES,
    "paper": Category.OFFICE_SUPPLIES,
    "equipment": Category.EQUIPMENT,
    "computer": Category.EQUIPMENT,
    "laptop": Category.EQUIPMENT,
    "phone": Category.EQUIPMENT,
    "device": Category.EQUIPMENT,
    "hardware": Category.EQUIPMENT,
    "other": Category.OTHER,
    "misc": Category.OTHER,
    "miscellaneous": Category.OTHER,
}


def normalize_category(raw: object) -> Category:
    """Map free-form category text onto the canonical set.

    Exact synonym match first, then the first synonym that contains or is
    contained in the input. Anything else is `Category.OTHER`; a category is
    never rejected.
    """
    if isinstance(raw, Category):
        raw = raw.value
    if raw is None:
        return Category.OTHER
    cat = str(raw).strip().lower()
    if not cat:
        return Category.OTHER

    exact = CATEGORY_SYNONYMS.get(cat)
    if exact is not None:
        return exact

    for key, mapped in CATEGORY_SYNONYMS.items():
        if key in cat or cat in key:
            return mapped
    return Category.OTHER
