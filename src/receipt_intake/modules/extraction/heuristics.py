from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal

from receipt_intake.modules.extraction.amounts import resolve_amount
from receipt_intake.modules.extraction.schemas import Category, ExpenseCandidate

_TOTAL_AMOUNT_RE = re.compile(r"Total.*?\$?(\d+\.?\d{0,2})", re.I)
_ANY_AMOUNT_RE = re.compile(r"\$?(\d+\.?\d{0,2})")
_DATE_RE = re.compile(r"(?<!\d)(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})\b")

# Checked in this order; the first family that matches decides the category.
CATEGORY_KEYWORDS: tuple[tuple[Category, re.Pattern[str]], ...] = (
    (
        Category.FOOD,
        re.compile(r"(restaurant|cafe|food|eat|dine|meal|coffee|tea|breakfast|lunch|dinner)"),
    ),
    (
        Category.TRAVEL,
        re.compile(r"(travel|flight|taxi|uber|lyft|train|bus|transport|fuel|gas|parking)"),
    ),
    (
        Category.ACCOMMODATION,
        re.compile(r"(hotel|motel|hostel|airbnb|accommodation|stay|lodging)"),
    ),
    (
        Category.OFFICE_SUPPLIES,
        re.compile(
            r"(office|stationery|printer|ink|paper|pen|pencil|notebook|staple|folder|file)"
        ),
    ),
    (
        Category.EQUIPMENT,
        re.compile(r"(laptop|computer|monitor|keyboard|mouse|desk|chair|equipment|hardware)"),
    ),
)

DEFAULT_DESCRIPTION = "Expense from receipt"


def extract_amount(text: str) -> Decimal:
    m = _TOTAL_AMOUNT_RE.search(text) or _ANY_AMOUNT_RE.search(text)
    if not m:
        return resolve_amount(None)
    return resolve_amount(m.group(1))


def extract_date(text: str, *, today: date | None = None) -> date:
    fallback = today or date.today()
    m = _DATE_RE.search(text)
    if not m:
        return fallback
    s = m.group(1).replace("-", "/")
    # Month-first, then day-first; two- and four-digit years.
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%d/%m/%Y", "%d/%m/%y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return fallback


def classify_category(text: str) -> Category | None:
    lowered = text.lower()
    for category, pattern in CATEGORY_KEYWORDS:
        if pattern.search(lowered):
            return category
    return None


def parse_expense_text(text: str | None, *, today: date | None = None) -> ExpenseCandidate:
    """Rule-based parse of OCR/PDF/DOCX text into an expense candidate.

    Never fails: missing fields degrade to amount 0, today's date and
    `Category.OTHER`.
    """
    text = text or ""
    category = classify_category(text)
    description = (
        f"{DEFAULT_DESCRIPTION} ({category.value})" if category else DEFAULT_DESCRIPTION
    )
    return ExpenseCandidate(
        description=description,
        amount=extract_amount(text),
        category=category or Category.OTHER,
        date=extract_date(text, today=today),
    )
