from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from receipt_intake.modules.extraction.errors import ExtractionFailedError
from receipt_intake.modules.extraction.formats import DocumentFormat, detect_format, mime_type_for


class Category(str, enum.Enum):
    TRAVEL = "travel"
    FOOD = "food"
    ACCOMMODATION = "accommodation"
    SUPPLIES = "supplies"
    OFFICE_SUPPLIES = "office-supplies"
    EQUIPMENT = "equipment"
    OTHER = "other"


class ExtractionMethod(str, enum.Enum):
    HEURISTIC = "heuristic"
    AI = "ai"


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    price: Decimal = Field(ge=0)

    @field_serializer("quantity", "price", when_used="json")
    def serialize_number(self, value: Decimal) -> float:
        return float(value)


class ExpenseCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1)
    amount: Decimal = Field(ge=0)
    category: Category
    date: dt.date
    vendor: str | None = None
    items: list[LineItem] | None = None

    @field_serializer("amount", when_used="json")
    def serialize_amount(self, value: Decimal) -> float:
        return float(value)

    def to_payload(self) -> dict[str, Any]:
        """JSON-shaped record handed back to the expense-creation endpoint."""
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True)
class UploadedDocument:
    path: Path
    mime_type: str
    format: DocumentFormat
    body: bytes = field(repr=False)

    @property
    def filename(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path: str | Path, *, mime_type: str | None = None) -> UploadedDocument:
        p = Path(path)
        fmt = detect_format(p)
        try:
            body = p.read_bytes()
        except OSError as e:
            raise ExtractionFailedError(f"Could not read uploaded file: {p.name}") from e
        return cls(
            path=p,
            mime_type=mime_type or mime_type_for(fmt, p.name),
            format=fmt,
            body=body,
        )


@dataclass(frozen=True)
class ExtractedText:
    text: str
    format: DocumentFormat


@dataclass(frozen=True)
class ExtractionResult:
    candidate: ExpenseCandidate
    method: ExtractionMethod
    extracted_text: str | None = None
    fallback_reason: str | None = None
