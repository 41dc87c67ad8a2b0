from __future__ import annotations

import asyncio
import base64
import json
import re
import time
from collections.abc import Awaitable, Callable
from datetime import date
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from receipt_intake.core.config import Settings
from receipt_intake.core.logging import get_logger, log_event, monotonic_ms
from receipt_intake.modules.extraction.amounts import parse_amount, resolve_amount
from receipt_intake.modules.extraction.categories import normalize_category
from receipt_intake.modules.extraction.errors import (
    AIResponseParseError,
    ExtractionFailedError,
    MissingAPIKeyError,
)
from receipt_intake.modules.extraction.schemas import (
    Category,
    ExpenseCandidate,
    LineItem,
    UploadedDocument,
)

logger = get_logger(__name__)

DEFAULT_AI_DESCRIPTION = "Bill upload"

_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_OPEN_FENCE_RE = re.compile(r"^\s*```(?:json)?[ \t]*\r?\n?", re.M | re.I)
_CLOSE_FENCE_RE = re.compile(r"```\s*$", re.M)

BILL_EXTRACTION_PROMPT = (
    "Extract the following information from this bill/receipt in JSON format "
    "with the following structure:\n"
    "{\n"
    '  "amount": number, // Total amount\n'
    '  "category": string, // Expense category (must be one of: '
    + ", ".join(f"'{c.value}'" for c in Category)
    + ")\n"
    '  "date": string, // Date in YYYY-MM-DD format\n'
    '  "vendor": string, // Name of the vendor/merchant\n'
    '  "description": string, // Brief description\n'
    '  "items": [\n'
    "    {\n"
    '      "name": string, // Item name\n'
    '      "quantity": number, // Optional quantity\n'
    '      "price": number // Item price\n'
    "    }\n"
    "  ]\n"
    "}\n\n"
    "Only return the JSON object, no other text."
)


def _scalar_to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _AIBillItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    quantity: float | str | None = None
    price: float | str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def coerce_name(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class _AIBill(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: float | str | None = None
    category: str | None = None
    date: str | None = None
    vendor: str | None = None
    description: str | None = None
    items: list[_AIBillItem] | None = None

    @field_validator("category", "date", "vendor", "description", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _scalar_to_str(value)


def strip_code_fences(text: str) -> str:
    """Drop the Markdown fence the model tends to wrap its JSON in.

    Only one opening fence (optionally tagged ``json``) and one closing fence
    are removed; anything else is left for the JSON parser to reject.
    """
    cleaned = _OPEN_FENCE_RE.sub("", text or "", count=1)
    cleaned = _CLOSE_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def build_generate_payload(document: UploadedDocument) -> dict[str, Any]:
    encoded = base64.b64encode(document.body).decode("ascii")
    return {
        "contents": [
            {
                "parts": [
                    {"text": BILL_EXTRACTION_PROMPT},
                    {"inline_data": {"mime_type": document.mime_type, "data": encoded}},
                ]
            }
        ],
        "generationConfig": {"temperature": 0},
    }


def response_text(raw: Any) -> str:
    try:
        text = raw["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return ""
    return text if isinstance(text, str) else ""


def _parse_iso_date(raw: str | None, *, today: date | None = None) -> date:
    fallback = today or date.today()
    s = (raw or "").strip()
    if not s:
        return fallback
    for candidate in (s, s[:10]):
        try:
            return date.fromisoformat(candidate)
        except ValueError:
            continue
    return fallback


def _line_item(item: _AIBillItem) -> LineItem:
    price = parse_amount(item.price)
    quantity = parse_amount(item.quantity)
    return LineItem(
        name=(item.name or "").strip()[:200] or "Item",
        quantity=quantity if quantity is not None and quantity > 0 else Decimal("1"),
        price=price if price is not None and price > 0 else Decimal("0"),
    )


def parse_bill_response(content: str, *, today: date | None = None) -> ExpenseCandidate:
    """Turn the model's text reply into a validated candidate, or raise AIResponseParseError."""
    cleaned = strip_code_fences(content)
    try:
        obj = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AIResponseParseError() from e
    if not isinstance(obj, dict):
        raise AIResponseParseError()

    try:
        bill = _AIBill.model_validate(obj)
        items = [_line_item(item) for item in bill.items or []]
        vendor = (bill.vendor or "").strip()[:100] or None
        return ExpenseCandidate(
            description=(bill.description or "").strip() or DEFAULT_AI_DESCRIPTION,
            amount=resolve_amount(bill.amount, items),
            category=normalize_category(bill.category),
            date=_parse_iso_date(bill.date, today=today),
            vendor=vendor,
            items=items or None,
        )
    except ValidationError as e:
        raise AIResponseParseError() from e


class AIExtractionAdapter:
    """Multimodal extraction through the Gemini `generateContent` REST endpoint.

    The document bytes and the caller's API key are sent to a third-party
    service. Callers decide whether that is acceptable for a given upload.
    """

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: float,
        max_attempts: int,
        backoff_base_seconds: float,
        backoff_max_seconds: float,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = float(timeout_seconds)
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base_seconds = float(backoff_base_seconds)
        self.backoff_max_seconds = float(backoff_max_seconds)
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, *, client: httpx.AsyncClient | None = None
    ) -> AIExtractionAdapter:
        return cls(
            base_url=settings.gemini_base_url,
            model=settings.gemini_model,
            timeout_seconds=settings.ai_timeout_seconds,
            max_attempts=settings.ai_max_attempts,
            backoff_base_seconds=settings.ai_backoff_base_seconds,
            backoff_max_seconds=settings.ai_backoff_max_seconds,
            client=client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** (attempt - 1)))

    async def extract(self, document: UploadedDocument, *, api_key: str | None) -> ExpenseCandidate:
        if not api_key or not api_key.strip():
            raise MissingAPIKeyError()

        start = time.monotonic()
        payload = build_generate_payload(document)
        resp = await self._post_with_retries(payload=payload, api_key=api_key.strip())

        try:
            raw = resp.json()
        except ValueError as e:
            log_event(logger, "extraction.ai.bad_body", status_code=resp.status_code)
            raise AIResponseParseError() from e

        content = response_text(raw)
        try:
            candidate = parse_bill_response(content)
        except AIResponseParseError:
            log_event(
                logger,
                "extraction.ai.unparseable",
                filename=document.filename,
                model=self.model,
                response_chars=len(content),
                duration_ms=monotonic_ms(start),
            )
            raise

        log_event(
            logger,
            "extraction.ai.parsed",
            filename=document.filename,
            model=self.model,
            category=candidate.category.value,
            item_count=len(candidate.items or []),
            duration_ms=monotonic_ms(start),
        )
        return candidate

    async def _post_with_retries(self, *, payload: dict[str, Any], api_key: str) -> httpx.Response:
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        client = self._get_client()
        attempt = 0
        while True:
            attempt += 1
            start = time.monotonic()
            last_error: Exception
            try:
                resp = await asyncio.wait_for(
                    client.post(
                        self.endpoint,
                        headers=headers,
                        json=payload,
                        timeout=self.timeout_seconds,
                    ),
                    timeout=self.timeout_seconds,
                )
                resp.raise_for_status()
                return resp
            except httpx.HTTPStatusError as e:
                last_error = e
                status_code = e.response.status_code
                retryable = status_code in _RETRYABLE_STATUS_CODES
                reason = f"http_{status_code}"
            except (httpx.TransportError, asyncio.TimeoutError) as e:
                last_error = e
                retryable = True
                timed_out = isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError))
                reason = "timeout" if timed_out else "transport"

            if not retryable or attempt >= self.max_attempts:
                log_event(
                    logger,
                    "extraction.ai.failure",
                    model=self.model,
                    attempt=attempt,
                    reason=reason,
                    retryable=retryable,
                    duration_ms=monotonic_ms(start),
                )
                raise ExtractionFailedError(
                    f"AI extraction request failed after {attempt} attempt(s): {reason}"
                ) from last_error

            delay = self.backoff_delay(attempt)
            log_event(
                logger,
                "extraction.ai.retry",
                model=self.model,
                attempt=attempt,
                reason=reason,
                delay_seconds=delay,
                duration_ms=monotonic_ms(start),
            )
            await self._sleep(delay)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
