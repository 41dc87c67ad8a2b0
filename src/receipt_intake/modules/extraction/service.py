from __future__ import annotations

import time

from receipt_intake.core.config import Settings
from receipt_intake.core.logging import (
    get_logger,
    ingest_context,
    log_event,
    log_exception,
    monotonic_ms,
)
from receipt_intake.modules.extraction.ai import AIExtractionAdapter
from receipt_intake.modules.extraction.errors import (
    AIResponseParseError,
    ExtractionFailedError,
    ReceiptIntakeError,
    UnsupportedFormatError,
)
from receipt_intake.modules.extraction.formats import DocumentFormat
from receipt_intake.modules.extraction.heuristics import parse_expense_text
from receipt_intake.modules.extraction.ocr import OcrWorkerPool
from receipt_intake.modules.extraction.schemas import (
    ExtractionMethod,
    ExtractionResult,
    UploadedDocument,
)
from receipt_intake.modules.extraction.text import TextExtractionEngine

logger = get_logger(__name__)


class ReceiptExtractionService:
    """Turns one uploaded receipt into an expense candidate.

    Stateless per call; construct one instance and hand it to whatever serves
    uploads. With an API key the AI path runs first and the heuristic path is
    the fallback; without one only the heuristic path runs.
    """

    def __init__(
        self,
        *,
        engine: TextExtractionEngine,
        ai_adapter: AIExtractionAdapter | None = None,
        ocr_pool: OcrWorkerPool | None = None,
        fallback_to_heuristics: bool = True,
    ) -> None:
        self.engine = engine
        self.ai_adapter = ai_adapter
        self.ocr_pool = ocr_pool
        self.fallback_to_heuristics = fallback_to_heuristics

    async def __aenter__(self) -> ReceiptExtractionService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.ai_adapter is not None:
            await self.ai_adapter.aclose()
        if self.ocr_pool is not None:
            await self.ocr_pool.close()

    async def extract(
        self, document: UploadedDocument, *, api_key: str | None = None
    ) -> ExtractionResult:
        with ingest_context():
            start = time.monotonic()
            log_event(
                logger,
                "extraction.start",
                filename=document.filename,
                content_type=document.mime_type,
                byte_size=len(document.body),
                kind=document.format.value,
                ai_requested=bool(api_key),
            )
            if document.format == DocumentFormat.UNSUPPORTED:
                log_event(
                    logger,
                    "extraction.finish",
                    status="failed",
                    reason=UnsupportedFormatError.code,
                    duration_ms=monotonic_ms(start),
                )
                raise UnsupportedFormatError(f"Unsupported file type: {document.filename}")

            try:
                result = await self._extract(document, api_key=api_key)
            except ReceiptIntakeError as e:
                log_event(
                    logger,
                    "extraction.finish",
                    status="failed",
                    reason=e.code,
                    duration_ms=monotonic_ms(start),
                )
                raise
            except Exception:
                log_exception(logger, "extraction.error", duration_ms=monotonic_ms(start))
                raise

            log_event(
                logger,
                "extraction.finish",
                status="success",
                method=result.method.value,
                category=result.candidate.category.value,
                fallback_reason=result.fallback_reason,
                duration_ms=monotonic_ms(start),
            )
            return result

    async def _extract(
        self, document: UploadedDocument, *, api_key: str | None
    ) -> ExtractionResult:
        fallback_reason = None
        if api_key and self.ai_adapter is not None:
            try:
                candidate = await self.ai_adapter.extract(document, api_key=api_key)
                return ExtractionResult(candidate=candidate, method=ExtractionMethod.AI)
            except (ExtractionFailedError, AIResponseParseError) as e:
                if not self.fallback_to_heuristics:
                    raise
                fallback_reason = e.code
                log_event(
                    logger,
                    "extraction.ai.fallback",
                    filename=document.filename,
                    reason=e.code,
                )

        extracted = await self.engine.extract_text(document)
        return ExtractionResult(
            candidate=parse_expense_text(extracted.text),
            method=ExtractionMethod.HEURISTIC,
            extracted_text=extracted.text,
            fallback_reason=fallback_reason,
        )


def build_extraction_service(settings: Settings) -> ReceiptExtractionService:
    ocr_pool = OcrWorkerPool(
        size=settings.ocr_pool_size,
        lang=settings.ocr_lang,
        timeout_seconds=settings.ocr_timeout_seconds,
    )
    return ReceiptExtractionService(
        engine=TextExtractionEngine.create(
            ocr_pool=ocr_pool, timeout_seconds=settings.extraction_timeout_seconds
        ),
        ai_adapter=AIExtractionAdapter.from_settings(settings),
        ocr_pool=ocr_pool,
        fallback_to_heuristics=settings.fallback_to_heuristics,
    )
