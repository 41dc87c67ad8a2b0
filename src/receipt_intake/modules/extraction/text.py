from __future__ import annotations

import asyncio
import time
from io import BytesIO

from docx import Document
from pypdf import PdfReader

from receipt_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_intake.modules.extraction.errors import (
    ExtractionFailedError,
    UnsupportedFormatError,
)
from receipt_intake.modules.extraction.formats import DocumentFormat
from receipt_intake.modules.extraction.ocr import OcrWorkerPool
from receipt_intake.modules.extraction.schemas import ExtractedText, UploadedDocument

logger = get_logger(__name__)


def _clean_text(text: str) -> str:
    return (text or "").replace("\u202f", " ").replace("\xa0", " ")


def _extract_pdf_text(body: bytes) -> str:
    # Embedded text layer only; scanned pages come back empty.
    reader = PdfReader(BytesIO(body))
    pages = [_clean_text(page.extract_text() or "") for page in reader.pages]
    return "\n".join(pages)


def _extract_docx_text(body: bytes) -> str:
    document = Document(BytesIO(body))
    return "\n".join(_clean_text(p.text) for p in document.paragraphs)


class TextExtractor:
    format: DocumentFormat

    async def extract(self, document: UploadedDocument) -> str:  # pragma: no cover
        raise NotImplementedError


class ImageTextExtractor(TextExtractor):
    format = DocumentFormat.IMAGE

    def __init__(self, pool: OcrWorkerPool) -> None:
        self._pool = pool

    async def extract(self, document: UploadedDocument) -> str:
        return _clean_text(await self._pool.recognize(document.body))


class PdfTextExtractor(TextExtractor):
    format = DocumentFormat.PDF

    def __init__(self, *, timeout_seconds: float) -> None:
        self._timeout_seconds = timeout_seconds

    async def extract(self, document: UploadedDocument) -> str:
        return await asyncio.wait_for(
            asyncio.to_thread(_extract_pdf_text, document.body), timeout=self._timeout_seconds
        )


class DocxTextExtractor(TextExtractor):
    format = DocumentFormat.DOCX

    def __init__(self, *, timeout_seconds: float) -> None:
        self._timeout_seconds = timeout_seconds

    async def extract(self, document: UploadedDocument) -> str:
        return await asyncio.wait_for(
            asyncio.to_thread(_extract_docx_text, document.body), timeout=self._timeout_seconds
        )


class TextExtractionEngine:
    def __init__(self, extractors: list[TextExtractor]) -> None:
        self._extractors = {extractor.format: extractor for extractor in extractors}

    @classmethod
    def create(
        cls, *, ocr_pool: OcrWorkerPool, timeout_seconds: float
    ) -> TextExtractionEngine:
        return cls(
            [
                ImageTextExtractor(ocr_pool),
                PdfTextExtractor(timeout_seconds=timeout_seconds),
                DocxTextExtractor(timeout_seconds=timeout_seconds),
            ]
        )

    def supports(self, fmt: DocumentFormat) -> bool:
        return fmt in self._extractors

    async def extract_text(self, document: UploadedDocument) -> ExtractedText:
        extractor = self._extractors.get(document.format)
        if extractor is None:
            log_event(
                logger,
                "extraction.text.unsupported",
                filename=document.filename,
                content_type=document.mime_type,
                kind=document.format.value,
            )
            raise UnsupportedFormatError(f"Unsupported file type: {document.filename}")

        start = time.monotonic()
        try:
            text = await extractor.extract(document)
        except asyncio.TimeoutError as e:
            log_event(
                logger,
                "extraction.text.timeout",
                filename=document.filename,
                kind=document.format.value,
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionFailedError(
                f"Timed out extracting text from {document.filename}"
            ) from e
        except ExtractionFailedError:
            raise
        except Exception as e:
            log_exception(
                logger,
                "extraction.text.error",
                filename=document.filename,
                kind=document.format.value,
                duration_ms=monotonic_ms(start),
            )
            raise ExtractionFailedError() from e

        text = text or ""
        log_event(
            logger,
            "extraction.text.done",
            filename=document.filename,
            kind=document.format.value,
            byte_size=len(document.body),
            chars=len(text),
            duration_ms=monotonic_ms(start),
        )
        return ExtractedText(text=text, format=document.format)
