from __future__ import annotations

import asyncio
import threading
import time

import pytest

from receipt_intake.modules.extraction.errors import ExtractionFailedError, UnsupportedFormatError
from receipt_intake.modules.extraction.formats import DocumentFormat


class _FakeOcrWorker:
    init_calls = 0

    def __init__(self, *, worker_id: int, lang: str, timeout_seconds: float) -> None:
        self.worker_id = worker_id
        self.lang = lang
        self.timeout_seconds = timeout_seconds
        self.engine_version = "5.3.0"

    def initialize(self) -> None:
        type(self).init_calls += 1

    def recognize(self, body: bytes) -> str:
        if body == b"boom":
            raise RuntimeError("tesseract crashed")
        return "Total $9.99 coffee"


def _engine(*, pool_size: int = 1, timeout_seconds: float = 5.0):
    from receipt_intake.modules.extraction.ocr import OcrWorkerPool
    from receipt_intake.modules.extraction.text import TextExtractionEngine

    _FakeOcrWorker.init_calls = 0
    pool = OcrWorkerPool(
        size=pool_size, lang="eng", timeout_seconds=5.0, worker_factory=_FakeOcrWorker
    )
    return TextExtractionEngine.create(ocr_pool=pool, timeout_seconds=timeout_seconds), pool


@pytest.mark.asyncio
async def test_extract_pdf_text_joins_pages(monkeypatch, make_document):
    from receipt_intake.modules.extraction import text as text_module

    class _Page:
        def __init__(self, text: str) -> None:
            self._text = text

        def extract_text(self) -> str:
            return self._text

    class _Reader:
        def __init__(self, _stream) -> None:
            self.pages = [_Page("Hotel Example"), _Page("Total 120.00")]

    monkeypatch.setattr(text_module, "PdfReader", _Reader)
    engine, _ = _engine()

    extracted = await engine.extract_text(make_document("bill.pdf", b"%PDF-1.4 stub"))
    assert extracted.text == "Hotel Example\nTotal 120.00"
    assert extracted.format == DocumentFormat.PDF


@pytest.mark.asyncio
async def test_scanned_pdf_yields_empty_text_without_ocr(monkeypatch, make_document):
    from receipt_intake.modules.extraction import text as text_module

    class _Page:
        def extract_text(self):
            return None

    class _Reader:
        def __init__(self, _stream) -> None:
            self.pages = [_Page()]

    monkeypatch.setattr(text_module, "PdfReader", _Reader)
    engine, pool = _engine()

    extracted = await engine.extract_text(make_document("scan.pdf", b"%PDF-1.4 stub"))
    assert extracted.text == ""
    assert not pool.started


@pytest.mark.asyncio
async def test_extract_docx_paragraph_text(monkeypatch, make_document):
    from receipt_intake.modules.extraction import text as text_module

    class _Paragraph:
        def __init__(self, text: str) -> None:
            self.text = text

    class _Document:
        def __init__(self, _stream) -> None:
            self.paragraphs = [_Paragraph("Office Depot"), _Paragraph("Total 15.00")]

    monkeypatch.setattr(text_module, "Document", _Document)
    engine, _ = _engine()

    extracted = await engine.extract_text(make_document("bill.docx", b"PK\x03\x04"))
    assert extracted.text == "Office Depot\nTotal 15.00"


@pytest.mark.asyncio
async def test_extract_image_text_through_ocr_pool(make_document):
    engine, pool = _engine(pool_size=2)

    first = await engine.extract_text(make_document("receipt.png", b"\x89PNG"))
    second = await engine.extract_text(make_document("receipt.jpg", b"\xff\xd8\xff"))

    assert first.text == "Total $9.99 coffee"
    assert second.format == DocumentFormat.IMAGE
    # workers are initialized once, not per call
    assert _FakeOcrWorker.init_calls == 2
    assert pool.available() == 2


@pytest.mark.asyncio
async def test_ocr_failure_is_wrapped_and_worker_released(make_document):
    engine, pool = _engine(pool_size=1)

    with pytest.raises(ExtractionFailedError) as exc_info:
        await engine.extract_text(make_document("receipt.png", b"boom"))
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.code == "extraction_failed"
    assert pool.available() == 1

    again = await engine.extract_text(make_document("receipt.png", b"\x89PNG"))
    assert "9.99" in again.text


@pytest.mark.asyncio
async def test_unsupported_format_raises(make_document):
    engine, _ = _engine()

    with pytest.raises(UnsupportedFormatError):
        await engine.extract_text(make_document("notes.txt", b"Total 1.00"))


@pytest.mark.asyncio
async def test_library_error_is_wrapped(monkeypatch, make_document):
    from receipt_intake.modules.extraction import text as text_module

    def _broken_reader(_stream):
        raise ValueError("EOF marker not found")

    monkeypatch.setattr(text_module, "PdfReader", _broken_reader)
    engine, _ = _engine()

    with pytest.raises(ExtractionFailedError) as exc_info:
        await engine.extract_text(make_document("bill.pdf", b"garbage"))
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_slow_extraction_times_out(monkeypatch, make_document):
    from receipt_intake.modules.extraction import text as text_module

    def _slow(_body: bytes) -> str:
        time.sleep(0.3)
        return "late"

    monkeypatch.setattr(text_module, "_extract_pdf_text", _slow)
    engine, _ = _engine(timeout_seconds=0.05)

    with pytest.raises(ExtractionFailedError, match="Timed out"):
        await engine.extract_text(make_document("bill.pdf", b"%PDF-1.4 stub"))


class _BlockingOcrWorker(_FakeOcrWorker):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.release = threading.Event()
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def recognize(self, body: bytes) -> str:
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self.release.wait(timeout=2.0)
            return "Total $3.20 tea"
        finally:
            with self.lock:
                self.active -= 1


@pytest.mark.asyncio
async def test_ocr_timeout_holds_worker_until_thread_finishes(make_document):
    from receipt_intake.modules.extraction.ocr import OcrWorkerPool
    from receipt_intake.modules.extraction.text import TextExtractionEngine

    workers: list[_BlockingOcrWorker] = []

    def _factory(**kwargs) -> _BlockingOcrWorker:
        worker = _BlockingOcrWorker(**kwargs)
        workers.append(worker)
        return worker

    pool = OcrWorkerPool(size=1, lang="eng", timeout_seconds=0.05, worker_factory=_factory)
    engine = TextExtractionEngine.create(ocr_pool=pool, timeout_seconds=5.0)

    with pytest.raises(ExtractionFailedError, match="Timed out"):
        await engine.extract_text(make_document("receipt.png", b"\x89PNG"))
    # the timed-out thread is still running, so its worker is not handed out
    assert pool.available() == 0

    second = asyncio.ensure_future(
        engine.extract_text(make_document("receipt.jpg", b"\xff\xd8\xff"))
    )
    await asyncio.sleep(0.1)
    assert not second.done()

    workers[0].release.set()
    extracted = await asyncio.wait_for(second, timeout=2.0)

    assert extracted.text == "Total $3.20 tea"
    assert workers[0].peak == 1
    assert pool.available() == 1
