from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from io import BytesIO

import pytesseract
from PIL import Image

from receipt_intake.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)


class OcrWorker:
    """One Tesseract configuration, verified once and reused for many images."""

    def __init__(self, *, worker_id: int, lang: str, timeout_seconds: float) -> None:
        self.worker_id = worker_id
        self.lang = lang
        self.timeout_seconds = timeout_seconds
        self.engine_version: str | None = None

    def initialize(self) -> None:
        self.engine_version = str(pytesseract.get_tesseract_version())
        languages = pytesseract.get_languages(config="")
        if self.lang not in languages:
            raise RuntimeError(f"Tesseract language pack not installed: {self.lang}")

    def recognize(self, body: bytes) -> str:
        image = Image.open(BytesIO(body))
        if image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        return (
            pytesseract.image_to_string(image, lang=self.lang, timeout=self.timeout_seconds)
            or ""
        )


class OcrWorkerPool:
    """Bounded pool of initialized OCR workers; each handles one image at a time."""

    def __init__(
        self,
        *,
        size: int,
        lang: str,
        timeout_seconds: float,
        worker_factory: Callable[..., OcrWorker] = OcrWorker,
    ) -> None:
        self.size = max(1, int(size))
        self.lang = lang
        self.timeout_seconds = timeout_seconds
        self._worker_factory = worker_factory
        self._queue: asyncio.Queue[OcrWorker] | None = None
        self._start_lock = asyncio.Lock()
        self._closed = False

    @property
    def started(self) -> bool:
        return self._queue is not None

    async def start(self) -> None:
        async with self._start_lock:
            if self._closed:
                raise RuntimeError("OCR worker pool is closed")
            if self._queue is not None:
                return
            start = time.monotonic()
            workers = [
                self._worker_factory(
                    worker_id=idx, lang=self.lang, timeout_seconds=self.timeout_seconds
                )
                for idx in range(self.size)
            ]
            await asyncio.gather(*(asyncio.to_thread(w.initialize) for w in workers))
            queue: asyncio.Queue[OcrWorker] = asyncio.Queue(maxsize=self.size)
            for worker in workers:
                queue.put_nowait(worker)
            self._queue = queue
            log_event(
                logger,
                "ocr.pool.started",
                size=self.size,
                lang=self.lang,
                engine_version=workers[0].engine_version,
                duration_ms=monotonic_ms(start),
            )

    async def _ready_queue(self) -> asyncio.Queue[OcrWorker]:
        if self._queue is None:
            await self.start()
        queue = self._queue
        if queue is None or self._closed:
            raise RuntimeError("OCR worker pool is closed")
        return queue

    async def recognize(self, body: bytes) -> str:
        queue = await self._ready_queue()
        worker = await queue.get()
        start = time.monotonic()
        job = asyncio.ensure_future(asyncio.to_thread(worker.recognize, body))
        try:
            text = await asyncio.wait_for(asyncio.shield(job), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            log_event(
                logger,
                "ocr.recognize.timeout",
                worker_id=worker.worker_id,
                byte_size=len(body),
                duration_ms=monotonic_ms(start),
            )
            raise
        finally:
            if job.done():
                queue.put_nowait(worker)
            else:
                # The thread cannot be interrupted; the worker rejoins once it exits.
                job.add_done_callback(lambda finished: _return_worker(queue, worker, finished))
        log_event(
            logger,
            "ocr.recognize",
            worker_id=worker.worker_id,
            byte_size=len(body),
            chars=len(text),
            duration_ms=monotonic_ms(start),
        )
        return text

    def available(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def close(self) -> None:
        async with self._start_lock:
            self._closed = True
            self._queue = None
        log_event(logger, "ocr.pool.closed", size=self.size)


def _return_worker(
    queue: asyncio.Queue[OcrWorker], worker: OcrWorker, finished: asyncio.Future
) -> None:
    if not finished.cancelled() and finished.exception() is not None:
        log_event(logger, "ocr.recognize.late_failure", worker_id=worker.worker_id)
    queue.put_nowait(worker)
