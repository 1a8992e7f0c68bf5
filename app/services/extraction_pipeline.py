# app/services/extraction_pipeline.py
import asyncio, inspect, logging, time
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from app.errors import ExtractionBusyError, ExtractionError, PersistenceError
from app.models.extract_models import ExtractedDocument, ExtractionOutcome, ExtractPage, UploadRecord
from app.services.ocr_engine import OcrEngine
from app.services.pdf_extract import PageRasterizer, PageTextExtractor, open_document

log = logging.getLogger("examprep")

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]

# progress bands
DECODE_START, DECODE_DONE = 10, 20
PAGES_SPAN = 60
PERSIST_START, DONE = 90, 100


class UploadSaver(Protocol):
    async def save_upload(self, owner_id: str, file_name: str, data: bytes,
                          extracted_text: str) -> UploadRecord: ...


class ProgressTracker:
    """Clamps reported values so one run never goes backwards (except the explicit reset)."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.percent = 0
        self._callback = callback

    async def _emit(self) -> None:
        if self._callback is None:
            return
        res = self._callback(self.percent)
        if inspect.isawaitable(res):
            await res

    async def update(self, percent: int) -> None:
        self.percent = max(self.percent, min(DONE, int(percent)))
        await self._emit()

    async def reset(self) -> None:
        self.percent = 0
        await self._emit()


def page_progress(page_index: int, page_count: int) -> int:
    """page_index is 1-based."""
    return DECODE_DONE + round(PAGES_SPAN * page_index / page_count)


class DocumentExtractionPipeline:
    """
    decode -> per page (text layer + raster/OCR) -> concatenate -> persist.

    Pages run strictly in order against one OCR engine owned by the run. A second
    `extract` while one is in flight is rejected with ExtractionBusyError.
    """

    def __init__(
        self,
        store: UploadSaver,
        *,
        engine_factory: Callable[[], OcrEngine],
        text_extractor: Optional[PageTextExtractor] = None,
        rasterizer: Optional[PageRasterizer] = None,
    ):
        self.store = store
        self.engine_factory = engine_factory
        self.text_extractor = text_extractor or PageTextExtractor()
        self.rasterizer = rasterizer or PageRasterizer(scale=2.0)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def extract(self, file_name: str, data: bytes, *, owner_id: str,
                      on_progress: Optional[ProgressCallback] = None) -> ExtractionOutcome:
        if self._running:
            raise ExtractionBusyError()
        self._running = True
        try:
            return await self._run(file_name, data, owner_id, ProgressTracker(on_progress))
        finally:
            self._running = False

    async def _run(self, file_name: str, data: bytes, owner_id: str,
                   progress: ProgressTracker) -> ExtractionOutcome:
        t0 = time.time()
        await progress.update(0)
        try:
            document = await self._extract_text(file_name, data, progress)
        except Exception as e:
            log.error(f"[extract] {file_name!r} failed: {type(e).__name__}: {e}")
            await progress.reset()
            raise ExtractionError(detail=f"{type(e).__name__}: {e}") from e
        dt = int((time.time() - t0) * 1000)
        log.info(f"[extract] {file_name!r} pages={document.page_count} chars={len(document.full_text)} {dt}ms")

        await progress.update(PERSIST_START)
        upload: Optional[UploadRecord] = None
        warning: Optional[str] = None
        try:
            upload = await self.store.save_upload(owner_id, file_name, data, document.full_text)
        except PersistenceError as e:
            # text stays usable; the failure is reported alongside it
            warning = e.user_message
            log.warning(f"[extract] {file_name!r} extracted but not saved: {e.detail}")
        await progress.update(DONE)
        return ExtractionOutcome(document=document, upload=upload, warning=warning)

    async def _extract_text(self, file_name: str, data: bytes, progress: ProgressTracker) -> ExtractedDocument:
        await progress.update(DECODE_START)
        doc = await asyncio.to_thread(open_document, data)
        try:
            page_count = doc.page_count
            await progress.update(DECODE_DONE)

            parts: List[str] = []
            # engine is terminated on exit, including a failed start
            async with self.engine_factory() as engine:
                for i in range(page_count):
                    page = doc.load_page(i)
                    text_layer = self.text_extractor.extract(page)
                    image = await asyncio.to_thread(self.rasterizer.render, page)
                    ocr_text = await engine.recognize(image) if image is not None else None
                    parts.append(ExtractPage(page=i + 1, text_layer=text_layer, ocr_text=ocr_text).combined())
                    await progress.update(page_progress(i + 1, page_count))
        finally:
            doc.close()

        return ExtractedDocument(file_name=file_name, page_count=page_count, full_text="".join(parts).strip())
