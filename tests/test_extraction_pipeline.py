"""
Tests for the PDF extraction pipeline (text layer + OCR)
"""
import asyncio

import pytest

from app.errors import ExtractionBusyError, ExtractionError
from app.models.extract_models import ExtractedDocument, extracted_text_name
from app.services.extraction_pipeline import DocumentExtractionPipeline, page_progress
from app.services.study_store import StudyStore
from conftest import make_pdf


class NoRaster:
    def render(self, page):
        return None


def run(coro):
    return asyncio.run(coro)


class TestProgress:
    """Progress follows decode -> pages -> persist and never goes backwards"""

    def test_page_progress_band(self):
        assert page_progress(1, 3) == 40
        assert page_progress(3, 3) == 80
        assert page_progress(1, 4) == 35

    def test_three_page_sequence(self, fake_redis, engines, pdf_bytes):
        seen = []
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=engines())

        run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1", on_progress=seen.append))

        assert seen == [0, 10, 20, 40, 60, 80, 90, 100]

    def test_async_progress_callback(self, fake_redis, engines, pdf_bytes):
        seen = []

        async def on_progress(p):
            seen.append(p)

        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=engines())
        run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1", on_progress=on_progress))

        assert seen[-1] == 100


class TestExtraction:
    """Page text and OCR text are concatenated in page order"""

    def test_full_text_in_page_order(self, fake_redis, engines, pdf_bytes):
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=engines())

        outcome = run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1"))

        doc = outcome.document
        assert doc.page_count == 3
        assert doc.full_text == "First page\nocr 1\n\nSecond page\nocr 2\n\nThird page\nocr 3"
        assert extracted_text_name(doc.file_name) == "exam_extracted.txt"
        assert outcome.warning is None

    def test_upload_is_persisted(self, fake_redis, engines, pdf_bytes):
        store = StudyStore(fake_redis)
        pipeline = DocumentExtractionPipeline(store, engine_factory=engines())

        async def scenario():
            outcome = await pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1")
            return outcome, await store.list_uploads("u1"), await store.get_file(outcome.upload)

        outcome, uploads, data = run(scenario())
        assert [u.id for u in uploads] == [outcome.upload.id]
        assert uploads[0].extracted_text == outcome.document.full_text
        assert uploads[0].file_path.startswith("u1/")
        assert data == pdf_bytes

    def test_unrenderable_pages_keep_text_layer(self, fake_redis, engines):
        factory = engines()
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=factory,
                                              rasterizer=NoRaster())

        outcome = run(pipeline.extract("a.pdf", make_pdf(["Alpha", "Beta"]), owner_id="u1"))

        assert outcome.document.full_text == "Alpha\n\nBeta"
        assert engines.created[0].recognized == 0

    def test_engine_terminated_after_run(self, fake_redis, engines, pdf_bytes):
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=engines())

        run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1"))

        assert len(engines.created) == 1
        assert not engines.created[0].active
        assert not pipeline.running

    def test_empty_document_rejected(self):
        with pytest.raises(ValueError):
            ExtractedDocument(file_name="x.pdf", page_count=0, full_text="")


class TestFailures:
    """Fatal failures reset progress; persistence failures only warn"""

    def test_corrupt_bytes(self, fake_redis, engines):
        seen = []
        store = StudyStore(fake_redis)
        pipeline = DocumentExtractionPipeline(store, engine_factory=engines())

        with pytest.raises(ExtractionError):
            run(pipeline.extract("bad.pdf", b"not a pdf at all", owner_id="u1", on_progress=seen.append))

        assert seen[-1] == 0
        assert engines.created == []
        assert run(store.list_uploads("u1")) == []
        assert not pipeline.running

    def test_ocr_start_failure_terminates_engine(self, fake_redis, engines, pdf_bytes):
        seen = []
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis),
                                              engine_factory=engines(fail_start=True))

        with pytest.raises(ExtractionError):
            run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1", on_progress=seen.append))

        assert seen == [0, 10, 20, 0]
        assert engines.created[0]._terminated

    def test_ocr_failure_mid_run(self, fake_redis, engines, pdf_bytes):
        seen = []
        store = StudyStore(fake_redis)
        pipeline = DocumentExtractionPipeline(store, engine_factory=engines(fail_at=2))

        with pytest.raises(ExtractionError):
            run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1", on_progress=seen.append))

        assert seen == [0, 10, 20, 40, 0]
        assert engines.created[0]._terminated
        assert not engines.created[0].active
        assert run(store.list_uploads("u1")) == []
        assert not pipeline.running

    def test_persistence_failure_is_a_warning(self, sink, engines, pdf_bytes):
        pipeline = DocumentExtractionPipeline(sink, engine_factory=engines())

        outcome = run(pipeline.extract("exam.pdf", pdf_bytes, owner_id="u1"))

        assert outcome.upload is None
        assert outcome.warning == "An error occurred while saving the file."
        assert outcome.document.page_count == 3

    def test_second_run_while_busy(self, fake_redis, engines, pdf_bytes):
        pipeline = DocumentExtractionPipeline(StudyStore(fake_redis), engine_factory=engines(delay=0.01))

        async def scenario():
            return await asyncio.gather(
                pipeline.extract("a.pdf", pdf_bytes, owner_id="u1"),
                pipeline.extract("b.pdf", pdf_bytes, owner_id="u1"),
                return_exceptions=True,
            )

        first, second = run(scenario())
        assert first.document.file_name == "a.pdf"
        assert isinstance(second, ExtractionBusyError)
        assert len(engines.created) == 1
