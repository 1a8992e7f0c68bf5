"""
Tests for the tesseract engine lifecycle (tesseract itself is stubbed)
"""
import asyncio

import pytest
import pytesseract
from PIL import Image

from app.services.ocr_engine import OcrEngine, OcrEngineError


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def tesseract(monkeypatch):
    """Installed languages and recognized calls of a stubbed tesseract."""
    calls = []
    state = {"languages": ["eng", "kor", "osd"]}

    def image_to_string(image, lang=None, config=None):
        calls.append((lang, config))
        return "recognized text"

    monkeypatch.setattr(pytesseract.pytesseract, "tesseract_cmd", pytesseract.pytesseract.tesseract_cmd)
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": state["languages"])
    monkeypatch.setattr(pytesseract, "image_to_string", image_to_string)
    state["calls"] = calls
    return state


@pytest.fixture
def image():
    return Image.new("RGB", (20, 20), "white")


class TestLifecycle:
    """recognize needs a started engine, terminate is final"""

    def test_start_recognize_terminate(self, tesseract, image):
        engine = OcrEngine(lang="kor+eng")

        async def scenario():
            await engine.start()
            text = await engine.recognize(image)
            await engine.terminate()
            return text

        assert run(scenario()) == "recognized text"
        assert tesseract["calls"] == [("kor+eng", "--psm 6")]
        assert not engine.active

    def test_recognize_before_start(self, tesseract, image):
        with pytest.raises(OcrEngineError):
            run(OcrEngine().recognize(image))

    def test_refuses_work_after_terminate(self, tesseract, image):
        engine = OcrEngine()

        async def scenario():
            await engine.start()
            await engine.terminate()
            await engine.terminate()
            await engine.recognize(image)

        with pytest.raises(OcrEngineError):
            run(scenario())
        with pytest.raises(OcrEngineError):
            run(engine.start())
        assert tesseract["calls"] == []

    def test_missing_language_pack(self, tesseract):
        tesseract["languages"] = ["eng"]
        with pytest.raises(OcrEngineError) as exc:
            run(OcrEngine(lang="kor+eng").start())
        assert "kor" in str(exc.value)

    def test_missing_binary(self, tesseract, monkeypatch):
        def not_installed():
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "get_tesseract_version", not_installed)
        with pytest.raises(OcrEngineError):
            run(OcrEngine().start())

    def test_context_manager_terminates_on_failed_start(self, tesseract):
        tesseract["languages"] = []
        engine = OcrEngine(lang="eng")

        async def scenario():
            async with engine:
                pass

        with pytest.raises(OcrEngineError):
            run(scenario())
        assert engine._terminated
