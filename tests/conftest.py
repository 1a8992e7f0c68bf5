"""
Test Configuration and Fixtures
"""
import asyncio
import json

import fakeredis
import fitz
import httpx
import pytest
from openai import AsyncOpenAI

from app.errors import PersistenceError
from app.services.llm_client import GenerationClient
from app.services.ocr_engine import OcrEngine, OcrEngineError


# ===== AI gateway =====

def tool_response(name, args):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "test-model",
        "choices": [{
            "index": 0,
            "finish_reason": "tool_calls",
            "message": {
                "role": "assistant",
                "content": None,
                "tool_calls": [{
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": name, "arguments": json.dumps(args)},
                }],
            },
        }],
    }


def text_response(content):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "test-model",
        "choices": [{
            "index": 0,
            "finish_reason": "stop",
            "message": {"role": "assistant", "content": content},
        }],
    }


def tf_questions(n):
    return [
        {"question": f"Statement {i}", "answer": i % 2 == 0, "explanation": f"Because {i}"}
        for i in range(n)
    ]


class FakeGateway:
    """OpenAI-compatible endpoint behind httpx.MockTransport; records every request body."""

    def __init__(self):
        self.calls = []
        self.status = 200
        self.body = text_response("{}")
        self.delay = 0.0
        self.queue = []

    def reply(self, body, status=200):
        self.body = body
        self.status = status

    def enqueue(self, *bodies):
        """One-shot replies served in order before falling back to `body`."""
        self.queue.extend(bodies)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(json.loads(request.content))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.queue:
            return httpx.Response(200, json=self.queue.pop(0))
        return httpx.Response(self.status, json=self.body)

    def client(self, **kwargs) -> GenerationClient:
        openai_client = AsyncOpenAI(
            api_key="test-key",
            base_url="https://gateway.test/v1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            max_retries=0,
        )
        return GenerationClient(openai_client, **kwargs)


@pytest.fixture
def gateway():
    return FakeGateway()


# ===== OCR =====

class FakeOcrEngine(OcrEngine):
    def __init__(self, fail_start=False, delay=0.0, fail_at=None):
        super().__init__(lang="eng")
        self.fail_start = fail_start
        self.fail_at = fail_at  # 1-based page whose recognition fails
        self.delay = delay
        self.recognized = 0

    async def start(self):
        if self.fail_start:
            raise OcrEngineError("tesseract not available")
        self._started = True
        return self

    async def recognize(self, image):
        if not self.active:
            raise OcrEngineError("engine is not running")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_at == self.recognized + 1:
            raise OcrEngineError(f"recognition failed on page {self.fail_at}")
        self.recognized += 1
        return f"ocr {self.recognized}"


@pytest.fixture
def engines():
    """Factory that remembers every engine it handed out."""
    created = []

    def factory(**kwargs):
        def make():
            engine = FakeOcrEngine(**kwargs)
            created.append(engine)
            return engine
        return make

    factory.created = created
    return factory


# ===== documents =====

def make_pdf(pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def pdf_bytes():
    return make_pdf(["First page", "Second page", "Third page"])


# ===== persistence =====

@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


class RecordingSink:
    """Collects study events; `fail=True` makes every write a PersistenceError."""

    def __init__(self):
        self.wrong_answers = []
        self.bookmarks = {}
        self.fail = False

    async def record_wrong_answer(self, event):
        if self.fail:
            raise PersistenceError()
        self.wrong_answers.append(event)

    async def add_bookmark(self, event):
        if self.fail:
            raise PersistenceError()
        self.bookmarks[(event.owner_id, event.question)] = event

    async def remove_bookmark(self, owner_id, question):
        if self.fail:
            raise PersistenceError()
        return self.bookmarks.pop((owner_id, question), None) is not None

    async def save_upload(self, owner_id, file_name, data, extracted_text):
        raise PersistenceError("An error occurred while saving the file.")


@pytest.fixture
def sink():
    return RecordingSink()
