# app/main.py
from contextlib import asynccontextmanager
from typing import Callable, Optional
import logging, sys, time, traceback
from urllib.parse import quote

from fastapi import BackgroundTasks, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
import redis.asyncio as aioredis

# 降低 httpx/httpcore 的日志噪音
for name in ("httpx", "httpcore"):
    logging.getLogger(name).setLevel(logging.WARNING)

# ===== logging setup =====
logging.basicConfig(
    level=logging.INFO,
    stream=sys.stdout,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
log = logging.getLogger("examprep")

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse


class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next):
        t0 = time.time()
        clen = request.headers.get("content-length", "-")
        try:
            log.info(f"[req] {request.method} {request.url.path} q={dict(request.query_params)} len={clen}")
            resp: StarletteResponse = await call_next(request)
            dt = int((time.time() - t0) * 1000)
            log.info(f"[res] {request.method} {request.url.path} -> {resp.status_code} {dt}ms")
            return resp
        except Exception:
            dt = int((time.time() - t0) * 1000)
            log.error(f"[res] {request.method} {request.url.path} -> 500 {dt}ms\n{traceback.format_exc()}")
            raise


from app.config import Settings, get_settings
from app.errors import AppError, ExtractionBusyError, NotFoundError, ValidationError
from app.models.api_models import (
    AnswerIn, BookmarkOut, CreateSessionIn, DocumentSummary, EnqueueResponse, GenerateIn,
    JobPollResponse, JobStatus, SessionCreated, SessionSnapshot,
)
from app.models.extract_models import extracted_text_name
from app.models.generation_models import Capability
from app.services.extraction_pipeline import DocumentExtractionPipeline
from app.services.job_store import JobStore
from app.services.llm_client import GenerationClient
from app.services.ocr_engine import OcrEngine
from app.services.pdf_extract import PageRasterizer
from app.services.study_session import SessionRegistry, StudySession
from app.services.study_store import StudyStore, bookmark_summary


def attachment(file_name: str) -> dict:
    # RFC 5987 form, file names are often Korean
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"}


def snapshot(session: StudySession) -> SessionSnapshot:
    doc = None
    if session.file_name is not None:
        doc = DocumentSummary(file_name=session.file_name, page_count=session.page_count,
                              upload_id=session.upload_id, text_length=len(session.text))
    quiz = session.quiz
    return SessionSnapshot(
        session_id=session.session_id,
        owner_id=session.owner_id,
        document=doc,
        busy=quiz.busy.value if quiz.busy else None,
        progress=session.progress,
        result=quiz.result.model_dump(mode="json", by_alias=True) if quiz.result is not None else None,
        slots=[s.model_dump(mode="json") for s in quiz.slots],
    )


async def run_extraction_job(jobs: JobStore, job_id: str, session: StudySession, filename: str, data: bytes):
    log.info(f"[worker] job_id={job_id} file={filename!r} session={session.session_id}")
    try:
        await jobs.set_status(job_id, "running", "extracting")

        async def on_progress(percent: int):
            await jobs.set_progress(job_id, percent)

        outcome = await session.extract(filename, data, on_progress=on_progress)
        await jobs.save_result(job_id, outcome.model_dump(mode="json"), message=outcome.warning)
        log.info(f"[worker] job_id={job_id} -> done")
    except AppError as e:
        log.warning(f"[worker] job_id={job_id} -> error: {e.detail or e.user_message}")
        await jobs.save_error(job_id, e.user_message)
    except Exception as e:
        log.error(f"[worker] job_id={job_id} crashed: {type(e).__name__}: {e}\n{traceback.format_exc()}")
        await jobs.save_error(job_id, "An error occurred while processing the PDF file.")
    finally:
        session.extraction_job_id = None


def create_app(
    settings: Optional[Settings] = None,
    *,
    redis_client: Optional[aioredis.Redis] = None,
    generation_client: Optional[GenerationClient] = None,
    engine_factory: Optional[Callable[[], OcrEngine]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    r = redis_client or aioredis.from_url(settings.redis_url, decode_responses=True)
    store = StudyStore(r)
    jobs = JobStore(r, ttl=settings.job_ttl_seconds)
    client = generation_client or GenerationClient.from_settings(settings)
    engine_factory = engine_factory or (lambda: OcrEngine(lang=settings.ocr_lang, tesseract_cmd=settings.tesseract_cmd))

    def new_session(session_id: str, owner_id: str) -> StudySession:
        pipeline = DocumentExtractionPipeline(
            store, engine_factory=engine_factory, rasterizer=PageRasterizer(scale=settings.raster_scale))
        return StudySession(session_id, owner_id, store=store, client=client, pipeline=pipeline)

    registry = SessionRegistry(new_session, ttl=settings.session_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.aclose()
        await r.aclose()

    app = FastAPI(title="Exam Study Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["*"],
    )
    app.state.registry = registry
    app.state.store = store
    app.state.jobs = jobs

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health", tags=["meta"])
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/", tags=["meta"])
    def root() -> dict:
        return {"message": "Exam Study Backend is running"}

    # ========= sessions =========
    @app.post("/sessions", response_model=SessionCreated, tags=["session"])
    def create_session(body: CreateSessionIn) -> SessionCreated:
        session = registry.create(body.owner_id)
        return SessionCreated(session_id=session.session_id, owner_id=session.owner_id)

    @app.get("/sessions/{sid}", response_model=SessionSnapshot, tags=["session"])
    def get_session(sid: str) -> SessionSnapshot:
        return snapshot(registry.get(sid))

    @app.delete("/sessions/{sid}", tags=["session"])
    def delete_session(sid: str) -> dict:
        registry.remove(sid)
        return {"deleted": sid}

    @app.get("/sessions/{sid}/document/text", tags=["session"])
    def download_text(sid: str) -> PlainTextResponse:
        session = registry.get(sid)
        if session.file_name is None:
            raise NotFoundError("There is no extracted text yet.")
        return PlainTextResponse(session.text, headers=attachment(extracted_text_name(session.file_name)))

    # ========= upload -> background extraction =========
    @app.post("/sessions/{sid}/uploads", tags=["upload"])
    async def upload_pdf(sid: str, background: BackgroundTasks, file: UploadFile = File(...)) -> JSONResponse:
        session = registry.get(sid)
        if file.content_type != "application/pdf":
            raise ValidationError("Only PDF files can be uploaded.")
        too_large = ValidationError(f"The file is larger than {settings.max_upload_bytes // (1024 * 1024)} MB.")
        if file.size is not None and file.size > settings.max_upload_bytes:
            raise too_large
        # never buffer more than the limit plus one byte
        data = await file.read(settings.max_upload_bytes + 1)
        if not data:
            raise ValidationError("The file is empty.")
        if len(data) > settings.max_upload_bytes:
            raise too_large
        if session.extraction_job_id or session.pipeline.running:
            raise ExtractionBusyError()

        filename = file.filename or "upload.pdf"
        job_id = await jobs.create_job(filename, sid)
        session.extraction_job_id = job_id
        background.add_task(run_extraction_job, jobs, job_id, session, filename, data)
        return JSONResponse(status_code=202, content=EnqueueResponse(job_id=job_id).model_dump(mode="json"))

    # ========= 轮询：前端一直打这个 =========
    @app.get("/jobs/{job_id}", response_model=JobPollResponse, tags=["upload"])
    async def poll(job_id: str):
        data = await jobs.get_job(job_id)
        if not data:
            raise NotFoundError("The job was not found.")
        return JobPollResponse(
            job_id=job_id,
            status=JobStatus(data["status"]),
            progress=data["progress"],
            message=data.get("message"),
            result=data.get("result"),
        )

    # ========= history =========
    @app.get("/sessions/{sid}/history", tags=["history"])
    async def history(sid: str):
        session = registry.get(sid)
        records = await store.list_uploads(session.owner_id)
        return [rec.model_dump(mode="json", exclude={"extracted_text"}) for rec in records]

    @app.post("/sessions/{sid}/history/{upload_id}/load", response_model=SessionSnapshot, tags=["history"])
    async def load_history(sid: str, upload_id: str):
        session = registry.get(sid)
        await session.load_upload(upload_id)
        return snapshot(session)

    @app.get("/sessions/{sid}/history/{upload_id}/file", tags=["history"])
    async def download_file(sid: str, upload_id: str) -> Response:
        record, data = await registry.get(sid).upload_file(upload_id)
        return Response(content=data, media_type="application/pdf", headers=attachment(record.file_name))

    @app.delete("/sessions/{sid}/history/{upload_id}", tags=["history"])
    async def delete_history(sid: str, upload_id: str):
        await registry.get(sid).delete_upload(upload_id)
        return {"deleted": upload_id}

    # ========= generation =========
    @app.post("/sessions/{sid}/generate/{capability}", tags=["generate"])
    async def generate(sid: str, capability: Capability, body: Optional[GenerateIn] = None):
        session = registry.get(sid)
        count = body.question_count if body else None
        result = await session.generate(capability, count)
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/sessions/{sid}/recommendations/{upload_id}", tags=["generate"])
    async def recommend(sid: str, upload_id: str):
        out = await registry.get(sid).recommend(upload_id)
        return {k: [item.model_dump(mode="json", by_alias=True) for item in v] for k, v in out.items()}

    # ========= answering =========
    @app.post("/sessions/{sid}/answers/{index}", tags=["quiz"])
    async def answer(sid: str, index: int, body: AnswerIn):
        outcome = await registry.get(sid).quiz.answer(index, body.value)
        return outcome.model_dump(mode="json")

    @app.post("/sessions/{sid}/answers/{index}/check", tags=["quiz"])
    async def check(sid: str, index: int):
        outcome = await registry.get(sid).quiz.check(index)
        return outcome.model_dump(mode="json")

    @app.post("/sessions/{sid}/bookmarks/{index}", response_model=BookmarkOut, tags=["quiz"])
    async def toggle_bookmark(sid: str, index: int):
        flag = await registry.get(sid).quiz.toggle_bookmark(index)
        return BookmarkOut(index=index, bookmarked=flag)

    # ========= notebook =========
    @app.get("/sessions/{sid}/wrong-answers", tags=["notebook"])
    async def wrong_answers(sid: str, question_type: Optional[str] = None, upload_id: Optional[str] = None):
        session = registry.get(sid)
        records = await store.list_wrong_answers(session.owner_id, question_type=question_type, upload_id=upload_id)
        return [rec.model_dump(mode="json") for rec in records]

    @app.delete("/sessions/{sid}/wrong-answers/{wrong_id}", tags=["notebook"])
    async def delete_wrong_answer(sid: str, wrong_id: str):
        session = registry.get(sid)
        if not await store.delete_wrong_answer(session.owner_id, wrong_id):
            raise NotFoundError("The wrong answer was not found.")
        return {"deleted": wrong_id}

    @app.get("/sessions/{sid}/bookmarks", tags=["notebook"])
    async def bookmarks(sid: str, upload_id: Optional[str] = None):
        session = registry.get(sid)
        records = await store.list_bookmarks(session.owner_id, upload_id=upload_id)
        return {
            "items": [rec.model_dump(mode="json") for rec in records],
            "by_upload": bookmark_summary(records),
        }

    @app.delete("/sessions/{sid}/bookmarks/{bookmark_id}", tags=["notebook"])
    async def delete_bookmark(sid: str, bookmark_id: str):
        session = registry.get(sid)
        if not await store.delete_bookmark(session.owner_id, bookmark_id):
            raise NotFoundError("The bookmark was not found.")
        return {"deleted": bookmark_id}

    return app


app = create_app()
