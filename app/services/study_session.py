# app/services/study_session.py
import logging, time, uuid
from typing import Callable, Dict, Optional, Tuple

from app.errors import NotFoundError, SessionStateError, ValidationError
from app.models.extract_models import ExtractionOutcome, ExtractionProgress, UploadRecord
from app.models.generation_models import (
    Capability,
    RecommendationPayload,
    TextPayload,
    WeaknessPayload,
    WrongAnswerBrief,
)
from app.services.extraction_pipeline import DocumentExtractionPipeline, ProgressCallback
from app.services.llm_client import GenerationClient
from app.services.quiz_session import QuizSessionState
from app.services.study_store import StudyStore

log = logging.getLogger("examprep")


class StudySession:
    """
    One learner's working context: the current document and its live question set.

    The document is replaced by a new upload or a reload from history; either
    clears the question set.
    """

    def __init__(self, session_id: str, owner_id: str, *, store: StudyStore,
                 client: GenerationClient, pipeline: DocumentExtractionPipeline):
        self.session_id = session_id
        self.owner_id = owner_id
        self.store = store
        self.client = client
        self.pipeline = pipeline
        self.quiz = QuizSessionState(store, owner_id=owner_id)
        self.file_name: Optional[str] = None
        self.page_count: Optional[int] = None
        self.text: str = ""
        self.upload_id: Optional[str] = None
        self.extraction_job_id: Optional[str] = None

    def set_document(self, file_name: str, text: str, *, page_count: Optional[int] = None,
                     upload_id: Optional[str] = None) -> None:
        self.file_name = file_name
        self.text = text
        self.page_count = page_count
        self.upload_id = upload_id
        self.quiz.reset()
        self.quiz.pdf_upload_id = upload_id

    @property
    def active(self) -> bool:
        """Extraction or generation still running."""
        return bool(self.extraction_job_id) or self.pipeline.running or self.quiz.busy is not None

    @property
    def progress(self) -> Optional[ExtractionProgress]:
        if self.quiz.busy is not None:
            return ExtractionProgress.unknown()
        return None

    # ---------- documents ----------

    async def extract(self, file_name: str, data: bytes,
                      on_progress: Optional[ProgressCallback] = None) -> ExtractionOutcome:
        outcome = await self.pipeline.extract(file_name, data, owner_id=self.owner_id, on_progress=on_progress)
        doc = outcome.document
        self.set_document(doc.file_name, doc.full_text, page_count=doc.page_count,
                          upload_id=outcome.upload.id if outcome.upload else None)
        return outcome

    async def _owned_upload(self, upload_id: str) -> UploadRecord:
        record = await self.store.get_upload(upload_id)
        if record is None or record.owner_id != self.owner_id:
            raise NotFoundError("The file was not found.")
        return record

    async def load_upload(self, upload_id: str) -> UploadRecord:
        record = await self._owned_upload(upload_id)
        self.set_document(record.file_name, record.extracted_text or "", upload_id=record.id)
        log.info(f"[session] {self.session_id} loaded upload {record.id} {record.file_name!r}")
        return record

    async def upload_file(self, upload_id: str) -> Tuple[UploadRecord, bytes]:
        """Original PDF bytes of one of the owner's uploads."""
        record = await self._owned_upload(upload_id)
        data = await self.store.get_file(record)
        if data is None:
            raise NotFoundError("The original file was not found.")
        return record, data

    async def delete_upload(self, upload_id: str) -> None:
        record = await self._owned_upload(upload_id)
        await self.store.delete_upload(record)
        if self.upload_id == record.id:
            self.upload_id = None
            self.quiz.pdf_upload_id = None

    # ---------- generation ----------

    async def generate(self, capability: Capability, question_count: Optional[int] = None):
        capability = Capability(capability)
        if capability in (Capability.weakness_analysis, Capability.recommendation):
            raise ValidationError("Use the recommendation flow for weakness analysis.")
        if not self.text:
            raise ValidationError("Upload a PDF first.")
        payload = TextPayload(text=self.text, question_count=question_count)
        return await self.quiz.run_generation(self.client, capability, payload)

    async def recommend(self, upload_id: str) -> Dict[str, list]:
        """Wrong answers of one upload -> weakness analysis -> recommended problems."""
        record = await self._owned_upload(upload_id)
        wrongs = await self.store.list_wrong_answers(self.owner_id, upload_id=record.id)
        if not wrongs:
            raise ValidationError("There are no wrong answers for this PDF.")
        if not record.extracted_text:
            raise ValidationError("The PDF text was not found.")
        briefs = [WrongAnswerBrief(question=w.question, question_type=w.question_type.value) for w in wrongs]
        analysis = await self.quiz.run_generation(
            self.client, Capability.weakness_analysis, WeaknessPayload(wrong_answers=briefs))
        problems = await self.quiz.run_generation(
            self.client, Capability.recommendation,
            RecommendationPayload(weaknesses=analysis.weaknesses, pdf_text=record.extracted_text))
        return {"weaknesses": analysis.weaknesses, "problems": problems.problems}


class SessionRegistry:
    """
    Live sessions by id. A session untouched for `ttl` seconds is dropped on the
    next create/get, unless extraction or generation is still running for it.
    """

    def __init__(self, factory: Callable[[str, str], StudySession], *, ttl: float = 7200.0,
                 clock: Callable[[], float] = time.monotonic):
        self._factory = factory
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, StudySession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict_idle(self) -> None:
        now = self._clock()
        for session_id, seen in list(self._last_seen.items()):
            if now - seen >= self.ttl and not self._sessions[session_id].active:
                log.info(f"[session] evicting idle {session_id}")
                self._drop(session_id)

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def create(self, owner_id: str) -> StudySession:
        self._evict_idle()
        session_id = uuid.uuid4().hex
        session = self._factory(session_id, owner_id)
        self._sessions[session_id] = session
        self._last_seen[session_id] = self._clock()
        log.info(f"[session] created {session_id} owner={owner_id}")
        return session

    def get(self, session_id: str) -> StudySession:
        self._evict_idle()
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("The session was not found.")
        self._last_seen[session_id] = self._clock()
        return session

    def remove(self, session_id: str) -> None:
        if session_id not in self._sessions:
            raise NotFoundError("The session was not found.")
        if self._sessions[session_id].active:
            raise SessionStateError("The session is still working. Try again when it finishes.")
        self._drop(session_id)
        log.info(f"[session] removed {session_id}")
