# app/services/study_store.py
"""
Redis-backed persistence for everything the learner accumulates: uploaded PDFs
(record + original bytes), the wrong-answer notebook and short-answer bookmarks.

Every redis failure is re-raised as PersistenceError so callers can treat it as a
warning rather than a crash.
"""
import base64, functools, hashlib, logging, os, time, uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import redis
import redis.asyncio as aioredis

from app.errors import PersistenceError
from app.models.extract_models import UploadRecord
from app.models.study_models import BookmarkEvent, BookmarkRecord, WrongAnswerEvent, WrongAnswerRecord

log = logging.getLogger("examprep")

PFX = "examprep:"


def _persist(message: str):
    def wrap(fn):
        @functools.wraps(fn)
        async def inner(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except redis.RedisError as e:
                log.error(f"[redis] {fn.__name__} failed: {type(e).__name__}: {e}")
                raise PersistenceError(message, detail=str(e)) from e
        return inner
    return wrap


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StudyStore:
    def __init__(self, r: aioredis.Redis):
        self._r = r

    # ===== uploads =====

    @staticmethod
    def _upload_key(upload_id: str) -> str:
        return f"{PFX}upload:{upload_id}"

    @staticmethod
    def _uploads_index(owner_id: str) -> str:
        return f"{PFX}uploads:{owner_id}"

    @staticmethod
    def _file_key(file_path: str) -> str:
        return f"{PFX}file:{file_path}"

    @_persist("An error occurred while saving the file.")
    async def save_upload(self, owner_id: str, file_name: str, data: bytes, extracted_text: str) -> UploadRecord:
        """Store original bytes and record in one MULTI/EXEC so either both exist or neither."""
        ts = int(time.time() * 1000)
        ext = os.path.splitext(file_name)[1].lstrip(".") or "pdf"
        record = UploadRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            file_name=file_name,
            file_path=f"{owner_id}/{ts}.{ext}",
            extracted_text=extracted_text,
            created_at=_now(),
        )
        log.info(f"[redis] save upload id={record.id} path={record.file_path} bytes={len(data)}")
        p = self._r.pipeline(transaction=True)
        p.set(self._file_key(record.file_path), base64.b64encode(data).decode("ascii"))
        p.hset(self._upload_key(record.id), mapping={
            "id": record.id,
            "owner_id": owner_id,
            "file_name": file_name,
            "file_path": record.file_path,
            "extracted_text": extracted_text,
            "created_at": record.created_at.isoformat(),
        })
        p.zadd(self._uploads_index(owner_id), {record.id: ts})
        await p.execute()
        return record

    @_persist("An error occurred while loading the upload history.")
    async def list_uploads(self, owner_id: str) -> List[UploadRecord]:
        ids = await self._r.zrevrange(self._uploads_index(owner_id), 0, -1)
        out: List[UploadRecord] = []
        for upload_id in ids:
            data = await self._r.hgetall(self._upload_key(upload_id))
            if data:
                out.append(UploadRecord(**data))
        return out

    @_persist("An error occurred while loading the file.")
    async def get_upload(self, upload_id: str) -> Optional[UploadRecord]:
        data = await self._r.hgetall(self._upload_key(upload_id))
        return UploadRecord(**data) if data else None

    @_persist("An error occurred while loading the file.")
    async def get_file(self, record: UploadRecord) -> Optional[bytes]:
        raw = await self._r.get(self._file_key(record.file_path))
        return base64.b64decode(raw) if raw else None

    @_persist("An error occurred while deleting the file.")
    async def delete_upload(self, record: UploadRecord) -> None:
        log.info(f"[redis] delete upload id={record.id}")
        p = self._r.pipeline(transaction=True)
        p.delete(self._file_key(record.file_path))
        p.delete(self._upload_key(record.id))
        p.zrem(self._uploads_index(record.owner_id), record.id)
        await p.execute()

    # ===== wrong answers =====

    @staticmethod
    def _wrong_key(wrong_id: str) -> str:
        return f"{PFX}wrong:{wrong_id}"

    @staticmethod
    def _wrongs_index(owner_id: str) -> str:
        return f"{PFX}wrongs:{owner_id}"

    @_persist("An error occurred while saving the wrong answer.")
    async def record_wrong_answer(self, event: WrongAnswerEvent) -> WrongAnswerRecord:
        record = WrongAnswerRecord(id=uuid.uuid4().hex, created_at=_now(), **event.model_dump())
        log.info(f"[redis] wrong answer owner={event.owner_id} type={event.question_type.value} id={record.id}")
        p = self._r.pipeline(transaction=True)
        p.hset(self._wrong_key(record.id), mapping={"data": record.model_dump_json()})
        p.zadd(self._wrongs_index(event.owner_id), {record.id: record.created_at.timestamp()})
        await p.execute()
        return record

    @_persist("An error occurred while loading wrong answers.")
    async def list_wrong_answers(self, owner_id: str, *, question_type: Optional[str] = None,
                                 upload_id: Optional[str] = None) -> List[WrongAnswerRecord]:
        ids = await self._r.zrevrange(self._wrongs_index(owner_id), 0, -1)
        out: List[WrongAnswerRecord] = []
        for wrong_id in ids:
            raw = await self._r.hget(self._wrong_key(wrong_id), "data")
            if not raw:
                continue
            rec = WrongAnswerRecord.model_validate_json(raw)
            if question_type and rec.question_type.value != question_type:
                continue
            if upload_id and rec.pdf_upload_id != upload_id:
                continue
            out.append(rec)
        return out

    @_persist("An error occurred while deleting the wrong answer.")
    async def delete_wrong_answer(self, owner_id: str, wrong_id: str) -> bool:
        removed = await self._r.zrem(self._wrongs_index(owner_id), wrong_id)
        if removed:
            await self._r.delete(self._wrong_key(wrong_id))
        return bool(removed)

    # ===== bookmarks =====

    @staticmethod
    def _bookmark_key(bookmark_id: str) -> str:
        return f"{PFX}bookmark:{bookmark_id}"

    @staticmethod
    def _bookmarks_index(owner_id: str) -> str:
        return f"{PFX}bookmarks:{owner_id}"

    @staticmethod
    def _match_key(owner_id: str, question: str) -> str:
        digest = hashlib.sha1(question.encode("utf-8")).hexdigest()
        return f"{PFX}bookmark-match:{owner_id}:{digest}"

    @_persist("An error occurred while updating bookmarks.")
    async def add_bookmark(self, event: BookmarkEvent) -> BookmarkRecord:
        """Keyed by (owner, question): adding the same question twice keeps one record."""
        match = self._match_key(event.owner_id, event.question)
        existing = await self._r.get(match)
        if existing:
            raw = await self._r.hget(self._bookmark_key(existing), "data")
            if raw:
                return BookmarkRecord.model_validate_json(raw)
        record = BookmarkRecord(id=uuid.uuid4().hex, created_at=_now(),
                                **event.model_dump(exclude={"bookmarked"}))
        p = self._r.pipeline(transaction=True)
        p.hset(self._bookmark_key(record.id), mapping={"data": record.model_dump_json()})
        p.zadd(self._bookmarks_index(event.owner_id), {record.id: record.created_at.timestamp()})
        p.set(match, record.id)
        await p.execute()
        log.info(f"[redis] bookmark add owner={event.owner_id} id={record.id}")
        return record

    @_persist("An error occurred while updating bookmarks.")
    async def remove_bookmark(self, owner_id: str, question: str) -> bool:
        match = self._match_key(owner_id, question)
        bookmark_id = await self._r.get(match)
        if not bookmark_id:
            return False
        p = self._r.pipeline(transaction=True)
        p.delete(match)
        p.delete(self._bookmark_key(bookmark_id))
        p.zrem(self._bookmarks_index(owner_id), bookmark_id)
        await p.execute()
        log.info(f"[redis] bookmark remove owner={owner_id} id={bookmark_id}")
        return True

    @_persist("An error occurred while loading bookmarks.")
    async def list_bookmarks(self, owner_id: str, *, upload_id: Optional[str] = None) -> List[BookmarkRecord]:
        ids = await self._r.zrevrange(self._bookmarks_index(owner_id), 0, -1)
        out: List[BookmarkRecord] = []
        for bookmark_id in ids:
            raw = await self._r.hget(self._bookmark_key(bookmark_id), "data")
            if not raw:
                continue
            rec = BookmarkRecord.model_validate_json(raw)
            if upload_id and rec.pdf_upload_id != upload_id:
                continue
            out.append(rec)
        return out

    @_persist("An error occurred while deleting the bookmark.")
    async def delete_bookmark(self, owner_id: str, bookmark_id: str) -> bool:
        raw = await self._r.hget(self._bookmark_key(bookmark_id), "data")
        if not raw:
            return False
        rec = BookmarkRecord.model_validate_json(raw)
        if rec.owner_id != owner_id:
            return False
        return await self.remove_bookmark(owner_id, rec.question)


def bookmark_summary(records: List[BookmarkRecord]) -> Dict[str, int]:
    """Bookmarks grouped by source upload id ("" for bookmarks without a source)."""
    counts: Dict[str, int] = {}
    for rec in records:
        key = rec.pdf_upload_id or ""
        counts[key] = counts.get(key, 0) + 1
    return counts
