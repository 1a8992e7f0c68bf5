# app/services/job_store.py
import json, time, uuid, logging
from typing import Optional, Dict, Any

import redis.asyncio as aioredis

log = logging.getLogger("examprep")

HPFX = "examprep:job:"  # 每个任务的 hash 前缀


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobStore:
    """Extraction jobs polled by the frontend: status, progress percent, final result."""

    def __init__(self, r: aioredis.Redis, ttl: int = 86400):
        self._r = r
        self.ttl = ttl

    @staticmethod
    def _hkey(job_id: str) -> str:
        return f"{HPFX}{job_id}"

    async def create_job(self, filename: str, session_id: str) -> str:
        job_id = new_job_id()
        hk = self._hkey(job_id)
        payload: Dict[str, Any] = {
            "job_id": job_id,
            "filename": str(filename),
            "session_id": str(session_id),
            "status": "queued",
            "progress": 0,
            "created_at": int(time.time()),
        }
        log.info(f"[redis] HSET {hk} (ttl={self.ttl}) job_id={job_id}")
        p = self._r.pipeline()
        p.hset(hk, mapping=payload)
        p.expire(hk, self.ttl)
        await p.execute()
        return job_id

    async def set_status(self, job_id: str, status: str, message: Optional[str] = None):
        hk = self._hkey(job_id)
        m: Dict[str, Any] = {"status": str(status)}
        if message is not None:
            m["message"] = str(message)
        log.info(f"[redis] HSET {hk} status={status} msg={message!r}")
        await self._r.hset(hk, mapping=m)

    async def set_progress(self, job_id: str, percent: int):
        await self._r.hset(self._hkey(job_id), mapping={"progress": int(percent)})

    async def save_result(self, job_id: str, result_obj: Any, message: Optional[str] = None):
        hk = self._hkey(job_id)
        result_json = json.dumps(result_obj, ensure_ascii=False)
        log.info(f"[redis] HSET {hk} status=done + result(len)={len(result_json)}")
        m: Dict[str, Any] = {
            "status": "done",
            "result": result_json,
            "finished_at": int(time.time()),
        }
        if message is not None:
            m["message"] = str(message)
        await self._r.hset(hk, mapping=m)

    async def save_error(self, job_id: str, err: str):
        hk = self._hkey(job_id)
        log.warning(f"[redis] HSET {hk} status=error msg={err!r}")
        await self._r.hset(hk, mapping={
            "status": "error",
            "progress": 0,
            "message": str(err),
            "finished_at": int(time.time()),
        })

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        hk = self._hkey(job_id)
        data = await self._r.hgetall(hk)
        log.info(f"[redis] HGETALL {hk} -> {'hit' if data else 'miss'}")
        if not data:
            return None
        if "result" in data and isinstance(data["result"], str):
            try:
                data["result"] = json.loads(data["result"])
            except ValueError as e:
                log.warning(f"[redis] parse result JSON fail: {e}")
        data["progress"] = int(data.get("progress", 0))
        return data
