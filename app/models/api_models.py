# app/models/api_models.py
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field

from .extract_models import ExtractionProgress


class CreateSessionIn(BaseModel):
    owner_id: str = Field(..., min_length=1)


class SessionCreated(BaseModel):
    session_id: str
    owner_id: str


class GenerateIn(BaseModel):
    question_count: Optional[int] = 5


class AnswerIn(BaseModel):
    value: Union[bool, int, str]


class BookmarkOut(BaseModel):
    index: int
    bookmarked: bool


class DocumentSummary(BaseModel):
    file_name: str
    page_count: Optional[int] = None
    upload_id: Optional[str] = None
    text_length: int


class SessionSnapshot(BaseModel):
    session_id: str
    owner_id: str
    document: Optional[DocumentSummary] = None
    busy: Optional[str] = None                    # capability in flight
    progress: Optional[ExtractionProgress] = None
    result: Optional[Any] = None
    slots: List[Any] = []


# --- jobs models ---

class JobStatus(str, Enum):
    queued   = "queued"
    running  = "running"
    done     = "done"
    error    = "error"


class EnqueueResponse(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.queued


class JobPollResponse(BaseModel):
    job_id: str
    status: JobStatus
    progress: int = 0
    message: Optional[str] = None
    result: Optional[Any] = None  # 完成后放 ExtractionOutcome JSON
