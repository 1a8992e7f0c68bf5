# app/models/study_models.py
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    ox              = "ox"
    fill_blank      = "fill_blank"
    multiple_choice = "multiple_choice"
    short_answer    = "short_answer"


class WrongAnswerEvent(BaseModel):
    owner_id: str
    pdf_upload_id: Optional[str] = None  # back-reference to the source document
    question_type: QuestionType
    question: str
    user_answer: str
    correct_answer: str
    explanation: Optional[str] = None
    hint: Optional[str] = None


class WrongAnswerRecord(WrongAnswerEvent):
    id: str
    created_at: datetime


class BookmarkEvent(BaseModel):
    owner_id: str
    pdf_upload_id: Optional[str] = None
    question_type: QuestionType = QuestionType.short_answer
    question: str
    answer: str
    keywords: List[str] = []
    explanation: str = ""
    bookmarked: bool = True  # False: the toggle removed it


class BookmarkRecord(BookmarkEvent):
    id: str
    created_at: datetime


class AnswerSlot(BaseModel):
    value: Optional[Union[bool, int, str]] = None
    checked: bool = False    # fill-blank / short-answer reveal
    correct: Optional[bool] = None
    bookmarked: bool = False

    @property
    def locked(self) -> bool:
        return self.checked or self.correct is not None


class AnswerOutcome(BaseModel):
    accepted: bool
    correct: Optional[bool] = None
    wrong_answer: Optional[WrongAnswerEvent] = None
    warning: Optional[str] = None
    slot: AnswerSlot = Field(default_factory=AnswerSlot)
