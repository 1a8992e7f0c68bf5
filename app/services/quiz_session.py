# app/services/quiz_session.py
"""
In-memory state for the one live question set of a study session.

Holds the active GenerationResult plus one AnswerSlot per item. True/false and
multiple-choice slots lock on the first answer; fill-blank and short-answer slots
stay editable until `check` reveals them. Wrong answers on graded questions are
emitted exactly once to the study store; short-answer questions are self-graded
and only ever produce bookmark events.
"""
import logging
from functools import singledispatch
from typing import Any, List, Optional, Protocol

from app.errors import PersistenceError, SessionStateError, ValidationError
from app.models.generation_models import (
    Capability,
    FillBlankQuestion,
    GenerationResult,
    MultipleChoiceQuestion,
    ShortAnswerQuestion,
    ShortAnswerResult,
    TrueFalseQuestion,
    result_items,
)
from app.models.study_models import (
    AnswerOutcome,
    AnswerSlot,
    BookmarkEvent,
    QuestionType,
    WrongAnswerEvent,
)

log = logging.getLogger("examprep")


class StudyEventSink(Protocol):
    async def record_wrong_answer(self, event: WrongAnswerEvent) -> Any: ...
    async def add_bookmark(self, event: BookmarkEvent) -> Any: ...
    async def remove_bookmark(self, owner_id: str, question: str) -> bool: ...


def _ox(value: bool) -> str:
    return "O" if value else "X"


# ===== correctness, one rule per question variant =====

@singledispatch
def is_correct(question, value) -> Optional[bool]:
    raise TypeError(f"not a question: {type(question).__name__}")


@is_correct.register
def _(question: TrueFalseQuestion, value) -> Optional[bool]:
    return value == question.answer


@is_correct.register
def _(question: FillBlankQuestion, value) -> Optional[bool]:
    return (value or "").strip().lower() == question.answer.strip().lower()


@is_correct.register
def _(question: MultipleChoiceQuestion, value) -> Optional[bool]:
    return value == question.correct_answer


@is_correct.register
def _(question: ShortAnswerQuestion, value) -> Optional[bool]:
    return None  # self-graded


# ===== wrong-answer payload per graded variant =====

@singledispatch
def wrong_answer_fields(question, value) -> dict:
    raise TypeError(f"{type(question).__name__} does not produce wrong answers")


@wrong_answer_fields.register
def _(question: TrueFalseQuestion, value) -> dict:
    return dict(question_type=QuestionType.ox, question=question.question,
                user_answer=_ox(value), correct_answer=_ox(question.answer),
                explanation=question.explanation)


@wrong_answer_fields.register
def _(question: FillBlankQuestion, value) -> dict:
    return dict(question_type=QuestionType.fill_blank, question=question.question,
                user_answer=value or "", correct_answer=question.answer, hint=question.hint)


@wrong_answer_fields.register
def _(question: MultipleChoiceQuestion, value) -> dict:
    return dict(question_type=QuestionType.multiple_choice, question=question.question,
                user_answer=question.options[value], correct_answer=question.options[question.correct_answer],
                explanation=question.explanation)


class QuizSessionState:
    def __init__(self, sink: StudyEventSink, *, owner_id: str, pdf_upload_id: Optional[str] = None):
        self.sink = sink
        self.owner_id = owner_id
        self.pdf_upload_id = pdf_upload_id
        self.result = None
        self.slots: List[AnswerSlot] = []
        self.busy: Optional[Capability] = None
        self._generation = 0  # id of the latest run_generation call

    # ---------- lifecycle ----------

    def clear(self) -> None:
        self.result = None
        self.slots = []

    def reset(self) -> None:
        """Drops the live set and orphans any generation still in flight."""
        self._generation += 1
        self.busy = None
        self.clear()

    def load(self, result) -> None:
        self.result = result
        self.slots = [AnswerSlot() for _ in result_items(result)]

    async def run_generation(self, client, capability: Capability, payload) -> GenerationResult:
        """
        Clears everything first: at most one question set is live at a time.

        A call overtaken by a newer one never loads its result and leaves `busy`
        to the newer call; it raises SessionStateError instead.
        """
        capability = Capability(capability)
        self._generation += 1
        token = self._generation
        self.clear()
        self.busy = capability
        log.info(f"[session] owner={self.owner_id} generating {capability.value} #{token}")
        try:
            result = await client.generate(capability, payload)
        finally:
            if token == self._generation:
                self.busy = None
        if token != self._generation:
            log.info(f"[session] owner={self.owner_id} dropping stale {capability.value} #{token}")
            raise SessionStateError("A newer request replaced this one.")
        self.load(result)
        return result

    # ---------- answering ----------

    def _question(self, index: int):
        if self.result is None:
            raise SessionStateError("There is no active question set.")
        items = result_items(self.result)
        if not 0 <= index < len(items):
            raise ValidationError(f"There is no question {index + 1}.")
        q = items[index]
        if not isinstance(q, (TrueFalseQuestion, FillBlankQuestion, MultipleChoiceQuestion, ShortAnswerQuestion)):
            raise SessionStateError()
        return q

    async def answer(self, index: int, value) -> AnswerOutcome:
        q = self._question(index)
        slot = self.slots[index]

        if isinstance(q, (FillBlankQuestion, ShortAnswerQuestion)):
            if slot.checked:
                return AnswerOutcome(accepted=False, correct=slot.correct, slot=slot)
            if not isinstance(value, str):
                raise ValidationError("Enter the answer as text.")
            slot.value = value
            return AnswerOutcome(accepted=True, slot=slot)

        if slot.locked:
            log.info(f"[session] slot {index} already answered, ignoring")
            return AnswerOutcome(accepted=False, correct=slot.correct, slot=slot)
        if isinstance(q, TrueFalseQuestion):
            if not isinstance(value, bool):
                raise ValidationError("Answer with O (true) or X (false).")
        elif isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < len(q.options):
            raise ValidationError("Select one of the options.")

        slot.value = value
        slot.correct = is_correct(q, value)
        return await self._graded(q, slot, value)

    async def check(self, index: int) -> AnswerOutcome:
        """Reveal a fill-blank or short-answer slot; locks it."""
        q = self._question(index)
        if not isinstance(q, (FillBlankQuestion, ShortAnswerQuestion)):
            raise SessionStateError("Only fill-in-the-blank and short-answer questions are checked.")
        slot = self.slots[index]
        if slot.checked:
            return AnswerOutcome(accepted=False, correct=slot.correct, slot=slot)
        slot.checked = True
        if isinstance(q, ShortAnswerQuestion):
            return AnswerOutcome(accepted=True, slot=slot)
        slot.correct = is_correct(q, slot.value)
        return await self._graded(q, slot, slot.value)

    async def _graded(self, q, slot: AnswerSlot, value) -> AnswerOutcome:
        if slot.correct:
            return AnswerOutcome(accepted=True, correct=True, slot=slot)
        event = WrongAnswerEvent(owner_id=self.owner_id, pdf_upload_id=self.pdf_upload_id,
                                 **wrong_answer_fields(q, value))
        warning = None
        try:
            await self.sink.record_wrong_answer(event)
        except PersistenceError as e:
            warning = e.user_message
        return AnswerOutcome(accepted=True, correct=False, wrong_answer=event, warning=warning, slot=slot)

    # ---------- bookmarks ----------

    async def toggle_bookmark(self, index: int) -> bool:
        """Optimistic flip; rolled back when the store rejects the change."""
        if not isinstance(self.result, ShortAnswerResult):
            raise SessionStateError("Only short-answer questions can be bookmarked.")
        q: ShortAnswerQuestion = self._question(index)
        slot = self.slots[index]
        previous = slot.bookmarked
        slot.bookmarked = not previous
        try:
            if slot.bookmarked:
                await self.sink.add_bookmark(BookmarkEvent(
                    owner_id=self.owner_id, pdf_upload_id=self.pdf_upload_id,
                    question=q.question, answer=q.answer, keywords=q.keywords,
                    explanation=q.explanation,
                ))
            else:
                await self.sink.remove_bookmark(self.owner_id, q.question)
        except PersistenceError:
            slot.bookmarked = previous
            raise
        return slot.bookmarked
