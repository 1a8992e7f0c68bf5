# app/models/generation_models.py
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

QUESTION_COUNTS = (5, 10, 15)


class Capability(str, Enum):
    quiz              = "quiz"
    fill_blank        = "fillBlank"
    multiple_choice   = "multipleChoice"
    short_answer      = "shortAnswer"
    solve             = "solve"
    weakness_analysis = "weaknessAnalysis"
    recommendation    = "recommendation"


# counted capabilities must come back with exactly `question_count` items
COUNTED_CAPABILITIES = frozenset({
    Capability.quiz, Capability.fill_blank, Capability.multiple_choice, Capability.short_answer,
})
# capabilities that require the document text
TEXT_CAPABILITIES = COUNTED_CAPABILITIES | {Capability.solve}
# capabilities answered with free-form text that the client parses leniently
FREE_FORM_CAPABILITIES = frozenset({
    Capability.solve, Capability.weakness_analysis, Capability.recommendation,
})


class _Wire(BaseModel):
    # wire format is camelCase, python side is snake_case
    model_config = ConfigDict(populate_by_name=True)


# --- question variants (discriminated by `kind`) ---

class TrueFalseQuestion(_Wire):
    kind: Literal["true_false"] = "true_false"
    question: str
    answer: bool
    explanation: str


class FillBlankQuestion(_Wire):
    kind: Literal["fill_blank"] = "fill_blank"
    question: str
    answer: str
    hint: str


class MultipleChoiceQuestion(_Wire):
    kind: Literal["multiple_choice"] = "multiple_choice"
    question: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_answer: int = Field(..., alias="correctAnswer", ge=0, le=3)
    explanation: str


class ShortAnswerQuestion(_Wire):
    kind: Literal["short_answer"] = "short_answer"
    question: str
    answer: str
    keywords: List[str] = []
    explanation: str


Question = Annotated[
    Union[TrueFalseQuestion, FillBlankQuestion, MultipleChoiceQuestion, ShortAnswerQuestion],
    Field(discriminator="kind"),
]


# --- non-question items ---

class ProblemSolution(_Wire):
    problem: str
    solution: str
    key_points: str = Field("", alias="keyPoints")


class Weakness(_Wire):
    category: str
    error_count: int = Field(0, alias="errorCount")
    error_rate: float = Field(0.0, alias="errorRate")
    examples: List[str] = []


class RecommendedProblem(_Wire):
    problem: str
    category: str
    difficulty: str
    hint: str
    answer: str
    explanation: str


# --- results (tagged by capability) ---

class QuizResult(_Wire):
    capability: Literal[Capability.quiz] = Capability.quiz
    questions: List[TrueFalseQuestion]
    summary: str = Field(..., min_length=1)


class FillBlankResult(_Wire):
    capability: Literal[Capability.fill_blank] = Capability.fill_blank
    questions: List[FillBlankQuestion]


class MultipleChoiceResult(_Wire):
    capability: Literal[Capability.multiple_choice] = Capability.multiple_choice
    questions: List[MultipleChoiceQuestion]


class ShortAnswerResult(_Wire):
    capability: Literal[Capability.short_answer] = Capability.short_answer
    questions: List[ShortAnswerQuestion]


class SolveResult(_Wire):
    capability: Literal[Capability.solve] = Capability.solve
    problems: List[ProblemSolution]


class WeaknessResult(_Wire):
    capability: Literal[Capability.weakness_analysis] = Capability.weakness_analysis
    weaknesses: List[Weakness]


class RecommendationResult(_Wire):
    capability: Literal[Capability.recommendation] = Capability.recommendation
    problems: List[RecommendedProblem]


GenerationResult = Annotated[
    Union[
        QuizResult, FillBlankResult, MultipleChoiceResult, ShortAnswerResult,
        SolveResult, WeaknessResult, RecommendationResult,
    ],
    Field(discriminator="capability"),
]

RESULT_MODELS = {
    Capability.quiz: QuizResult,
    Capability.fill_blank: FillBlankResult,
    Capability.multiple_choice: MultipleChoiceResult,
    Capability.short_answer: ShortAnswerResult,
    Capability.solve: SolveResult,
    Capability.weakness_analysis: WeaknessResult,
    Capability.recommendation: RecommendationResult,
}


def result_items(result) -> list:
    """The item list of any result variant."""
    if isinstance(result, WeaknessResult):
        return result.weaknesses
    if isinstance(result, (SolveResult, RecommendationResult)):
        return result.problems
    return result.questions


# --- request payloads ---

class TextPayload(_Wire):
    text: str
    question_count: Optional[int] = Field(None, alias="questionCount")


class WrongAnswerBrief(_Wire):
    question: str
    question_type: str


class WeaknessPayload(_Wire):
    wrong_answers: List[WrongAnswerBrief] = Field(..., alias="wrongAnswers")


class RecommendationPayload(_Wire):
    weaknesses: List[Weakness]
    pdf_text: str = Field(..., alias="pdfText")


GenerationPayload = Union[TextPayload, WeaknessPayload, RecommendationPayload]
