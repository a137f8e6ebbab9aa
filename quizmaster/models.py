from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    FILL_IN = "fill_in"
    ESSAY = "essay"


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERRORED = "errored"


class Provenance(str, Enum):
    PRECOMPUTED = "precomputed"
    GENERATED = "generated"
    CLUSTER_CACHED = "cluster_cached"


class Vote(str, Enum):
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class Option:
    id: str
    text: str


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    question_type: QuestionType
    correct_answer: str  # option id for single_choice, literal / key points otherwise
    options: tuple[Option, ...] = ()
    explanation: str | None = None
    explanation_source: str = "authored"  # authored | generated
    difficulty: str = "medium"
    topic_id: str | None = None


@dataclass(frozen=True)
class Choice:
    kind: ClassVar[str] = "choice"
    option_id: str

    @property
    def raw(self) -> str:
        return self.option_id


@dataclass(frozen=True)
class Text:
    kind: ClassVar[str] = "text"
    value: str

    @property
    def raw(self) -> str:
        return self.value


AnswerValue = Union[Choice, Text]


@dataclass(frozen=True)
class EssayGrade:
    score: int  # 0-10
    feedback: str


@dataclass
class AnswerRecord:
    question_id: str
    value: AnswerValue
    is_correct: bool
    time_spent: float
    submitted_at: datetime
    grade: EssayGrade | None = None


@dataclass(frozen=True)
class ExplanationEntry:
    question_id: str
    text: str
    provenance: Provenance
    vote: Vote | None = None


@dataclass(frozen=True)
class ScoreCard:
    correct_count: int
    total_questions: int
    score_percent: float
    perfect: bool
    xp: int
    band: str


@dataclass(frozen=True)
class QuizOutcome:
    score: ScoreCard
    time_taken_seconds: int
    topic_id: str | None
    result_id: int | None = None
    persistence_errors: tuple[str, ...] = field(default_factory=tuple)
