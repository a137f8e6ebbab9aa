"""Shared test fixtures."""
from __future__ import annotations

import asyncio

import pytest

from quizmaster.db import Database
from quizmaster.errors import EvaluationError, FetchError, PersistenceError
from quizmaster.gateway import PersistenceGateway, QuestionSource
from quizmaster.models import EssayGrade, Option, Question, QuestionType


class FakeEvaluationService:
    """Counts dispatches; optionally slow or failing."""

    def __init__(self, delay: float = 0, fail: bool = False, essay_score: int = 7):
        self.delay = delay
        self.fail = fail
        self.essay_score = essay_score
        self.calls: list[tuple] = []

    async def _respond(self, call: tuple):
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise EvaluationError("upstream exploded", status=500)

    async def explain_choice(self, question_text, options, student_answer_id, correct_answer_id):
        await self._respond(("choice", question_text, student_answer_id, correct_answer_id))
        return f"Option {correct_answer_id} is correct."

    async def explain_fill_in(self, question_text, student_response, correct_answer):
        await self._respond(("fill_in", question_text, student_response, correct_answer))
        return f"The answer is {correct_answer}."

    async def grade_essay(self, question_text, student_response, key_points):
        await self._respond(("essay", question_text, student_response, key_points))
        return EssayGrade(score=self.essay_score, feedback="Covers most key points.")


class FakeGateway(PersistenceGateway):
    """Records every call; methods named in *fail* raise PersistenceError."""

    def __init__(self, fail: set[str] | None = None):
        self.fail = fail or set()
        self.calls: list[tuple] = []

    def _log(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.fail:
            raise PersistenceError(f"{name} unavailable")

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def record_answer(self, user_id, question_id, is_correct, answer, time_spent):
        self._log("record_answer", user_id, question_id, is_correct, answer, time_spent)

    async def record_quiz_result(self, user_id, correct_count, total_questions, time_taken, topic_id=None):
        self._log("record_quiz_result", user_id, correct_count, total_questions, time_taken, topic_id)
        return 42

    async def increment_xp(self, user_id, amount):
        self._log("increment_xp", user_id, amount)

    async def update_streak(self, user_id):
        self._log("update_streak", user_id)
        return 1

    async def store_explanation_feedback(self, user_id, question_id, vote):
        self._log("store_explanation_feedback", user_id, question_id, vote)

    async def write_back_explanation(self, question_id, explanation):
        self._log("write_back_explanation", question_id, explanation)


class FakeSource(QuestionSource):
    def __init__(self, rows: list[dict] | None = None, reachable: bool = True):
        self.rows = rows or []
        self.reachable = reachable
        self.fetches: list[tuple] = []

    async def ping(self) -> None:
        if not self.reachable:
            raise FetchError("Database connection error: unreachable")

    async def fetch_questions(self, topic_id, limit):
        self.fetches.append((topic_id, limit))
        rows = [r for r in self.rows if topic_id is None or r.get("topic_id") == topic_id]
        return rows[:limit]


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def sample_rows():
    """Raw bank rows in the shapes found in real question banks."""
    return [
        {
            "id": "q-mcq",
            "question_text": "Which court hears appeals from the High Court?",
            "question_type": "multiple_choice",
            "options": ["Magistrates' Court", "Court of Appeal", "Crown Court"],
            "correct_answer": "b",
            "topic_id": "courts",
        },
        {
            "id": "q-fill",
            "question_text": "The capital of France is ___.",
            "question_type": "fill_in",
            "correct_answer": "Paris",
            "topic_id": "geography",
        },
        {
            "id": "q-essay",
            "question_text": "Discuss the doctrine of precedent.",
            "question_type": "essay",
            "correct_answer": "- stare decisis\n- binding vs persuasive",
            "topic_id": "courts",
        },
    ]


@pytest.fixture
def populated_db(tmp_db, sample_rows):
    tmp_db.import_questions(sample_rows)
    return tmp_db


@pytest.fixture
def mcq_question():
    return Question(
        id="q-mcq",
        text="Which court hears appeals from the High Court?",
        question_type=QuestionType.SINGLE_CHOICE,
        correct_answer="b",
        options=(
            Option("a", "Magistrates' Court"),
            Option("b", "Court of Appeal"),
            Option("c", "Crown Court"),
        ),
        topic_id="courts",
    )


@pytest.fixture
def fill_question():
    return Question(
        id="q-fill",
        text="The capital of France is ___.",
        question_type=QuestionType.FILL_IN,
        correct_answer="Paris",
    )


@pytest.fixture
def essay_question():
    return Question(
        id="q-essay",
        text="Discuss the doctrine of precedent.",
        question_type=QuestionType.ESSAY,
        correct_answer="- stare decisis\n- binding vs persuasive",
    )
