"""Quiz session state machine.

A QuizSession is one learner's attempt at a fixed, ordered set of questions:

    idle -> loading -> in_progress -> completed
                  \\-> errored (load failed; load() may be retried)

Answers live in a position-indexed list alongside the question snapshot.
Every asynchronous result (answer persistence, essay grades, explanations)
is applied by question id, never by the current position, so navigating
while a request is in flight cannot misattribute its result.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from quizmaster.errors import EvaluationError, FetchError, PersistenceError, QuizStateError
from quizmaster.evaluator import evaluate
from quizmaster.models import (
    AnswerRecord,
    AnswerValue,
    EssayGrade,
    QuestionType,
    Question,
    QuizOutcome,
    SessionState,
    Vote,
)
from quizmaster.scoring import score_quiz

if TYPE_CHECKING:
    from quizmaster.explanations import ExplanationCache
    from quizmaster.gateway import PersistenceGateway
    from quizmaster.loader import QuestionLoader

log = logging.getLogger("quizmaster.session")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuizSession:
    def __init__(
        self,
        loader: QuestionLoader,
        explanations: ExplanationCache,
        gateway: PersistenceGateway,
        user_id: str,
        clock: Callable[[], datetime] = _utcnow,
        session_id: str | None = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.loader = loader
        self.explanations = explanations
        self.gateway = gateway
        self.user_id = user_id
        self._clock = clock

        self.state = SessionState.IDLE
        self.questions: tuple[Question, ...] = ()
        self.answers: list[AnswerRecord | None] = []
        self.position = 0
        self.topic_id: str | None = None
        self.started_at: datetime | None = None
        self.error: Exception | None = None
        self.outcome: QuizOutcome | None = None
        self.completed_at: datetime | None = None
        self.grade_errors: dict[str, str] = {}

        self._index: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    # ── Read-only views ──────────────────────────────────────────────────

    @property
    def completed(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def busy(self) -> bool:
        """True while answer persistence or essay grading is still running."""
        return bool(self._tasks)

    @property
    def current_question(self) -> Question | None:
        if not self.questions:
            return None
        return self.questions[self.position]

    @property
    def answered_count(self) -> int:
        return sum(1 for a in self.answers if a is not None)

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a is not None and a.is_correct)

    def question(self, question_id: str) -> Question:
        try:
            return self.questions[self._index[question_id]]
        except KeyError:
            raise KeyError(f"Question {question_id} is not in this session") from None

    def record_for(self, question_id: str) -> AnswerRecord | None:
        return self.answers[self._index[question_id]] if question_id in self._index else None

    # ── Loading ──────────────────────────────────────────────────────────

    async def load(self, topic_id: str | None = None, limit: int = 10) -> tuple[Question, ...]:
        """Fetch the question snapshot.

        Raises FetchError (session left in ``errored``). An empty result
        puts the session back to ``idle`` and returns an empty tuple.
        """
        if self.state not in (SessionState.IDLE, SessionState.ERRORED):
            raise QuizStateError(f"Cannot load in state {self.state.value}")
        self.state = SessionState.LOADING
        self.error = None
        try:
            questions = await self.loader.load(topic_id, limit)
        except FetchError as e:
            log.warning("Session %s: load failed: %s", self.id, e)
            self.state = SessionState.ERRORED
            self.error = e
            raise

        if not questions:
            self.state = SessionState.IDLE
            return ()

        self.questions = tuple(questions)
        self.answers = [None] * len(self.questions)
        self._index = {q.id: i for i, q in enumerate(self.questions)}
        self.position = 0
        self.topic_id = topic_id
        self.started_at = self._clock()
        self.state = SessionState.IN_PROGRESS
        log.info("Session %s: %d questions (topic=%s)", self.id, len(self.questions), topic_id)
        return self.questions

    # ── Answering ────────────────────────────────────────────────────────

    async def submit(self, value: AnswerValue, time_spent: float = 0) -> AnswerRecord | None:
        """Answer the question at the current position.

        Returns the new record, or None if that question was already
        answered (the original record is kept). Persistence and essay
        grading continue in the background.
        """
        if self.state != SessionState.IN_PROGRESS:
            raise QuizStateError(f"Cannot submit answers in state {self.state.value}")
        position = self.position
        if self.answers[position] is not None:
            log.info("Session %s: question %d already answered, ignoring", self.id, position)
            return None

        question = self.questions[position]
        is_correct, stored = evaluate(question, value)
        record = AnswerRecord(
            question_id=question.id,
            value=stored,
            is_correct=is_correct,
            time_spent=time_spent,
            submitted_at=self._clock(),
        )
        # Claim the slot before any await
        self.answers[position] = record

        self._spawn(self._persist_answer(record))
        if question.question_type == QuestionType.ESSAY:
            self._spawn(self._grade_essay(question, stored))
        return record

    async def _persist_answer(self, record: AnswerRecord) -> None:
        try:
            await self.gateway.record_answer(
                self.user_id, record.question_id, record.is_correct,
                record.value, record.time_spent,
            )
        except PersistenceError as e:
            log.warning("Session %s: saving answer to %s failed: %s", self.id, record.question_id, e)

    async def _grade_essay(self, question: Question, answer: AnswerValue) -> None:
        try:
            grade = await self.explanations.grade_essay(question, answer)
        except EvaluationError as e:
            log.warning("Session %s: grading %s failed: %s", self.id, question.id, e)
            self.grade_errors[question.id] = e.message
            return
        self._apply_grade(question.id, grade)

    def _apply_grade(self, question_id: str, grade: EssayGrade) -> None:
        record = self.record_for(question_id)
        if record is None or record.grade is not None:
            return
        record.grade = grade
        self.grade_errors.pop(question_id, None)
        log.info("Session %s: essay %s scored %d/10", self.id, question_id, grade.score)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding background persistence and grading."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Navigation ───────────────────────────────────────────────────────

    def _check_navigable(self) -> None:
        if self.state not in (SessionState.IN_PROGRESS, SessionState.COMPLETED):
            raise QuizStateError(f"Cannot navigate in state {self.state.value}")

    def advance(self) -> int:
        self._check_navigable()
        if self.position < len(self.questions) - 1:
            self.position += 1
        return self.position

    def retreat(self) -> int:
        self._check_navigable()
        if self.position > 0:
            self.position -= 1
        return self.position

    # ── Explanations & feedback ──────────────────────────────────────────

    async def explain(self, question_id: str | None = None) -> str:
        """Rationale for an answered question (default: the current one)."""
        self._check_navigable()
        question = self.question(question_id) if question_id else self.current_question
        record = self.record_for(question.id)
        if record is None:
            raise QuizStateError(f"Question {question.id} has not been answered yet")
        text = await self.explanations.get_explanation(question, record.value)
        if question.question_type == QuestionType.ESSAY:
            # A retried grading request lands here, not in _grade_essay
            grade = self.explanations.grade_for(question.id)
            if grade is not None:
                self._apply_grade(question.id, grade)
        return text

    async def vote(self, question_id: str, vote: Vote | str) -> bool:
        self._check_navigable()
        self.question(question_id)
        return await self.explanations.cast_vote(question_id, vote)

    # ── Completion ───────────────────────────────────────────────────────

    async def complete(self) -> QuizOutcome:
        """Score the quiz, persist the result and mark the session completed.

        Persistence failures are logged and reported in the outcome; the
        session is completed regardless.
        """
        if self.state != SessionState.IN_PROGRESS:
            raise QuizStateError(f"Cannot complete in state {self.state.value}")
        if self.answered_count == 0:
            raise QuizStateError("Answer at least one question before completing")

        self.state = SessionState.COMPLETED
        self.completed_at = self._clock()
        score = score_quiz(self.correct_count, len(self.questions))
        time_taken = int((self.completed_at - self.started_at).total_seconds())

        errors: list[str] = []
        result_id = None
        try:
            result_id = await self.gateway.record_quiz_result(
                self.user_id, score.correct_count, score.total_questions,
                time_taken, self.topic_id,
            )
        except PersistenceError as e:
            errors.append(str(e))
        try:
            await self.gateway.increment_xp(self.user_id, score.xp)
        except PersistenceError as e:
            errors.append(str(e))
        try:
            await self.gateway.update_streak(self.user_id)
        except PersistenceError as e:
            errors.append(str(e))

        for err in errors:
            log.warning("Session %s: completion persistence failed: %s", self.id, err)

        self.outcome = QuizOutcome(
            score=score,
            time_taken_seconds=time_taken,
            topic_id=self.topic_id,
            result_id=result_id,
            persistence_errors=tuple(errors),
        )
        log.info(
            "Session %s completed: %d/%d (%.0f%%, %s), +%d XP",
            self.id, score.correct_count, score.total_questions,
            score.score_percent, score.band, score.xp,
        )
        return self.outcome

    # ── Serialization ────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """JSON-ready view of the session for the HTTP layer."""
        q = self.current_question
        current = None
        if q is not None:
            record = self.answers[self.position]
            current = {
                "id": q.id,
                "text": q.text,
                "question_type": q.question_type.value,
                "options": [{"id": o.id, "text": o.text} for o in q.options],
                "difficulty": q.difficulty,
                "topic_id": q.topic_id,
                "answer": _record_dict(record, q) if record else None,
            }
        outcome = None
        if self.outcome is not None:
            s = self.outcome.score
            outcome = {
                "correct_count": s.correct_count,
                "total_questions": s.total_questions,
                "score_percent": s.score_percent,
                "perfect": s.perfect,
                "xp": s.xp,
                "band": s.band,
                "time_taken_seconds": self.outcome.time_taken_seconds,
                "result_id": self.outcome.result_id,
                "persistence_errors": list(self.outcome.persistence_errors),
            }
        return {
            "session_id": self.id,
            "state": self.state.value,
            "position": self.position,
            "total": len(self.questions),
            "answered": self.answered_count,
            "correct": self.correct_count,
            "topic_id": self.topic_id,
            "error": str(self.error) if self.error else None,
            "question": current,
            "outcome": outcome,
        }


def _record_dict(record: AnswerRecord, question: Question) -> dict:
    data = {
        "kind": record.value.kind,
        "value": record.value.raw,
        "is_correct": record.is_correct,
        "time_spent": record.time_spent,
        "submitted_at": record.submitted_at.isoformat(),
    }
    if question.question_type == QuestionType.SINGLE_CHOICE:
        data["correct_answer"] = question.correct_answer
    if record.grade is not None:
        data["essay_score"] = record.grade.score
        data["essay_feedback"] = record.grade.feedback
    return data
