"""Question Bank source and Persistence Gateway interfaces, plus the SQLite backend."""
from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import date

from quizmaster.db import Database
from quizmaster.errors import FetchError, PersistenceError
from quizmaster.models import AnswerValue, Vote

log = logging.getLogger("quizmaster.db")


class QuestionSource(ABC):
    @abstractmethod
    async def ping(self) -> None:
        """Raise FetchError if the bank is unreachable."""

    @abstractmethod
    async def fetch_questions(self, topic_id: str | None, limit: int) -> list[dict]:
        ...


class PersistenceGateway(ABC):
    """Durable side effects of a quiz. Every call can fail on its own."""

    @abstractmethod
    async def record_answer(
        self, user_id: str, question_id: str, is_correct: bool,
        answer: AnswerValue, time_spent: float,
    ) -> None:
        ...

    @abstractmethod
    async def record_quiz_result(
        self, user_id: str, correct_count: int, total_questions: int,
        time_taken: int, topic_id: str | None = None,
    ) -> int:
        ...

    @abstractmethod
    async def increment_xp(self, user_id: str, amount: int) -> None:
        ...

    @abstractmethod
    async def update_streak(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def store_explanation_feedback(self, user_id: str, question_id: str, vote: Vote) -> None:
        ...

    @abstractmethod
    async def write_back_explanation(self, question_id: str, explanation: str) -> None:
        ...


class SQLiteBackend(QuestionSource, PersistenceGateway):
    """Both interfaces over the local Database."""

    def __init__(self, db: Database, today=date.today):
        self.db = db
        self._today = today

    async def ping(self) -> None:
        try:
            self.db.ping()
        except sqlite3.Error as e:
            raise FetchError(f"Database connection error: {e}") from e

    async def fetch_questions(self, topic_id: str | None, limit: int) -> list[dict]:
        try:
            return self.db.fetch_questions(topic_id, limit)
        except sqlite3.Error as e:
            raise FetchError(f"Database query error: {e}") from e

    async def record_answer(self, user_id, question_id, is_correct, answer, time_spent) -> None:
        try:
            self.db.record_answer(
                user_id, question_id, is_correct, answer.kind, answer.raw, time_spent,
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"record_answer failed: {e}") from e

    async def record_quiz_result(self, user_id, correct_count, total_questions,
                                 time_taken, topic_id=None) -> int:
        try:
            return self.db.record_quiz_result(
                user_id, correct_count, total_questions, time_taken, topic_id,
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"record_quiz_result failed: {e}") from e

    async def increment_xp(self, user_id, amount) -> None:
        try:
            total = self.db.increment_xp(user_id, amount)
        except sqlite3.Error as e:
            raise PersistenceError(f"increment_xp failed: {e}") from e
        log.info("XP +%d for %s (now %d)", amount, user_id, total)

    async def update_streak(self, user_id) -> int:
        try:
            return self.db.update_streak(user_id, self._today())
        except sqlite3.Error as e:
            raise PersistenceError(f"update_streak failed: {e}") from e

    async def store_explanation_feedback(self, user_id, question_id, vote) -> None:
        try:
            self.db.store_feedback(user_id, question_id, Vote(vote).value)
        except sqlite3.Error as e:
            raise PersistenceError(f"store_explanation_feedback failed: {e}") from e

    async def write_back_explanation(self, question_id, explanation) -> None:
        try:
            self.db.update_question_explanation(question_id, explanation)
        except sqlite3.Error as e:
            raise PersistenceError(f"write_back_explanation failed: {e}") from e
