"""Per-session explanation cache and one-time feedback votes."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING

from quizmaster.errors import EvaluationError, PersistenceError
from quizmaster.models import (
    AnswerValue,
    EssayGrade,
    ExplanationEntry,
    Provenance,
    Question,
    QuestionType,
    Vote,
)

if TYPE_CHECKING:
    from quizmaster.evaluation import EvaluationService
    from quizmaster.gateway import PersistenceGateway

log = logging.getLogger("quizmaster.explain")

DEFAULT_TIMEOUT = 30.0
TIMEOUT_MESSAGE = "The explanation is taking too long to generate. Please try again in a moment."


class ExplanationCache:
    """Rationale text keyed by question id, for one learner's session.

    Resolution: cached entry, then the question's own explanation, then one
    Evaluation Service call per question no matter how many callers ask at
    once. Failed calls are not cached.
    """

    def __init__(
        self,
        service: EvaluationService,
        gateway: PersistenceGateway,
        user_id: str,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.service = service
        self.gateway = gateway
        self.user_id = user_id
        self.timeout = timeout
        self._entries: dict[str, ExplanationEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._grades: dict[str, EssayGrade] = {}
        self.dispatch_count = 0

    def get(self, question_id: str) -> ExplanationEntry | None:
        return self._entries.get(question_id)

    def grade_for(self, question_id: str) -> EssayGrade | None:
        return self._grades.get(question_id)

    def store(self, question_id: str, text: str, provenance: Provenance) -> ExplanationEntry:
        """Cache *text* unless an entry already exists; returns the winning entry."""
        entry = self._entries.get(question_id)
        if entry is None:
            entry = ExplanationEntry(question_id, text, provenance)
            self._entries[question_id] = entry
        return entry

    async def get_explanation(self, question: Question, answer: AnswerValue) -> str:
        entry = self._entries.get(question.id)
        if entry is not None:
            return entry.text

        if question.explanation:
            provenance = (
                Provenance.CLUSTER_CACHED
                if question.explanation_source == "generated"
                else Provenance.PRECOMPUTED
            )
            return self.store(question.id, question.explanation, provenance).text

        # shield: one caller giving up must not cancel the shared request
        return await asyncio.shield(self._start(question, answer))

    async def grade_essay(self, question: Question, answer: AnswerValue) -> EssayGrade:
        """Score an essay answer; its feedback becomes the cached explanation."""
        grade = self._grades.get(question.id)
        if grade is not None:
            return grade
        await asyncio.shield(self._start(question, answer))
        return self._grades[question.id]

    def _start(self, question: Question, answer: AnswerValue) -> asyncio.Task:
        task = self._inflight.get(question.id)
        if task is None:
            task = asyncio.ensure_future(self._generate(question, answer))
            self._inflight[question.id] = task
            task.add_done_callback(lambda _t, qid=question.id: self._inflight.pop(qid, None))
        return task

    async def _generate(self, question: Question, answer: AnswerValue) -> str:
        self.dispatch_count += 1
        log.info("Requesting %s explanation for %s", question.question_type.value, question.id)
        try:
            text = await asyncio.wait_for(self._dispatch(question, answer), self.timeout)
        except asyncio.TimeoutError as e:
            log.warning("Explanation for %s timed out after %.0fs", question.id, self.timeout)
            raise EvaluationError(TIMEOUT_MESSAGE) from e

        entry = self.store(question.id, text, Provenance.GENERATED)

        if question.question_type == QuestionType.SINGLE_CHOICE:
            try:
                await self.gateway.write_back_explanation(question.id, entry.text)
            except PersistenceError as e:
                log.warning("Explanation write-back for %s failed: %s", question.id, e)
        return entry.text

    async def _dispatch(self, question: Question, answer: AnswerValue) -> str:
        qtype = question.question_type
        if qtype == QuestionType.SINGLE_CHOICE:
            return await self.service.explain_choice(
                question.text, question.options, answer.raw, question.correct_answer,
            )
        if qtype == QuestionType.FILL_IN:
            return await self.service.explain_fill_in(
                question.text, answer.raw, question.correct_answer,
            )
        grade = await self.service.grade_essay(
            question.text, answer.raw, question.correct_answer,
        )
        self._grades[question.id] = grade
        return grade.feedback

    # ── Feedback ──────────────────────────────────────────────────────────

    async def cast_vote(self, question_id: str, vote: Vote | str) -> bool:
        """Record the learner's verdict on an explanation.

        Returns False when there is no explanation to vote on, or a vote was
        already cast. The local vote stands even if forwarding it fails.
        """
        vote = Vote(vote)
        entry = self._entries.get(question_id)
        if entry is None:
            log.info("Vote on %s rejected: no explanation shown", question_id)
            return False
        if entry.vote is not None:
            log.info("Vote on %s rejected: already voted %s", question_id, entry.vote.value)
            return False

        self._entries[question_id] = dataclasses.replace(entry, vote=vote)
        try:
            await self.gateway.store_explanation_feedback(self.user_id, question_id, vote)
        except PersistenceError as e:
            log.warning("Storing feedback for %s failed: %s", question_id, e)
        return True
