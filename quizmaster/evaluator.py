"""Deterministic correctness checks, dispatched on question type."""
from __future__ import annotations

from quizmaster.models import AnswerValue, Choice, Question, QuestionType, Text


def _expect(value: AnswerValue, kind: str, question: Question) -> None:
    if value.kind != kind:
        raise TypeError(
            f"{question.question_type.value} question {question.id} expects a "
            f"{kind} answer, got {value.kind}"
        )


def evaluate(question: Question, value: AnswerValue) -> tuple[bool, AnswerValue]:
    """Return (is_correct, normalized_value) for a submitted answer.

    single_choice: option ids are opaque tokens, compared exactly.
    fill_in: compared trimmed and case-folded; the stored text keeps the
    learner's casing but loses surrounding whitespace.
    essay: always counted correct here. The 0-10 quality score comes from
    the Evaluation Service and is kept apart from this flag.
    """
    qtype = question.question_type
    if qtype == QuestionType.SINGLE_CHOICE:
        _expect(value, Choice.kind, question)
        return value.option_id == question.correct_answer, value

    if qtype == QuestionType.FILL_IN:
        _expect(value, Text.kind, question)
        submitted = value.value.strip()
        expected = question.correct_answer.strip().lower()
        return submitted.lower() == expected, Text(submitted)

    if qtype == QuestionType.ESSAY:
        _expect(value, Text.kind, question)
        return True, value

    raise ValueError(f"Unknown question type: {qtype}")
