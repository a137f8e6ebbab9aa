"""Fetch question sets and normalize them into Question snapshots."""
from __future__ import annotations

import json
import logging
import string
from typing import TYPE_CHECKING

from quizmaster.models import Option, Question, QuestionType

if TYPE_CHECKING:
    from quizmaster.gateway import QuestionSource

log = logging.getLogger("quizmaster.loader")

# Tags used by older banks
TYPE_ALIASES = {
    "multiple_choice": QuestionType.SINGLE_CHOICE,
    "mcq": QuestionType.SINGLE_CHOICE,
    "fill_in_blank": QuestionType.FILL_IN,
}


def _sequential_id(position: int) -> str:
    """a, b, ..., z, aa, ab, ..."""
    letters = string.ascii_lowercase
    if position < len(letters):
        return letters[position]
    return _sequential_id(position // len(letters) - 1) + letters[position % len(letters)]


def normalize_options(raw_options) -> tuple[Option, ...]:
    """Coerce a bank's option list into ``Option(id, text)`` entries.

    Entries that already carry both ``id`` and ``text`` pass through.
    Anything else (bare strings, ``{"text": ...}`` objects, numbers) gets a
    sequential id by position in the list: ``a``, ``b``, ``c`` ...
    """
    if isinstance(raw_options, str):
        raw_options = json.loads(raw_options) if raw_options.strip() else []
    if not isinstance(raw_options, list):
        return ()

    options = []
    for idx, opt in enumerate(raw_options):
        if isinstance(opt, dict) and "id" in opt and "text" in opt:
            options.append(Option(id=str(opt["id"]), text=str(opt["text"])))
        elif isinstance(opt, dict) and "text" in opt:
            options.append(Option(id=_sequential_id(idx), text=str(opt["text"])))
        else:
            options.append(Option(id=_sequential_id(idx), text=str(opt)))
    return tuple(options)


def parse_question_type(tag: str) -> QuestionType:
    tag = (tag or "").strip().lower()
    if tag in TYPE_ALIASES:
        return TYPE_ALIASES[tag]
    return QuestionType(tag)


def _resolve_choice_answer(correct, options: tuple[Option, ...]) -> str:
    """Map a numeric correct answer onto the option at that index."""
    ids = {o.id for o in options}
    if isinstance(correct, int) and not isinstance(correct, bool):
        index = correct
    elif isinstance(correct, str) and correct.strip().isdigit() and correct.strip() not in ids:
        index = int(correct.strip())
    else:
        return str(correct)
    if 0 <= index < len(options):
        return options[index].id
    return str(correct)


def question_from_row(row: dict) -> Question:
    """Build an immutable Question from a bank row.

    Raises ValueError for an unknown type tag.
    """
    qtype = parse_question_type(row["question_type"])
    raw_options = row.get("options", row.get("options_json", []))
    options = normalize_options(raw_options) if qtype == QuestionType.SINGLE_CHOICE else ()
    correct = row.get("correct_answer", "")
    if qtype == QuestionType.SINGLE_CHOICE:
        correct = _resolve_choice_answer(correct, options)
    return Question(
        id=str(row["id"]),
        text=row.get("question_text") or row.get("text", ""),
        question_type=qtype,
        correct_answer=str(correct) if correct is not None else "",
        options=options,
        explanation=row.get("explanation") or None,
        explanation_source=row.get("explanation_source") or "authored",
        difficulty=row.get("difficulty") or "medium",
        topic_id=row.get("topic_id"),
    )


class QuestionLoader:
    def __init__(self, source: QuestionSource):
        self.source = source

    async def load(self, topic_id: str | None = None, limit: int = 10) -> list[Question]:
        """Fetch up to *limit* questions, optionally for one topic.

        Raises FetchError when the source is unreachable. An empty list means
        the filter matched nothing.
        """
        await self.source.ping()
        rows = await self.source.fetch_questions(topic_id, limit)
        if not rows:
            log.warning("No questions found (topic=%s)", topic_id)
            return []

        questions = []
        for row in rows:
            try:
                questions.append(question_from_row(row))
            except ValueError as e:
                log.warning("Skipping question %s: %s", row.get("id"), e)
        log.info("Loaded %d questions (topic=%s, limit=%d)", len(questions), topic_id, limit)
        return questions
