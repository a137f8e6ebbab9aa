"""Parse JSON question bank files into rows for Database.import_questions.

Accepted layouts:
  [ {question}, ... ]
  { "topic": "contracts", "questions": [ {question}, ... ] }

A question needs ``question_text``, ``question_type`` and ``correct_answer``.
``options`` may be ``{id, text}`` objects or bare strings; ids are assigned
when questions are loaded, not here. Questions without an ``id`` get a stable
one derived from the file name and text, so re-importing replaces them.
"""
from __future__ import annotations

import json
import uuid
from pathlib import Path

REQUIRED_FIELDS = ("question_text", "question_type", "correct_answer")


def parse_question_file(path: Path) -> list[dict]:
    data = json.loads(path.read_text())
    topic = None
    if isinstance(data, dict):
        topic = data.get("topic")
        data = data.get("questions", [])
    if not isinstance(data, list):
        raise ValueError(f"{path.name}: expected a list of questions")

    rows: list[dict] = []
    for i, item in enumerate(data):
        missing = [f for f in REQUIRED_FIELDS if f not in item]
        if missing:
            raise ValueError(f"{path.name}: question {i} missing {', '.join(missing)}")
        row = dict(item)
        row.setdefault("topic_id", topic)
        if not row.get("id"):
            row["id"] = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{path.name}:{row['question_text']}"))
        if isinstance(row.get("correct_answer"), list):
            # essay key points given as a list
            row["correct_answer"] = "\n".join(f"- {p}" for p in row["correct_answer"])
        rows.append(row)
    return rows
