"""Prompt templates for explanations and essay grading."""
from __future__ import annotations

CHOICE_SYSTEM = """\
You are a tutor that evaluates student responses to multiple choice \
questions. Explain why the correct answer is correct and why the other \
options are wrong. Your response will be read by the student and must be \
addressed to them directly."""

CHOICE_PROMPT = """\
Question: {question_text}
Options:
{options_formatted}
Student's Answer: {student_answer_id}
Correct Answer: {correct_answer_id}
"""

FILL_IN_SYSTEM = """\
You are a tutor that explains answers to fill-in-the-blank questions. You \
will be given the student's response and the correct answer. If they do not \
match, explain why the correct answer is correct and why the student's \
answer is wrong. If they match, explain why the response is correct. Your \
response will be read by the student and must be addressed to them directly."""

FILL_IN_PROMPT = """\
Question: {question_text}

Student Response: {student_response}

Correct Answer: {correct_answer}
"""

ESSAY_SYSTEM = """\
You are a tutor that assesses student responses to essay questions as they \
prepare for their exams. You will be given the student's response and the \
key points expected in a good answer. Score the response out of 10 based on \
its content, how well it covers the key points, and its clarity, then give \
constructive feedback that helps the student improve. Address the student \
directly.

Respond with ONLY a JSON object:
{"score": <integer 0-10>, "explanation": "<feedback for the student>"}"""

ESSAY_PROMPT = """\
Question: {question_text}

Student Response: {student_response}

Key Points: {key_points}
"""


def format_options(options) -> str:
    """One ``A. text`` line per option (accepts Option objects or dicts)."""
    lines = []
    for opt in options:
        opt_id = opt["id"] if isinstance(opt, dict) else opt.id
        text = opt["text"] if isinstance(opt, dict) else opt.text
        lines.append(f"{opt_id.upper()}. {text}")
    return "\n".join(lines)
