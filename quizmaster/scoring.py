"""Quiz scoring, XP rewards and daily-streak continuity."""
from __future__ import annotations

from datetime import date, timedelta

from quizmaster.models import ScoreCard

XP_PER_CORRECT = 10
PERFECT_BONUS_XP = 50

# Inclusive lower bound for the "good" band.
GOOD_THRESHOLD = 70.0

BAND_PERFECT = "perfect"
BAND_GOOD = "good"
BAND_NEEDS_PRACTICE = "needs practice"


def score_percent(correct_count: int, total_questions: int) -> float:
    if total_questions <= 0:
        return 0.0
    return correct_count * 100 / total_questions


def score_band(percent: float) -> str:
    if percent == 100:
        return BAND_PERFECT
    if percent >= GOOD_THRESHOLD:
        return BAND_GOOD
    return BAND_NEEDS_PRACTICE


def compute_xp(correct_count: int, total_questions: int) -> int:
    perfect = total_questions > 0 and correct_count == total_questions
    return correct_count * XP_PER_CORRECT + (PERFECT_BONUS_XP if perfect else 0)


def score_quiz(correct_count: int, total_questions: int) -> ScoreCard:
    """Score a finished quiz. Unanswered questions count as incorrect."""
    percent = score_percent(correct_count, total_questions)
    return ScoreCard(
        correct_count=correct_count,
        total_questions=total_questions,
        score_percent=percent,
        perfect=total_questions > 0 and correct_count == total_questions,
        xp=compute_xp(correct_count, total_questions),
        band=score_band(percent),
    )


def next_streak(last_activity: date | None, streak_days: int, today: date) -> int:
    """Streak count after activity on *today*.

    Driven by calendar dates only: a second quiz on the same day does not
    extend the streak.
    """
    if last_activity is None:
        return 1
    if last_activity == today - timedelta(days=1):
        return streak_days + 1
    if last_activity < today - timedelta(days=1):
        return 1
    return streak_days
