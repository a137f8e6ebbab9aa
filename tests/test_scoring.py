"""Tests for scoring, XP and streak rules."""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from quizmaster.scoring import (
    BAND_GOOD,
    BAND_NEEDS_PRACTICE,
    BAND_PERFECT,
    compute_xp,
    next_streak,
    score_band,
    score_quiz,
)

TODAY = date(2025, 3, 15)


class TestScoreQuiz:
    def test_perfect(self):
        card = score_quiz(10, 10)
        assert card.score_percent == 100
        assert card.perfect is True
        assert card.xp == 150
        assert card.band == BAND_PERFECT

    def test_seventy_is_good(self):
        card = score_quiz(7, 10)
        assert card.score_percent == 70
        assert card.band == BAND_GOOD
        assert card.xp == 70
        assert card.perfect is False

    def test_sixty_needs_practice(self):
        card = score_quiz(6, 10)
        assert card.score_percent == 60
        assert card.band == BAND_NEEDS_PRACTICE

    def test_zero_correct(self):
        card = score_quiz(0, 4)
        assert card.score_percent == 0
        assert card.xp == 0
        assert card.band == BAND_NEEDS_PRACTICE

    def test_fractional_percent(self):
        card = score_quiz(2, 3)
        assert card.score_percent == pytest.approx(66.666, rel=1e-3)
        assert card.band == BAND_NEEDS_PRACTICE


class TestBandAndXp:
    def test_band_just_below_threshold(self):
        assert score_band(69.99) == BAND_NEEDS_PRACTICE

    def test_band_between_good_and_perfect(self):
        assert score_band(99.9) == BAND_GOOD

    def test_perfect_bonus_only_when_all_correct(self):
        assert compute_xp(9, 10) == 90
        assert compute_xp(1, 1) == 60


class TestNextStreak:
    def test_yesterday_increments(self):
        assert next_streak(TODAY - timedelta(days=1), 3, TODAY) == 4

    def test_gap_resets(self):
        assert next_streak(TODAY - timedelta(days=3), 3, TODAY) == 1

    def test_two_days_ago_resets(self):
        assert next_streak(TODAY - timedelta(days=2), 9, TODAY) == 1

    def test_no_history_initializes(self):
        assert next_streak(None, 0, TODAY) == 1

    def test_same_day_unchanged(self):
        assert next_streak(TODAY, 3, TODAY) == 3

    def test_month_boundary(self):
        assert next_streak(date(2025, 2, 28), 5, date(2025, 3, 1)) == 6
