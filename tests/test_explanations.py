"""Tests for the per-session explanation cache."""
from __future__ import annotations

import asyncio
import dataclasses

import pytest

from conftest import FakeEvaluationService, FakeGateway
from quizmaster.errors import EvaluationError
from quizmaster.explanations import TIMEOUT_MESSAGE, ExplanationCache
from quizmaster.models import Choice, Provenance, Text, Vote


def _cache(service=None, gateway=None, timeout=30.0) -> ExplanationCache:
    return ExplanationCache(
        service or FakeEvaluationService(), gateway or FakeGateway(), "u1", timeout=timeout,
    )


class TestResolution:
    @pytest.mark.asyncio
    async def test_generated_and_cached(self, mcq_question):
        service = FakeEvaluationService()
        cache = _cache(service)

        first = await cache.get_explanation(mcq_question, Choice("a"))
        second = await cache.get_explanation(mcq_question, Choice("a"))

        assert first == second == "Option b is correct."
        assert cache.dispatch_count == 1
        assert cache.get(mcq_question.id).provenance == Provenance.GENERATED
        assert service.calls == [("choice", mcq_question.text, "a", "b")]

    @pytest.mark.asyncio
    async def test_precomputed_explanation_used(self, mcq_question):
        q = dataclasses.replace(mcq_question, explanation="Appeals go to the Court of Appeal.")
        cache = _cache()
        assert await cache.get_explanation(q, Choice("a")) == "Appeals go to the Court of Appeal."
        assert cache.dispatch_count == 0
        assert cache.get(q.id).provenance == Provenance.PRECOMPUTED

    @pytest.mark.asyncio
    async def test_previously_generated_explanation_is_cluster_cached(self, mcq_question):
        q = dataclasses.replace(
            mcq_question, explanation="Stored earlier.", explanation_source="generated",
        )
        cache = _cache()
        await cache.get_explanation(q, Choice("b"))
        assert cache.get(q.id).provenance == Provenance.CLUSTER_CACHED
        assert cache.dispatch_count == 0

    @pytest.mark.asyncio
    async def test_fill_in_uses_student_response(self, fill_question):
        service = FakeEvaluationService()
        text = await _cache(service).get_explanation(fill_question, Text("Lyon"))
        assert text == "The answer is Paris."
        assert service.calls == [("fill_in", fill_question.text, "Lyon", "Paris")]

    def test_store_is_first_write_wins(self):
        cache = _cache()
        cache.store("q1", "first", Provenance.GENERATED)
        entry = cache.store("q1", "second", Provenance.PRECOMPUTED)
        assert entry.text == "first"
        assert cache.get("q1").provenance == Provenance.GENERATED


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_requests_dispatch_once(self, mcq_question):
        service = FakeEvaluationService(delay=0.05)
        cache = _cache(service)

        results = await asyncio.gather(*[
            cache.get_explanation(mcq_question, Choice("a")) for _ in range(5)
        ])

        assert len(set(results)) == 1
        assert cache.dispatch_count == 1
        assert len(service.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_request(self, mcq_question):
        service = FakeEvaluationService(delay=0.05)
        cache = _cache(service)

        waiter = asyncio.ensure_future(cache.get_explanation(mcq_question, Choice("a")))
        await asyncio.sleep(0.01)
        waiter.cancel()

        text = await cache.get_explanation(mcq_question, Choice("a"))
        assert text == "Option b is correct."
        assert cache.dispatch_count == 1

    @pytest.mark.asyncio
    async def test_different_questions_dispatch_separately(self, mcq_question, fill_question):
        service = FakeEvaluationService(delay=0.01)
        cache = _cache(service)
        await asyncio.gather(
            cache.get_explanation(mcq_question, Choice("a")),
            cache.get_explanation(fill_question, Text("Paris")),
        )
        assert cache.dispatch_count == 2


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_not_cached(self, mcq_question):
        service = FakeEvaluationService(fail=True)
        cache = _cache(service)

        with pytest.raises(EvaluationError) as exc:
            await cache.get_explanation(mcq_question, Choice("a"))
        assert exc.value.status == 500
        assert cache.get(mcq_question.id) is None

        service.fail = False
        assert await cache.get_explanation(mcq_question, Choice("a")) == "Option b is correct."
        assert cache.dispatch_count == 2

    @pytest.mark.asyncio
    async def test_timeout(self, mcq_question):
        cache = _cache(FakeEvaluationService(delay=1), timeout=0.05)
        with pytest.raises(EvaluationError) as exc:
            await cache.get_explanation(mcq_question, Choice("a"))
        assert exc.value.message == TIMEOUT_MESSAGE
        assert cache.get(mcq_question.id) is None


class TestWriteBack:
    @pytest.mark.asyncio
    async def test_choice_explanation_written_back(self, mcq_question):
        gateway = FakeGateway()
        await _cache(gateway=gateway).get_explanation(mcq_question, Choice("a"))
        assert gateway.calls_to("write_back_explanation") == [
            ("write_back_explanation", "q-mcq", "Option b is correct."),
        ]

    @pytest.mark.asyncio
    async def test_fill_in_not_written_back(self, fill_question):
        gateway = FakeGateway()
        await _cache(gateway=gateway).get_explanation(fill_question, Text("Paris"))
        assert gateway.calls_to("write_back_explanation") == []

    @pytest.mark.asyncio
    async def test_write_back_failure_still_returns_text(self, mcq_question):
        gateway = FakeGateway(fail={"write_back_explanation"})
        cache = _cache(gateway=gateway)
        assert await cache.get_explanation(mcq_question, Choice("a")) == "Option b is correct."
        assert cache.get(mcq_question.id) is not None


class TestEssayGrading:
    @pytest.mark.asyncio
    async def test_grade_becomes_explanation(self, essay_question):
        service = FakeEvaluationService(essay_score=9)
        cache = _cache(service)

        grade = await cache.grade_essay(essay_question, Text("My essay"))
        text = await cache.get_explanation(essay_question, Text("My essay"))

        assert grade.score == 9
        assert text == grade.feedback
        assert cache.dispatch_count == 1

    @pytest.mark.asyncio
    async def test_grade_and_explanation_share_request(self, essay_question):
        service = FakeEvaluationService(delay=0.05)
        cache = _cache(service)

        grade, text = await asyncio.gather(
            cache.grade_essay(essay_question, Text("My essay")),
            cache.get_explanation(essay_question, Text("My essay")),
        )
        assert text == grade.feedback
        assert len(service.calls) == 1


class TestVotes:
    @pytest.mark.asyncio
    async def test_vote_once(self, mcq_question):
        gateway = FakeGateway()
        cache = _cache(gateway=gateway)
        await cache.get_explanation(mcq_question, Choice("a"))

        assert await cache.cast_vote("q-mcq", Vote.UP) is True
        assert await cache.cast_vote("q-mcq", "down") is False
        assert cache.get("q-mcq").vote is Vote.UP
        assert gateway.calls_to("store_explanation_feedback") == [
            ("store_explanation_feedback", "u1", "q-mcq", Vote.UP),
        ]

    @pytest.mark.asyncio
    async def test_vote_without_explanation_rejected(self):
        gateway = FakeGateway()
        assert await _cache(gateway=gateway).cast_vote("q-mcq", Vote.UP) is False
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_vote_stands_when_persistence_fails(self, mcq_question):
        cache = _cache(gateway=FakeGateway(fail={"store_explanation_feedback"}))
        await cache.get_explanation(mcq_question, Choice("a"))
        assert await cache.cast_vote("q-mcq", Vote.DOWN) is True
        assert cache.get("q-mcq").vote is Vote.DOWN
        assert await cache.cast_vote("q-mcq", Vote.UP) is False

    @pytest.mark.asyncio
    async def test_invalid_vote(self, mcq_question):
        cache = _cache()
        await cache.get_explanation(mcq_question, Choice("a"))
        with pytest.raises(ValueError):
            await cache.cast_vote("q-mcq", "sideways")
