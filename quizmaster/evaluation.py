"""Evaluation Service: LLM-written explanations and essay grading."""
from __future__ import annotations

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx

from quizmaster.errors import EvaluationError
from quizmaster.models import EssayGrade, Option
from quizmaster.prompts import (
    CHOICE_PROMPT,
    CHOICE_SYSTEM,
    ESSAY_PROMPT,
    ESSAY_SYSTEM,
    FILL_IN_PROMPT,
    FILL_IN_SYSTEM,
    format_options,
)

if TYPE_CHECKING:
    from quizmaster.config import Settings
    from quizmaster.providers.base import LLMProvider

log = logging.getLogger("quizmaster.eval")

MAX_ESSAY_SCORE = 10


class EvaluationService(ABC):
    @abstractmethod
    async def explain_choice(
        self,
        question_text: str,
        options: tuple[Option, ...],
        student_answer_id: str,
        correct_answer_id: str,
    ) -> str:
        ...

    @abstractmethod
    async def explain_fill_in(
        self, question_text: str, student_response: str, correct_answer: str
    ) -> str:
        ...

    @abstractmethod
    async def grade_essay(
        self, question_text: str, student_response: str, key_points: str
    ) -> EssayGrade:
        ...


def _clamp_score(raw) -> int:
    try:
        score = int(round(float(raw)))
    except (TypeError, ValueError) as e:
        raise EvaluationError(f"Essay score is not a number: {raw!r}") from e
    return max(0, min(MAX_ESSAY_SCORE, score))


def _explanation_from(data) -> str:
    if not isinstance(data, dict):
        raise EvaluationError(f"Expected a JSON object, got {type(data).__name__}")
    explanation = data.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        raise EvaluationError("No explanation received from the server")
    return explanation


def _extract_json(text: str) -> dict | None:
    """Pull a JSON object out of an LLM reply (bare, or inside a code fence)."""
    text = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL).strip()
    m = re.search(r"```(?:json)?\s*\n?({.*?})\s*\n?```", text, re.DOTALL)
    if m:
        text = m.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            return None
        text = text[start : end + 1]
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# ── Remote (authenticated HTTPS) ──────────────────────────────────────────


class RemoteEvaluationService(EvaluationService):
    """Client for the hosted evaluation functions.

    Each call is one POST with a bearer token; non-2xx responses and
    malformed JSON become EvaluationError.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.environ.get("QUIZMASTER_EVAL_TOKEN", "")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, endpoint: str, body: dict) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}/{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise EvaluationError(f"Evaluation request failed: {e}") from e

        if resp.status_code // 100 != 2:
            try:
                message = resp.json().get("error") or resp.text
            except (ValueError, AttributeError):
                message = resp.text
            log.warning("%s -> HTTP %d: %s", endpoint, resp.status_code, message)
            raise EvaluationError(message or f"HTTP error {resp.status_code}", status=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise EvaluationError(f"Malformed JSON from {endpoint}", status=resp.status_code) from e

    async def explain_choice(self, question_text, options, student_answer_id, correct_answer_id) -> str:
        data = await self._post("generate-explanation", {
            "questionText": question_text,
            "options": [{"id": o.id, "text": o.text} for o in options],
            "studentAnswerId": student_answer_id,
            "correctAnswerId": correct_answer_id,
        })
        return _explanation_from(data)

    async def explain_fill_in(self, question_text, student_response, correct_answer) -> str:
        data = await self._post("evaluate-fill-in-blank", {
            "questionText": question_text,
            "studentResponse": student_response,
            "correctAnswer": correct_answer,
        })
        return _explanation_from(data)

    async def grade_essay(self, question_text, student_response, key_points) -> EssayGrade:
        data = await self._post("evaluate-essay", {
            "questionText": question_text,
            "studentResponse": student_response,
            "keyPoints": key_points,
        })
        feedback = _explanation_from(data)
        return EssayGrade(score=_clamp_score(data.get("score")), feedback=feedback)


# ── Direct LLM ────────────────────────────────────────────────────────────


class LLMEvaluationService(EvaluationService):
    """Runs the evaluation prompts against a configured LLM provider."""

    def __init__(self, llm: LLMProvider):
        self.llm = llm

    async def _ask(self, prompt: str, system: str, temperature: float) -> str:
        try:
            response = await self.llm.generate(prompt, temperature=temperature, system=system)
        except EvaluationError:
            raise
        except Exception as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise EvaluationError(f"{self.llm.name()} failed: {e}", status=status) from e
        if not response or not response.strip():
            raise EvaluationError(f"{self.llm.name()} returned an empty response")
        return response.strip()

    async def explain_choice(self, question_text, options, student_answer_id, correct_answer_id) -> str:
        prompt = CHOICE_PROMPT.format(
            question_text=question_text,
            options_formatted=format_options(options),
            student_answer_id=student_answer_id.upper(),
            correct_answer_id=correct_answer_id.upper(),
        )
        return await self._ask(prompt, CHOICE_SYSTEM, temperature=0.3)

    async def explain_fill_in(self, question_text, student_response, correct_answer) -> str:
        prompt = FILL_IN_PROMPT.format(
            question_text=question_text,
            student_response=student_response,
            correct_answer=correct_answer,
        )
        return await self._ask(prompt, FILL_IN_SYSTEM, temperature=0.3)

    async def grade_essay(self, question_text, student_response, key_points) -> EssayGrade:
        prompt = ESSAY_PROMPT.format(
            question_text=question_text,
            student_response=student_response,
            key_points=key_points or "None provided",
        )
        response = await self._ask(prompt, ESSAY_SYSTEM, temperature=0.2)
        data = _extract_json(response)
        if data is None:
            log.debug("Raw essay response: %.300s", response)
            raise EvaluationError("Essay grade was not valid JSON")
        feedback = _explanation_from(data)
        return EssayGrade(score=_clamp_score(data.get("score")), feedback=feedback)


def build_llm(settings: Settings) -> LLMProvider:
    if settings.llm_provider == "ollama":
        from quizmaster.providers.llm_ollama import OllamaProvider
        return OllamaProvider(base_url=settings.ollama_url, model=settings.llm_model)
    elif settings.llm_provider == "anthropic":
        from quizmaster.providers.llm_anthropic import AnthropicProvider
        return AnthropicProvider()
    elif settings.llm_provider == "openai":
        from quizmaster.providers.llm_openai import OpenAIProvider
        return OpenAIProvider()
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")


def build_evaluation_service(settings: Settings) -> EvaluationService:
    if settings.evaluation_backend == "http":
        if not settings.evaluation_url:
            raise ValueError("evaluation_backend 'http' needs evaluation_url")
        return RemoteEvaluationService(settings.evaluation_url, timeout=settings.evaluation_timeout)
    if settings.evaluation_backend == "llm":
        return LLMEvaluationService(build_llm(settings))
    raise ValueError(f"Unknown evaluation backend: {settings.evaluation_backend}")
