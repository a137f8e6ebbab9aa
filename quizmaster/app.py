"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from quizmaster.config import Settings, load_settings, save_settings
from quizmaster.db import Database
from quizmaster.errors import EvaluationError, FetchError, QuizStateError
from quizmaster.evaluation import build_evaluation_service
from quizmaster.explanations import ExplanationCache
from quizmaster.gateway import SQLiteBackend
from quizmaster.loader import QuestionLoader
from quizmaster.models import Choice, Text, Vote
from quizmaster.parsers.question_parser import parse_question_file
from quizmaster.session import QuizSession

app = FastAPI(title="Quizmaster")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_sessions: dict[str, QuizSession] = {}  # session_id -> session

# Completed sessions stay reviewable this long before they are evicted
SESSION_TTL = timedelta(hours=1)

log = logging.getLogger("quizmaster.app")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _get_evaluation_service():
    return build_evaluation_service(get_settings())


def _new_session(user_id: str) -> QuizSession:
    s = get_settings()
    backend = SQLiteBackend(get_db())
    cache = ExplanationCache(
        _get_evaluation_service(), backend, user_id, timeout=s.evaluation_timeout,
    )
    return QuizSession(QuestionLoader(backend), cache, backend, user_id)


def _evict_expired_sessions(now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    expired = [
        sid for sid, s in _sessions.items()
        if s.completed_at is not None and not s.busy and now - s.completed_at > SESSION_TTL
    ]
    for sid in expired:
        del _sessions[sid]
    if expired:
        log.info("Evicted %d completed session(s)", len(expired))
    return len(expired)


def _get_session(session_id: str) -> QuizSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


def _import_questions(db: Database, settings: Settings, only_changed: bool = False) -> int:
    """Import configured question files; returns the number of questions read."""
    total = 0
    for qf in settings.resolved_question_files():
        if not qf.exists():
            continue
        mtime = qf.stat().st_mtime_ns
        if only_changed and db.get_file_mtime(str(qf)) == mtime:
            continue
        log.info("Importing %s", qf.name)
        try:
            rows = parse_question_file(qf)
        except ValueError as e:
            log.warning("  Skipping %s: %s", qf.name, e)
            continue
        n = db.import_questions(rows)
        log.info("  %d questions imported", n)
        db.set_file_mtime(str(qf), mtime)
        total += n
    return total


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    _db.ensure_user(_settings.user_id)
    if not os.environ.get("QUIZMASTER_NO_AUTO_IMPORT"):
        _import_questions(_db, _settings, only_changed=True)


@app.on_event("shutdown")
async def shutdown():
    for session in list(_sessions.values()):
        await session.drain()
    if _db:
        _db.close()


@app.exception_handler(QuizStateError)
async def _state_error(request: Request, exc: QuizStateError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats(get_settings().user_id)


@app.get("/api/stats/time")
async def api_time_stats():
    return get_db().get_time_analytics(get_settings().user_id)


@app.get("/api/topics")
async def api_topics():
    return get_db().get_topics()


@app.get("/api/history")
async def api_history():
    return get_db().get_quiz_history(get_settings().user_id)


@app.post("/api/import")
async def api_import():
    db = get_db()
    n = _import_questions(db, get_settings())
    return {"questions_imported": n, "question_bank_size": db.get_question_count()}


# ── API: Quiz sessions ───────────────────────────────────────────────────

@app.post("/api/quiz/start")
async def api_quiz_start(request: Request):
    body = await request.json() if await request.body() else {}
    s = get_settings()
    topic = body.get("topic") or None
    limit = int(body.get("limit") or s.quiz_size)
    if limit <= 0:
        raise HTTPException(400, "limit must be positive")

    _evict_expired_sessions()
    session = _new_session(body.get("user_id") or s.user_id)
    try:
        questions = await session.load(topic, limit)
    except FetchError as e:
        return JSONResponse(status_code=503, content={"error": str(e), "retry": True})
    if not questions:
        return {"error": "No questions available for this topic.", "session_id": None}

    _sessions[session.id] = session
    return session.snapshot()


@app.get("/api/quiz/{session_id}")
async def api_quiz_state(session_id: str):
    return _get_session(session_id).snapshot()


@app.post("/api/quiz/{session_id}/answer")
async def api_quiz_answer(session_id: str, request: Request):
    session = _get_session(session_id)
    body = await request.json()
    time_spent = float(body.get("time_spent") or 0)

    if "option_id" in body:
        option_id = str(body["option_id"] or "").strip()
        if not option_id:
            raise HTTPException(400, "No option selected")
        value = Choice(option_id)
    else:
        text = str(body.get("text") or "")
        if not text.strip():
            raise HTTPException(400, "Answer cannot be empty")
        value = Text(text)

    try:
        record = await session.submit(value, time_spent)
    except TypeError as e:
        raise HTTPException(400, str(e))
    data = session.snapshot()
    data["accepted"] = record is not None
    return data


@app.post("/api/quiz/{session_id}/next")
async def api_quiz_next(session_id: str):
    session = _get_session(session_id)
    session.advance()
    return session.snapshot()


@app.post("/api/quiz/{session_id}/previous")
async def api_quiz_previous(session_id: str):
    session = _get_session(session_id)
    session.retreat()
    return session.snapshot()


@app.get("/api/quiz/{session_id}/explanation")
async def api_quiz_explanation(session_id: str, question_id: str | None = None):
    session = _get_session(session_id)
    try:
        question = session.question(question_id) if question_id else session.current_question
    except KeyError:
        raise HTTPException(404, "Question not in session")
    try:
        text = await session.explain(question.id)
    except EvaluationError as e:
        # Shown inline in the explanation panel; the quiz carries on.
        return JSONResponse(
            status_code=502,
            content={"question_id": question.id, "error": e.message, "status": e.status},
        )
    entry = session.explanations.get(question.id)
    return {
        "question_id": question.id,
        "explanation": text,
        "provenance": entry.provenance.value if entry else None,
        "vote": entry.vote.value if entry and entry.vote else None,
    }


@app.post("/api/quiz/{session_id}/feedback")
async def api_quiz_feedback(session_id: str, request: Request):
    session = _get_session(session_id)
    body = await request.json()
    question_id = body.get("question_id") or ""
    try:
        vote = Vote(body.get("vote"))
    except ValueError:
        raise HTTPException(400, "vote must be 'up' or 'down'")
    try:
        accepted = await session.vote(question_id, vote)
    except KeyError:
        raise HTTPException(404, "Question not in session")
    return {"question_id": question_id, "vote": vote.value, "accepted": accepted}


@app.post("/api/quiz/{session_id}/complete")
async def api_quiz_complete(session_id: str):
    session = _get_session(session_id)
    await session.complete()
    return session.snapshot()


@app.delete("/api/quiz/{session_id}")
async def api_quiz_close(session_id: str):
    """Drop a session once the learner leaves it; background work finishes first."""
    session = _get_session(session_id)
    await session.drain()
    _sessions.pop(session_id, None)
    return {"session_id": session_id, "closed": True}


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await request.json()
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    for k, v in body.items():
        if k in known:
            setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
