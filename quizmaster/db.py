from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

from quizmaster.scoring import next_streak

SCHEMA = """
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    question_text TEXT NOT NULL,
    question_type TEXT NOT NULL,
    options_json TEXT NOT NULL DEFAULT '[]',
    correct_answer TEXT NOT NULL,
    explanation TEXT,
    explanation_source TEXT DEFAULT 'authored',
    difficulty TEXT DEFAULT 'medium',
    topic_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT,
    xp INTEGER DEFAULT 0,
    streak_days INTEGER DEFAULT 0,
    last_activity TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_answers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    answer_kind TEXT NOT NULL,
    answer_value TEXT NOT NULL,
    time_spent REAL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quiz_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    score INTEGER NOT NULL,
    total_questions INTEGER NOT NULL,
    time_taken INTEGER NOT NULL,
    topic_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS explanation_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    feedback TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS file_mtimes (
    file_path TEXT PRIMARY KEY,
    mtime_ns INTEGER NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def ping(self) -> None:
        """Raise sqlite3.Error if the questions table cannot be read."""
        self.conn.execute("SELECT COUNT(*) FROM questions LIMIT 1").fetchone()

    # ── Import ────────────────────────────────────────────────────────────

    def import_questions(self, rows: list[dict]) -> int:
        """Insert or replace bank questions. Options are stored as given."""
        count = 0
        for r in rows:
            self.conn.execute(
                "INSERT OR REPLACE INTO questions "
                "(id, question_text, question_type, options_json, correct_answer, "
                "explanation, explanation_source, difficulty, topic_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(r["id"]),
                    r["question_text"],
                    r["question_type"],
                    json.dumps(r.get("options") or []),
                    str(r["correct_answer"]),
                    r.get("explanation"),
                    r.get("explanation_source", "authored"),
                    r.get("difficulty", "medium"),
                    r.get("topic_id"),
                    _now(),
                ),
            )
            count += 1
        self.conn.commit()
        return count

    def delete_questions_by_topic(self, topic_id: str) -> int:
        cur = self.conn.execute("DELETE FROM questions WHERE topic_id = ?", (topic_id,))
        self.conn.commit()
        return cur.rowcount

    # ── File mtimes ─────────────────────────────────────────────────────

    def get_file_mtime(self, file_path: str) -> int | None:
        row = self.conn.execute(
            "SELECT mtime_ns FROM file_mtimes WHERE file_path = ?", (file_path,)
        ).fetchone()
        return row[0] if row else None

    def set_file_mtime(self, file_path: str, mtime_ns: int) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO file_mtimes (file_path, mtime_ns) VALUES (?, ?)",
            (file_path, mtime_ns),
        )
        self.conn.commit()

    # ── Questions ─────────────────────────────────────────────────────────

    def get_question_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM questions").fetchone()
        return row[0]

    def get_question(self, question_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return dict(row) if row else None

    def fetch_questions(self, topic_id: str | None = None, limit: int = 10) -> list[dict]:
        """Raw question rows, optionally filtered by topic."""
        if topic_id:
            rows = self.conn.execute(
                "SELECT * FROM questions WHERE topic_id = ? ORDER BY RANDOM() LIMIT ?",
                (topic_id, limit),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM questions ORDER BY RANDOM() LIMIT ?", (limit,)
            ).fetchall()
        return [dict(r) for r in rows]

    def get_topics(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT topic_id, COUNT(*) AS question_count FROM questions "
            "WHERE topic_id IS NOT NULL GROUP BY topic_id ORDER BY topic_id"
        ).fetchall()
        return [dict(r) for r in rows]

    def update_question_explanation(self, question_id: str, explanation: str) -> bool:
        """Store a generated explanation on the bank copy of a question."""
        cur = self.conn.execute(
            "UPDATE questions SET explanation = ?, explanation_source = 'generated' "
            "WHERE id = ?",
            (explanation, question_id),
        )
        self.conn.commit()
        return cur.rowcount > 0

    # ── Users ─────────────────────────────────────────────────────────────

    def ensure_user(self, user_id: str, username: str | None = None) -> dict:
        self.conn.execute(
            "INSERT OR IGNORE INTO users (id, username, created_at) VALUES (?, ?, ?)",
            (user_id, username or user_id, _now()),
        )
        self.conn.commit()
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def increment_xp(self, user_id: str, amount: int) -> int:
        self.ensure_user(user_id)
        self.conn.execute("UPDATE users SET xp = xp + ? WHERE id = ?", (amount, user_id))
        self.conn.commit()
        return self.get_user(user_id)["xp"]

    def update_streak(self, user_id: str, today: date | None = None) -> int:
        """Apply the calendar-day streak rule and stamp today's activity."""
        today = today or date.today()
        user = self.ensure_user(user_id)
        last = date.fromisoformat(user["last_activity"][:10]) if user["last_activity"] else None
        streak = next_streak(last, user["streak_days"] or 0, today)
        self.conn.execute(
            "UPDATE users SET streak_days = ?, last_activity = ? WHERE id = ?",
            (streak, today.isoformat(), user_id),
        )
        self.conn.commit()
        return streak

    # ── Answers & results ────────────────────────────────────────────────

    def record_answer(
        self,
        user_id: str,
        question_id: str,
        is_correct: bool,
        answer_kind: str,
        answer_value: str,
        time_spent: float = 0,
    ) -> int:
        cur = self.conn.execute(
            "INSERT INTO user_answers (user_id, question_id, is_correct, answer_kind, "
            "answer_value, time_spent, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, question_id, 1 if is_correct else 0, answer_kind,
             answer_value, time_spent, _now()),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_answers(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM user_answers WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def record_quiz_result(
        self,
        user_id: str,
        correct_count: int,
        total_questions: int,
        time_taken: int,
        topic_id: str | None = None,
    ) -> int:
        cur = self.conn.execute(
            "INSERT INTO quiz_results (user_id, score, total_questions, time_taken, "
            "topic_id, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, correct_count, total_questions, time_taken, topic_id, _now()),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_quiz_history(self, user_id: str, limit: int = 20) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM quiz_results WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Explanation feedback ─────────────────────────────────────────────

    def store_feedback(self, user_id: str, question_id: str, feedback: str) -> None:
        self.conn.execute(
            "INSERT INTO explanation_feedback (user_id, question_id, feedback, created_at) "
            "VALUES (?, ?, ?, ?)",
            (user_id, question_id, feedback, _now()),
        )
        self.conn.commit()

    def get_feedback(self, question_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM explanation_feedback WHERE question_id = ? ORDER BY id",
            (question_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Time analytics ───────────────────────────────────────────────────

    def get_average_answer_time(self, user_id: str) -> float:
        row = self.conn.execute(
            "SELECT AVG(time_spent) FROM user_answers WHERE user_id = ?", (user_id,)
        ).fetchone()
        return round(row[0], 1) if row[0] is not None else 0

    def get_time_analytics(self, user_id: str, history_limit: int = 10) -> dict:
        """Seconds spent answering: overall average, totals per topic, recent answers."""
        per_topic = self.conn.execute(
            "SELECT COALESCE(q.topic_id, 'uncategorized') AS topic_id, "
            "SUM(a.time_spent) AS total_time, AVG(a.time_spent) AS avg_time, "
            "COUNT(*) AS answers "
            "FROM user_answers a LEFT JOIN questions q ON q.id = a.question_id "
            "WHERE a.user_id = ? GROUP BY 1 ORDER BY 1",
            (user_id,),
        ).fetchall()
        recent = self.conn.execute(
            "SELECT time_spent, created_at FROM user_answers WHERE user_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (user_id, history_limit),
        ).fetchall()
        return {
            "average_time": self.get_average_answer_time(user_id),
            "time_per_topic": {
                r["topic_id"]: {
                    "total_time": round(r["total_time"], 1),
                    "avg_time": round(r["avg_time"], 1),
                    "answers": r["answers"],
                }
                for r in per_topic
            },
            # Oldest first
            "time_history": [
                {"time": r["time_spent"], "created_at": r["created_at"]} for r in reversed(recent)
            ],
        }

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self, user_id: str) -> dict:
        user = self.get_user(user_id) or {}
        answers = self.conn.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(is_correct), 0) AS correct "
            "FROM user_answers WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        quizzes = self.conn.execute(
            "SELECT COUNT(*) FROM quiz_results WHERE user_id = ?", (user_id,)
        ).fetchone()[0]

        total = answers["total"]
        correct = answers["correct"]
        return {
            "avg_time_per_question": self.get_average_answer_time(user_id),
            "question_bank_size": self.get_question_count(),
            "total_topics": len(self.get_topics()),
            "xp": user.get("xp", 0),
            "streak_days": user.get("streak_days", 0),
            "last_activity": user.get("last_activity"),
            "total_quizzes": quizzes,
            "total_questions_answered": total,
            "total_correct": correct,
            "accuracy": round(correct / total * 100, 1) if total > 0 else 0,
        }
