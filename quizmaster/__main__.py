"""CLI entry point for quizmaster.

Usage:
  python -m quizmaster serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m quizmaster stop
  python -m quizmaster restart [--port PORT]
  python -m quizmaster status
  python -m quizmaster import
  python -m quizmaster remove-topic TOPIC
  python -m quizmaster stats
"""
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "restart":
        _restart(args[1:])
    elif command == "status":
        _status()
    elif command == "import":
        _import_questions()
    elif command == "remove-topic":
        _remove_topic(args[1:])
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, import, remove-topic, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _stop() -> bool:
    """Stop a running server. Returns True if a server was stopped."""
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        PID_FILE.unlink(missing_ok=True)
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        PID_FILE.unlink(missing_ok=True)
        return False


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    _stop()
    time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["QUIZMASTER_NO_AUTO_IMPORT"] = "1"

    port = int(_parse_flag(args, "--port", "8765"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    PID_FILE.write_text(str(os.getpid()))

    print(f"Starting Quizmaster on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "quizmaster.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("QUIZMASTER_NO_AUTO_IMPORT", None)


def _import_questions():
    from quizmaster.config import load_settings
    from quizmaster.db import Database
    from quizmaster.parsers.question_parser import parse_question_file

    settings = load_settings()
    db = Database(settings.db_full_path)

    total = 0
    for qf in settings.resolved_question_files():
        if not qf.exists():
            print(f"  Skipping (not found): {qf}")
            continue
        print(f"  Parsing: {qf.name}")
        try:
            rows = parse_question_file(qf)
        except ValueError as e:
            print(f"    Invalid file: {e}")
            continue
        n = db.import_questions(rows)
        total += n
        print(f"    {n} questions")
        db.set_file_mtime(str(qf), qf.stat().st_mtime_ns)

    print(f"\nImported {total}; question bank now holds {db.get_question_count()} questions")
    db.close()


def _remove_topic(args: list[str]):
    from quizmaster.config import load_settings
    from quizmaster.db import Database

    if not args:
        print("Usage: python -m quizmaster remove-topic TOPIC")
        sys.exit(1)
    settings = load_settings()
    db = Database(settings.db_full_path)
    n = db.delete_questions_by_topic(args[0])
    print(f"Removed {n} questions from topic '{args[0]}'")
    db.close()


def _stats():
    from quizmaster.config import load_settings
    from quizmaster.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats(settings.user_id)

    print("Quizmaster Stats")
    print("=" * 40)
    print(f"Question bank:      {stats['question_bank_size']}")
    print(f"Topics:             {stats['total_topics']}")
    print(f"XP:                 {stats['xp']}")
    print(f"Streak:             {stats['streak_days']} day(s)")
    print(f"Quizzes completed:  {stats['total_quizzes']}")
    print(f"Questions answered: {stats['total_questions_answered']}")
    print(f"Overall accuracy:   {stats['accuracy']}%")
    print(f"Avg time/question:  {stats['avg_time_per_question']}s")
    db.close()


if __name__ == "__main__":
    main()
