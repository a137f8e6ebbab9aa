from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "llm_provider": "ollama",
    "llm_model": "qwen3:8b",
    "ollama_url": "http://localhost:11434",
    "evaluation_backend": "llm",
    "evaluation_url": "",
    "evaluation_timeout": 30.0,
    "quiz_size": 10,
    "db_path": "quiz.db",
    "question_files": [],
    "user_id": "local",
}


@dataclass
class Settings:
    llm_provider: str = DEFAULTS["llm_provider"]
    llm_model: str = DEFAULTS["llm_model"]
    ollama_url: str = DEFAULTS["ollama_url"]
    evaluation_backend: str = DEFAULTS["evaluation_backend"]
    evaluation_url: str = DEFAULTS["evaluation_url"]
    evaluation_timeout: float = DEFAULTS["evaluation_timeout"]
    quiz_size: int = DEFAULTS["quiz_size"]
    db_path: str = DEFAULTS["db_path"]
    question_files: list[str] = field(default_factory=lambda: list(DEFAULTS["question_files"]))
    user_id: str = DEFAULTS["user_id"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    def resolved_question_files(self) -> list[Path]:
        if self.question_files:
            root = self.project_root
            return [root / f for f in self.question_files]
        return sorted(self.data_dir.glob("*.json"))

    def to_dict(self) -> dict:
        return {
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
            "ollama_url": self.ollama_url,
            "evaluation_backend": self.evaluation_backend,
            "evaluation_url": self.evaluation_url,
            "evaluation_timeout": self.evaluation_timeout,
            "quiz_size": self.quiz_size,
            "db_path": self.db_path,
            "question_files": self.question_files,
            "user_id": self.user_id,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
