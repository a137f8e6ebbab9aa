"""Tests for configuration loading and saving."""
from __future__ import annotations

import json
from unittest.mock import patch

from quizmaster.config import Settings, load_settings, save_settings


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.llm_provider == "ollama"
        assert s.quiz_size == 10
        assert s.evaluation_backend == "llm"
        assert s.evaluation_timeout == 30.0
        assert s.user_id == "local"

    def test_to_dict(self):
        s = Settings()
        d = s.to_dict()
        assert d["llm_provider"] == "ollama"
        assert isinstance(d["question_files"], list)
        assert len(d) == 10  # all fields present

    def test_to_dict_roundtrip(self):
        s = Settings(llm_provider="anthropic", quiz_size=25)
        s2 = Settings(**s.to_dict())
        assert s2.llm_provider == "anthropic"
        assert s2.quiz_size == 25

    def test_default_question_files_from_data_dir(self):
        s = Settings()
        assert all(p.parent == s.data_dir for p in s.resolved_question_files())

    def test_configured_question_files_relative_to_root(self):
        s = Settings(question_files=["banks/law.json"])
        assert s.resolved_question_files() == [s.project_root / "banks" / "law.json"]

    def test_default_lists_not_shared(self):
        a, b = Settings(), Settings()
        a.question_files.append("x.json")
        assert b.question_files == []


class TestLoadSaveSettings:
    def test_load_from_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"llm_provider": "openai", "quiz_size": 5}))

        with patch("quizmaster.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.llm_provider == "openai"
        assert s.quiz_size == 5
        # Defaults for unspecified fields
        assert s.evaluation_backend == "llm"

    def test_load_missing_file(self, tmp_path):
        with patch("quizmaster.config.CONFIG_PATH", tmp_path / "nonexistent.json"):
            s = load_settings()
        assert s.llm_provider == "ollama"

    def test_save_creates_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        with patch("quizmaster.config.CONFIG_PATH", config_path):
            save_settings(Settings(evaluation_backend="http", evaluation_url="http://eval"))

        data = json.loads(config_path.read_text())
        assert data["evaluation_backend"] == "http"
        assert data["evaluation_url"] == "http://eval"

    def test_unknown_keys_ignored(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"llm_provider": "ollama", "tts_provider": "edge-tts"}))

        with patch("quizmaster.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert not hasattr(s, "tts_provider")

    def test_unrecognized_size_key_not_mapped(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"session_size": 15}))

        with patch("quizmaster.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.quiz_size == 10
