"""Tests for configuration loading."""

import os
from pathlib import Path

import pytest

from engine.config import load_config


def test_loads_settings_and_secrets(tmp_path, monkeypatch):
    monkeypatch.delenv("CONTENT_API_TOKEN", raising=False)
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "settings.yaml").write_text(
        "story:\n  auto_progression: false\n"
        "content:\n  directory: data/content\n"
        "storage:\n  metrics_file: /abs/metrics.json\n  ledger_db: ':memory:'\n",
        encoding="utf-8",
    )
    (config_dir / ".env").write_text("CONTENT_API_TOKEN=from-dotenv\n", encoding="utf-8")

    cfg = load_config(config_dir)

    assert cfg["story"]["auto_progression"] is False
    assert cfg["content"]["directory"] == str(tmp_path / "data" / "content")
    assert cfg["storage"]["metrics_file"] == "/abs/metrics.json"
    assert cfg["storage"]["ledger_db"] == ":memory:"
    assert cfg["_secrets"]["content_api_token"] == "from-dotenv"
    os.environ.pop("CONTENT_API_TOKEN", None)


def test_empty_settings_file_gives_empty_sections(tmp_path, monkeypatch):
    monkeypatch.delenv("CONTENT_API_TOKEN", raising=False)
    (tmp_path / "settings.yaml").write_text("", encoding="utf-8")
    cfg = load_config(tmp_path)
    assert cfg == {"_secrets": {"content_api_token": ""}}


def test_missing_settings_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path)


def test_shipped_settings_load():
    cfg = load_config(Path(__file__).resolve().parents[3] / "config")
    assert cfg["story"]["beats"][0] == "hook"
    assert cfg["dialogue"]["text_limits"]["mobile"] == 120
