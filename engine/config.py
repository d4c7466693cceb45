"""Configuration loading from settings.yaml and .env."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv


def load_config(
    config_dir: str | Path | None = None,
) -> dict:
    """Load settings.yaml and .env, return merged config dict."""
    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    config_dir = Path(config_dir)

    # .env is optional
    load_dotenv(config_dir / ".env")

    settings_path = config_dir / "settings.yaml"
    if not settings_path.exists():
        raise FileNotFoundError(f"Config not found: {settings_path}")

    with open(settings_path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    # Relative storage and content paths are resolved against the config dir's parent
    base = config_dir.parent
    for section, keys in (("content", ("directory",)), ("storage", ("metrics_file", "ledger_db", "log_file"))):
        values = cfg.get(section) or {}
        for key in keys:
            value = values.get(key)
            if value and value != ":memory:" and not Path(value).is_absolute():
                values[key] = str(base / value)
        if values:
            cfg[section] = values

    cfg["_secrets"] = {
        "content_api_token": os.getenv("CONTENT_API_TOKEN", ""),
    }

    return cfg
