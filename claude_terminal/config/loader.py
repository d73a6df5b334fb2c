"""Load and save the JSON configuration file."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from claude_terminal.config.schema import Config


def get_config_path() -> Path:
    """Return the default config file location."""
    return Path.home() / ".claude-terminal" / "config.json"


def load_config(path: Path | None = None) -> Config:
    """Load config from disk, falling back to defaults on any problem.

    Environment variables (``CLAUDE_TERMINAL_APP__HOOKS_ENABLED=1``...) are
    applied on top of the file values by pydantic-settings.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        return Config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(f"[config] Could not read {config_path}: {exc}")
        return Config()
    if not isinstance(data, dict):
        logger.warning(f"[config] Ignoring {config_path}: expected a JSON object")
        return Config()
    try:
        return Config(**data)
    except ValidationError as exc:
        logger.warning(f"[config] Invalid config at {config_path}, using defaults: {exc}")
        return Config()


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write config as pretty JSON and return the path."""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump(mode="json")
    config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return config_path
