"""Small shared helpers."""

from __future__ import annotations

import secrets
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger


def ensure_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Return the application data directory (~/.claude-terminal)."""
    return ensure_dir(Path.home() / ".claude-terminal")


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def short_id() -> str:
    return secrets.token_hex(4)


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Install the stderr sink and an optional rotating file sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}",
    )
    if log_file is not None:
        ensure_dir(log_file.parent)
        logger.add(log_file, level="DEBUG", rotation="5 MB", retention=3, encoding="utf-8")
