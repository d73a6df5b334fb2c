"""Launch definitions for each session kind."""

from __future__ import annotations

import json
import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from claude_terminal.config.schema import Config
from claude_terminal.errors import SpawnError
from claude_terminal.models import SessionKind

ANSI_FULL_RE = re.compile(
    r"\x1b\[[0-9;?]*[A-Za-z]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()][0-9A-Za-z]"
    r"|\x1bP[^\x1b]*\x1b\\"
)

PORT_PATTERNS = (
    re.compile(r"https?://(?:localhost|127\.0\.0\.1|0\.0\.0\.0):(\d+)"),
    re.compile(r"(?:listening|running|started|ready)\s+(?:on|at)\s+(?:port\s+)?(\d+)", re.IGNORECASE),
    re.compile(r"port\s+(\d+)", re.IGNORECASE),
)

# Lock file -> package manager, checked in order.
LOCK_FILES = (
    ("bun.lockb", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
)

# package.json script -> command suffix, checked in order.
DEV_SCRIPTS = (
    ("dev", "run dev"),
    ("start", "start"),
    ("serve", "run serve"),
)


@dataclass(frozen=True)
class KindDef:
    """Session kind metadata."""

    kind: SessionKind
    name: str
    command: str
    env_override: str

    def resolve_command(self, configured: str = "") -> str:
        """Resolve command from env override, then config, then the default."""
        value = os.getenv(self.env_override, "").strip()
        return value or configured.strip() or self.command


KIND_DEFS: dict[SessionKind, KindDef] = {
    SessionKind.CLAUDE: KindDef(SessionKind.CLAUDE, "Claude", "claude", "CLAUDE_TERMINAL_CLAUDE_CMD"),
    SessionKind.FIVEM: KindDef(
        SessionKind.FIVEM, "FiveM", "./FXServer.exe +exec server.cfg", "CLAUDE_TERMINAL_FIVEM_CMD"
    ),
    SessionKind.WEBAPP: KindDef(SessionKind.WEBAPP, "WebApp", "", "CLAUDE_TERMINAL_WEBAPP_CMD"),
    SessionKind.SHELL: KindDef(SessionKind.SHELL, "Shell", "", "CLAUDE_TERMINAL_SHELL"),
    SessionKind.FILE_VIEW: KindDef(SessionKind.FILE_VIEW, "File", "", "CLAUDE_TERMINAL_VIEWER"),
}


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to spawn one child."""

    command: str
    args: tuple[str, ...] = ()
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


def _split(command_line: str) -> tuple[str, tuple[str, ...]]:
    parts = shlex.split(command_line, posix=os.name != "nt")
    if not parts:
        raise SpawnError("Empty command", command=command_line)
    return parts[0], tuple(parts[1:])


def default_shell(config: Config) -> str:
    configured = KIND_DEFS[SessionKind.SHELL].resolve_command(config.terminal.shell)
    if configured:
        return configured
    if os.name == "nt":
        return os.environ.get("COMSPEC", "powershell.exe")
    return os.environ.get("SHELL", "/bin/bash")


def _shell_wrap(command_line: str, cwd: Optional[str]) -> LaunchSpec:
    if os.name == "nt":
        return LaunchSpec("cmd.exe", ("/c", command_line), cwd=cwd)
    return LaunchSpec("bash", ("-c", command_line), cwd=cwd)


def claude_launch(
    config: Config,
    cwd: Optional[str],
    *,
    resume_session_id: Optional[str] = None,
    skip_permissions: bool = False,
) -> LaunchSpec:
    """``claude [--resume ID] [--dangerously-skip-permissions]`` in ``cwd``."""
    command, args = _split(KIND_DEFS[SessionKind.CLAUDE].resolve_command(config.terminal.claude_command))
    extra: list[str] = []
    if resume_session_id:
        extra += ["--resume", resume_session_id]
    if skip_permissions:
        extra.append("--dangerously-skip-permissions")
    return LaunchSpec(command, args + tuple(extra), cwd=cwd)


def shell_launch(config: Config, cwd: Optional[str]) -> LaunchSpec:
    command, args = _split(default_shell(config))
    return LaunchSpec(command, args, cwd=cwd)


def fivem_launch(config: Config, cwd: Optional[str], run_command: Optional[str] = None) -> LaunchSpec:
    """FiveM server console, run through the platform shell."""
    command_line = (run_command or "").strip() or KIND_DEFS[SessionKind.FIVEM].resolve_command(
        config.terminal.fivem_command
    )
    return _shell_wrap(command_line, cwd)


def detect_package_manager(project_path: str) -> str:
    root = Path(project_path)
    for lock_file, manager in LOCK_FILES:
        if (root / lock_file).exists():
            return manager
    return "npm"


def detect_dev_command(project_path: str) -> Optional[str]:
    """Guess the dev-server command from ``package.json`` scripts."""
    package_json = Path(project_path) / "package.json"
    if not package_json.exists():
        return None
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(f"[webapp] Could not read {package_json}: {exc}")
        return None
    scripts = data.get("scripts") if isinstance(data, dict) else None
    if not isinstance(scripts, dict):
        return None
    manager = detect_package_manager(project_path)
    for script, suffix in DEV_SCRIPTS:
        if script in scripts:
            return f"{manager} {suffix}"
    return None


def webapp_launch(config: Config, cwd: str, dev_command: Optional[str] = None) -> LaunchSpec:
    """Dev server for a web project. Raises SpawnError when no command is known."""
    command_line = (
        (dev_command or "").strip()
        or KIND_DEFS[SessionKind.WEBAPP].resolve_command()
        or detect_dev_command(cwd)
    )
    if not command_line:
        raise SpawnError(f"No dev command configured or detected in {cwd}")
    return _shell_wrap(command_line, cwd)


def file_view_launch(config: Config, file_path: str) -> LaunchSpec:
    """Read-only pager on ``file_path``."""
    path = Path(file_path).expanduser()
    if not path.is_file():
        raise SpawnError(f"File not found: {path}")
    viewer = KIND_DEFS[SessionKind.FILE_VIEW].resolve_command(config.terminal.file_viewer)
    if not viewer:
        viewer = "more" if os.name == "nt" else "less -R"
    command, args = _split(viewer)
    return LaunchSpec(command, args + (str(path),), cwd=str(path.parent))


class PortDetector:
    """Find the dev-server port in streamed output."""

    def __init__(self, buffer_size: int = 2048) -> None:
        self._buffer = ""
        self._buffer_size = buffer_size
        self.port: Optional[int] = None

    def feed(self, data: str) -> Optional[int]:
        """Feed a chunk; return the port the first time one is found."""
        if self.port is not None:
            return None
        self._buffer = (self._buffer + ANSI_FULL_RE.sub("", data))[-self._buffer_size:]
        for pattern in PORT_PATTERNS:
            match = pattern.search(self._buffer)
            if match:
                port = int(match.group(1))
                if 0 < port < 65536:
                    self.port = port
                    self._buffer = ""
                    return port
        return None
