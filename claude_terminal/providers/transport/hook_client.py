"""Client side of the hook transport, run by the Claude CLI for every hook."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from claude_terminal.providers.transport.messages import parse_stdin


def read_port(port_file: Path) -> Optional[int]:
    try:
        return int(port_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def send_hook_event(
    hook_name: str,
    stdin_text: str,
    cwd: str,
    port_file: Path,
    host: str = "127.0.0.1",
    timeout_s: float = 1.0,
) -> bool:
    """Post one hook message to the running app. Never raises.

    Returns False when the app is not running or did not answer in time;
    the hook must not slow down or break the CLI in that case.
    """
    port = read_port(port_file)
    if port is None:
        return False
    body = json.dumps(
        {
            "hook": hook_name,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "stdin": parse_stdin(stdin_text),
            "cwd": cwd,
        }
    ).encode("utf-8")
    request = urllib.request.Request(
        f"http://{host}:{port}/hook",
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout_s) as response:
            return response.status == 200
    except (urllib.error.URLError, OSError, ValueError) as exc:
        logger.debug(f"[hooks] Could not deliver {hook_name}: {exc}")
        return False
