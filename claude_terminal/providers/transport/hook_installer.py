"""Install our hook handler into the Claude CLI's ``settings.json``.

Installation is non-destructive: foreign hook entries are kept, ours are
recognised by ``HOOK_IDENTIFIER`` in the command and replaced.
"""

from __future__ import annotations

import json
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

HOOK_IDENTIFIER = "claude_terminal hook"


@dataclass(frozen=True)
class HookDef:
    key: str
    has_matcher: bool = True


HOOK_DEFINITIONS: tuple[HookDef, ...] = (
    HookDef("PreToolUse"),
    HookDef("PostToolUse"),
    HookDef("PostToolUseFailure"),
    HookDef("Notification"),
    HookDef("UserPromptSubmit", has_matcher=False),
    HookDef("SessionStart"),
    HookDef("Stop", has_matcher=False),
    HookDef("SubagentStart"),
    HookDef("SubagentStop"),
    HookDef("PreCompact"),
    HookDef("SessionEnd"),
    HookDef("PermissionRequest"),
    HookDef("Setup"),
    HookDef("TeammateIdle", has_matcher=False),
    HookDef("TaskCompleted", has_matcher=False),
)


@dataclass(frozen=True)
class HookResult:
    success: bool
    error: Optional[str] = None
    repaired: bool = False


@dataclass(frozen=True)
class HookStatus:
    installed: bool
    count: int
    total: int = len(HOOK_DEFINITIONS)


def default_settings_path() -> Path:
    return Path.home() / ".claude" / "settings.json"


def handler_command(hook_key: str, python: str | None = None) -> str:
    """Shell command Claude runs for ``hook_key``."""
    executable = (python or sys.executable).replace("\\", "/")
    return f'"{executable}" -m {HOOK_IDENTIFIER} {hook_key}'


def _backup_path(settings_path: Path) -> Path:
    return settings_path.with_name("settings.pre-hooks.json")


def read_settings(settings_path: Path) -> dict[str, Any]:
    if not settings_path.exists():
        return {}
    data = json.loads(settings_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{settings_path} does not contain a JSON object")
    return data


def write_settings(settings_path: Path, settings: dict[str, Any]) -> None:
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(json.dumps(settings, indent=2, ensure_ascii=False), encoding="utf-8")


def build_hook_entry(hook: HookDef, python: str | None = None) -> dict[str, Any]:
    entry: dict[str, Any] = {"hooks": [{"type": "command", "command": handler_command(hook.key, python)}]}
    if hook.has_matcher:
        entry["matcher"] = ""
    return entry


def is_our_hook(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    return any(
        isinstance(hook, dict)
        and hook.get("type") == "command"
        and HOOK_IDENTIFIER in str(hook.get("command") or "")
        for hook in entry.get("hooks") or ()
    )


def _entries(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def install_hooks(settings_path: Path | None = None, python: str | None = None) -> HookResult:
    """Add (or refresh) our handler for every hook."""
    path = settings_path or default_settings_path()
    try:
        settings = read_settings(path)
        if path.exists():
            shutil.copyfile(path, _backup_path(path))
        hooks = settings.setdefault("hooks", {})
        for hook in HOOK_DEFINITIONS:
            kept = [entry for entry in _entries(hooks.get(hook.key)) if not is_our_hook(entry)]
            kept.append(build_hook_entry(hook, python))
            hooks[hook.key] = kept
        write_settings(path, settings)
    except (OSError, ValueError) as exc:
        logger.error(f"[hooks] Failed to install hooks: {exc}")
        return HookResult(False, str(exc))
    logger.info(f"[hooks] Installed {len(HOOK_DEFINITIONS)} hooks into {path}")
    return HookResult(True)


def remove_hooks(settings_path: Path | None = None) -> HookResult:
    """Remove only our entries; drop keys left empty."""
    path = settings_path or default_settings_path()
    try:
        settings = read_settings(path)
        hooks = settings.get("hooks")
        if not isinstance(hooks, dict):
            return HookResult(True)
        for hook in HOOK_DEFINITIONS:
            if hook.key not in hooks:
                continue
            kept = [entry for entry in _entries(hooks[hook.key]) if not is_our_hook(entry)]
            if kept:
                hooks[hook.key] = kept
            else:
                del hooks[hook.key]
        if not hooks:
            del settings["hooks"]
        write_settings(path, settings)
    except (OSError, ValueError) as exc:
        logger.error(f"[hooks] Failed to remove hooks: {exc}")
        return HookResult(False, str(exc))
    logger.info(f"[hooks] Removed hooks from {path}")
    return HookResult(True)


def hooks_status(settings_path: Path | None = None) -> HookStatus:
    path = settings_path or default_settings_path()
    try:
        hooks = read_settings(path).get("hooks")
    except (OSError, ValueError) as exc:
        logger.warning(f"[hooks] Could not read {path}: {exc}")
        return HookStatus(False, 0)
    if not isinstance(hooks, dict):
        return HookStatus(False, 0)
    count = sum(1 for hook in HOOK_DEFINITIONS if any(is_our_hook(e) for e in _entries(hooks.get(hook.key))))
    return HookStatus(count == len(HOOK_DEFINITIONS), count)


def verify_and_repair_hooks(settings_path: Path | None = None, python: str | None = None) -> HookResult:
    """Reinstall when a hook is missing or points at another interpreter."""
    path = settings_path or default_settings_path()
    try:
        hooks = read_settings(path).get("hooks")
    except (OSError, ValueError) as exc:
        return HookResult(False, str(exc))
    hooks = hooks if isinstance(hooks, dict) else {}
    for hook in HOOK_DEFINITIONS:
        expected = handler_command(hook.key, python)
        commands = [
            inner.get("command")
            for entry in _entries(hooks.get(hook.key))
            if is_our_hook(entry)
            for inner in entry.get("hooks") or ()
            if isinstance(inner, dict)
        ]
        if expected not in commands:
            result = install_hooks(path, python)
            return HookResult(result.success, result.error, repaired=result.success)
    return HookResult(True)
