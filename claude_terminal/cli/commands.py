"""CLI commands for claude-terminal."""

from __future__ import annotations

import asyncio
import os
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from claude_terminal import __logo__, __version__

app = typer.Typer(
    name="claude-terminal",
    help=f"{__logo__} claude-terminal - Claude session multiplexer",
    no_args_is_help=True,
)
hooks_app = typer.Typer(help="Manage the Claude CLI hook handler.")
projects_app = typer.Typer(help="Manage registered projects.")
app.add_typer(hooks_app, name="hooks")
app.add_typer(projects_app, name="projects")
console = Console()

STDIN_TIMEOUT_S = 0.5


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} claude-terminal v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """claude-terminal entrypoint."""
    del version


# ============================================================================
# Headless multiplexer
# ============================================================================


@app.command()
def run(
    paths: list[Path] = typer.Argument(..., help="Project directories to open a session in."),
    shell: bool = typer.Option(False, "--shell", help="Open a bare shell instead of Claude."),
    prompt: str = typer.Option("", "--prompt", "-p", help="Prompt sent once Claude is ready."),
    hooks: Optional[bool] = typer.Option(None, "--hooks/--no-hooks", help="Override the hooks_enabled setting."),
    skip_permissions: bool = typer.Option(False, "--skip-permissions", help="Pass --dangerously-skip-permissions."),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging."),
) -> None:
    """Open one session per project and report state until they all exit."""
    from claude_terminal.config.loader import load_config
    from claude_terminal.utils.helpers import configure_logging

    config = load_config()
    configure_logging(verbose, config.data_path / "logs" / "claude-terminal.log")
    if hooks is not None:
        config.app.hooks_enabled = hooks

    missing = [p for p in paths if not p.expanduser().is_dir()]
    if missing:
        console.print(f"[red]Not a directory: {', '.join(str(p) for p in missing)}[/red]")
        raise typer.Exit(1)

    try:
        code = asyncio.run(_serve(config, [p.expanduser().resolve() for p in paths], shell, prompt, skip_permissions))
    except KeyboardInterrupt:
        code = 130
    raise typer.Exit(code)


async def _serve(config, paths: list[Path], shell: bool, prompt: str, skip_permissions: bool) -> int:
    from claude_terminal.core import Core
    from claude_terminal.providers.base import BaseSessionObserver
    from claude_terminal.scheduler import LoopScheduler
    from claude_terminal.session.project_store import JsonProjectStore
    from claude_terminal.status.dispatcher import TabStatusChange
    from claude_terminal.status.notifications import ConsoleNotificationSink

    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    store = JsonProjectStore(config.data_path / "projects.json")
    core = Core(config, scheduler=LoopScheduler(loop), store=store, sink=ConsoleNotificationSink(console))

    class _ExitWatcher(BaseSessionObserver):
        def on_session_close(self, session, exit_code) -> None:
            console.print(f"[dim]{session.display_name} exited (code={exit_code})[/dim]")
            if len(core.registry) == 0:
                finished.set()

    def _on_tab(change: TabStatusChange) -> None:
        session = core.get_session(change.session_id)
        name = session.display_name if session else change.session_id
        colour = "yellow" if change.status.value == "working" else "green"
        console.print(f"[{colour}]{change.status.value:>8}[/{colour}] {name} [dim]{change.substatus.value}[/dim]")

    core.add_observer(_ExitWatcher())
    core.on_tab_status(_on_tab)
    core.start()
    core.set_window_focused(False)
    console.print(f"{__logo__} claude-terminal ({core.provider.value if core.provider else '?'} mode)")

    try:
        opened = 0
        for path in paths:
            project = store.find_by_path(str(path)) or store.add(str(path))
            result = core.open_claude(
                project,
                run_claude=not shell,
                skip_permissions=skip_permissions or None,
                pending_prompt=prompt or None,
            )
            if result.success:
                opened += 1
                console.print(f"[green]OK[/green] {project.name}: {result.session_id}")
            else:
                console.print(f"[red]Failed[/red] {project.name}: {result.error}")
        if not opened:
            return 1
        await finished.wait()
        return 0
    finally:
        core.shutdown()


# ============================================================================
# Hook handler (run by the Claude CLI)
# ============================================================================


@app.command()
def hook(name: str = typer.Argument(..., help="Hook name, e.g. PreToolUse.")) -> None:
    """Forward one hook invocation to the running app. Always exits 0."""
    from claude_terminal.config.loader import load_config
    from claude_terminal.providers.transport.hook_client import send_hook_event

    logger.remove()
    try:
        config = load_config()
        send_hook_event(
            name,
            _read_stdin(STDIN_TIMEOUT_S),
            os.getcwd(),
            config.port_file_path,
            host=config.hooks.host,
            timeout_s=config.hooks.client_timeout_s,
        )
    except Exception:
        # A failing hook must never disturb the Claude CLI.
        pass
    raise typer.Exit(0)


def _read_stdin(timeout_s: float) -> str:
    """Read stdin fully, giving up after ``timeout_s`` when nothing arrives."""
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    chunks: list[str] = []

    def reader() -> None:
        chunks.append(sys.stdin.read())

    thread = threading.Thread(target=reader, daemon=True)
    thread.start()
    thread.join(timeout_s)
    return "".join(chunks)


# ============================================================================
# Hook installation
# ============================================================================


def _settings_path() -> Path:
    from claude_terminal.config.loader import load_config

    return Path(load_config().hooks.claude_settings).expanduser()


@hooks_app.command("install")
def hooks_install() -> None:
    """Install the hook handler into ~/.claude/settings.json."""
    from claude_terminal.providers.transport.hook_installer import install_hooks

    result = install_hooks(_settings_path())
    if not result.success:
        console.print(f"[red]Install failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print("[green]OK[/green] Hooks installed")


@hooks_app.command("uninstall")
def hooks_uninstall() -> None:
    """Remove our hook entries, keeping any others."""
    from claude_terminal.providers.transport.hook_installer import remove_hooks

    result = remove_hooks(_settings_path())
    if not result.success:
        console.print(f"[red]Uninstall failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print("[green]OK[/green] Hooks removed")


@hooks_app.command("status")
def hooks_status_cmd(
    repair: bool = typer.Option(False, "--repair", help="Reinstall missing or stale entries."),
) -> None:
    """Show how many hooks are installed."""
    from claude_terminal.providers.transport.hook_installer import hooks_status, verify_and_repair_hooks

    path = _settings_path()
    if repair:
        result = verify_and_repair_hooks(path)
        if result.repaired:
            console.print("[yellow]Hooks were repaired[/yellow]")
        elif not result.success:
            console.print(f"[red]Repair failed: {result.error}[/red]")
    status = hooks_status(path)
    colour = "green" if status.installed else "yellow"
    console.print(f"[{colour}]{status.count}/{status.total}[/{colour}] hooks installed in {path}")


# ============================================================================
# Projects and time
# ============================================================================


def _store():
    from claude_terminal.config.loader import load_config
    from claude_terminal.session.project_store import JsonProjectStore

    return JsonProjectStore(load_config().data_path / "projects.json")


@projects_app.command("add")
def projects_add(
    path: Path = typer.Argument(..., help="Project directory."),
    name: str = typer.Option("", "--name", help="Display name (defaults to the directory name)."),
    type: str = typer.Option("general", "--type", help="Project type: general, fivem, webapp."),
) -> None:
    """Register a project directory."""
    from claude_terminal.errors import PersistenceError

    resolved = path.expanduser().resolve()
    if not resolved.is_dir():
        console.print(f"[red]Not a directory: {resolved}[/red]")
        raise typer.Exit(1)
    try:
        project = _store().add(str(resolved), name=name, type=type)
    except PersistenceError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]OK[/green] {project.name} ({project.id})")


@projects_app.command("list")
def projects_list() -> None:
    """List registered projects."""
    projects = _store().list()
    if not projects:
        console.print("[dim]No projects registered.[/dim]")
        return
    table = Table(title="Projects")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Path", style="dim")
    for project in projects:
        table.add_row(project.id, project.name, project.type, project.path)
    console.print(table)


def _format_ms(ms: int) -> str:
    minutes, _ = divmod(ms // 1000, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


@app.command()
def times(project_id: str = typer.Argument("", help="Only show this project.")) -> None:
    """Show recorded time per project and globally."""
    from claude_terminal.scheduler import LoopScheduler
    from claude_terminal.tracking.time_tracker import TimeTracker

    store = _store()
    loop = asyncio.new_event_loop()
    try:
        tracker = TimeTracker(store, LoopScheduler(loop))
        table = Table(title="Time")
        table.add_column("Project")
        table.add_column("Today", justify="right")
        table.add_column("Total", justify="right")
        for project in store.list():
            if project_id and project.id != project_id:
                continue
            spent = tracker.get_project_times(project.id)
            table.add_row(project.name, _format_ms(spent["today"]), _format_ms(spent["total"]))
        console.print(table)
        if not project_id:
            overall = tracker.get_global_times()
            console.print(
                f"Global: today {_format_ms(overall['today'])}, "
                f"week {_format_ms(overall['week'])}, month {_format_ms(overall['month'])}"
            )
    finally:
        loop.close()


if __name__ == "__main__":
    app()
