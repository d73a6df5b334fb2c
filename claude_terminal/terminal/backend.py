"""PTY backends for running interactive children."""

from __future__ import annotations

import os
import signal
import subprocess
from typing import Mapping, Optional, Protocol, Sequence

from loguru import logger

from claude_terminal.errors import SpawnError


class PTYBackend(Protocol):
    """Minimal PTY backend contract."""

    def read(self) -> str:
        """Read a stdout/stderr chunk; "" on timeout, EOFError at end of stream."""

    def write(self, data: str) -> None:
        """Write input data."""

    def resize(self, cols: int, rows: int) -> None:
        """Apply terminal resize."""

    def is_alive(self) -> bool:
        """Return True while the child runs."""

    def exit_status(self) -> Optional[int]:
        """Exit code once the child has been reaped."""

    def terminate(self) -> None:
        """Ask the child to exit."""

    def close(self) -> None:
        """Close process resources, killing the child if needed."""


def build_env(overlay: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Inherited environment plus terminal defaults and ``overlay``."""
    env = dict(os.environ)
    env.setdefault("TERM", "xterm-256color")
    env.setdefault("COLORTERM", "truecolor")
    if overlay:
        env.update({key: str(value) for key, value in overlay.items()})
    return env


class UnixPexpectBackend:
    """PTY backend for Unix-like systems via pexpect."""

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        import pexpect

        self._pexpect = pexpect
        self._proc = pexpect.spawn(
            command,
            args=list(args),
            encoding="utf-8",
            codec_errors="ignore",
            echo=False,
            dimensions=(rows, cols),
            cwd=cwd,
            env=build_env(env),
        )

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    def read(self) -> str:
        try:
            return self._proc.read_nonblocking(size=4096, timeout=0.1)
        except self._pexpect.TIMEOUT:
            return ""
        except self._pexpect.EOF as exc:
            raise EOFError("pty closed") from exc

    def write(self, data: str) -> None:
        self._proc.send(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def is_alive(self) -> bool:
        return self._proc.isalive()

    def exit_status(self) -> Optional[int]:
        if self._proc.isalive():
            return None
        if self._proc.exitstatus is not None:
            return self._proc.exitstatus
        if self._proc.signalstatus is not None:
            return -self._proc.signalstatus
        return None

    def terminate(self) -> None:
        if self._proc.isalive():
            self._proc.kill(signal.SIGTERM)

    def close(self) -> None:
        self._proc.close(force=True)


class WinptyBackend:
    """PTY backend for Windows via pywinpty."""

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        cols: int = 80,
        rows: int = 24,
        cwd: str | None = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        from winpty import Backend, PtyProcess

        argv = subprocess.list2cmdline([command, *args])
        launch_attempts = (
            {"backend": Backend.ConPTY},
            {"backend": Backend.WinPTY},
            {},
        )

        self._proc = None
        last_error: Optional[Exception] = None
        for extra in launch_attempts:
            try:
                self._proc = PtyProcess.spawn(
                    argv,
                    dimensions=(rows, cols),
                    env=build_env(env),
                    cwd=cwd,
                    **extra,
                )
                break
            except Exception as exc:  # pragma: no cover - platform specific
                last_error = exc

        if self._proc is None:
            raise SpawnError(f"Failed to start PTY for {argv}: {last_error}", command=argv) from last_error

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._proc, "pid", None)

    def read(self) -> str:
        # PtyProcess.read raises EOFError once the child is gone.
        return self._proc.read(4096)

    def write(self, data: str) -> None:
        self._proc.write(data)

    def resize(self, cols: int, rows: int) -> None:
        self._proc.setwinsize(rows, cols)

    def is_alive(self) -> bool:
        return self._proc.isalive()

    def exit_status(self) -> Optional[int]:
        return getattr(self._proc, "exitstatus", None)

    def terminate(self) -> None:
        self._proc.terminate(force=False)

    def close(self) -> None:
        pid = self.pid
        try:
            self._proc.close(force=True)
        except OSError as exc:
            logger.debug(f"[pty] close failed: {exc}")
        # Kill the whole tree so grandchildren (dev servers, FXServer) don't linger.
        if pid is not None:
            try:
                subprocess.run(
                    ["taskkill", "/F", "/T", "/PID", str(pid)],
                    capture_output=True,
                    timeout=3,
                )
            except (OSError, subprocess.SubprocessError) as exc:
                logger.debug(f"[pty] taskkill failed for {pid}: {exc}")


def build_backend(
    command: str,
    args: Sequence[str] = (),
    cols: int = 80,
    rows: int = 24,
    cwd: str | None = None,
    env: Optional[Mapping[str, str]] = None,
) -> PTYBackend:
    """Build the PTY backend for the current platform.

    Raises:
        SpawnError: when the child or its PTY cannot be created.
    """
    label = " ".join([command, *args])[:60]
    if cwd is not None and not os.path.isdir(cwd):
        raise SpawnError(f"Working directory does not exist: {cwd}", command=command)
    if os.name == "nt":
        backend: PTYBackend = WinptyBackend(command, args=args, cols=cols, rows=rows, cwd=cwd, env=env)
        logger.info(f"[pty] Using WinptyBackend for: {label}")
        return backend
    try:
        backend = UnixPexpectBackend(command, args=args, cols=cols, rows=rows, cwd=cwd, env=env)
    except Exception as exc:
        # pexpect raises ExceptionPexpect for missing binaries and OSError for fork failures.
        raise SpawnError(f"Failed to spawn {label}: {exc}", command=command) from exc
    logger.info(f"[pty] Using UnixPexpectBackend for: {label}")
    return backend
