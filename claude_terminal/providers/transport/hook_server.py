"""Localhost HTTP endpoint that receives hook messages."""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from claude_terminal.providers.transport.messages import HookMessage
from claude_terminal.scheduler import Scheduler

HookListener = Callable[[HookMessage], None]
MAX_BODY_BYTES = 1024 * 1024


class _HookRequestHandler(BaseHTTPRequestHandler):
    server: "_HookHTTPServer"

    def do_POST(self) -> None:
        if self.path != "/hook":
            self._reply(404)
            return
        try:
            length = int(self.headers.get("Content-Length", 0) or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._reply(400)
            return
        body = self.rfile.read(min(length, MAX_BODY_BYTES)) if length else b""
        # Answer first so the hook handler (and Claude) never waits on us.
        self._reply(200, b"ok")
        self.server.owner.dispatch(body)

    def do_GET(self) -> None:
        self._reply(404)

    def _reply(self, code: int, body: bytes = b"") -> None:
        self.send_response(code)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug(f"[hooks] http {format % args}")


class _HookHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], owner: "HookEventServer") -> None:
        super().__init__(address, _HookRequestHandler)
        self.owner = owner


class HookEventServer:
    """Receive ``POST /hook`` on 127.0.0.1 and hand messages to the core thread.

    The bound port is written to ``port_file`` so the hook handler run by
    the Claude CLI can find the running app.
    """

    def __init__(self, scheduler: Scheduler, port_file: Path, host: str = "127.0.0.1") -> None:
        self._scheduler = scheduler
        self.port_file = port_file
        self.host = host
        self._server: Optional[_HookHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._listeners: list[HookListener] = []

    @property
    def port(self) -> Optional[int]:
        return self._server.server_address[1] if self._server else None

    @property
    def running(self) -> bool:
        return self._server is not None

    def subscribe(self, listener: HookListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> int:
        """Bind an ephemeral port, write the port file and serve in a thread."""
        if self._server is not None:
            return self._server.server_address[1]
        self._server = _HookHTTPServer((self.host, 0), self)
        port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, name="hook-server", daemon=True)
        self._thread.start()
        try:
            self.port_file.parent.mkdir(parents=True, exist_ok=True)
            self.port_file.write_text(str(port), encoding="utf-8")
        except OSError as exc:
            logger.warning(f"[hooks] Could not write port file {self.port_file}: {exc}")
        logger.info(f"[hooks] Listening on {self.host}:{port}")
        return port

    def stop(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        try:
            self.port_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.debug(f"[hooks] Could not remove port file: {exc}")

    def dispatch(self, body: bytes | str) -> Optional[HookMessage]:
        """Parse a request body and queue it for listeners. Callable from any thread."""
        try:
            message = HookMessage.from_json(body)
        except ValueError:
            preview = body[:200] if isinstance(body, str) else body[:200].decode("utf-8", "replace")
            logger.warning(f"[hooks] Malformed payload: {preview!r}")
            return None
        logger.debug(f"[hooks] Received {message.hook} (cwd: {message.cwd or '?'})")
        self._scheduler.call_soon_threadsafe(self._deliver, message)
        return message

    def _deliver(self, message: HookMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception(f"[hooks] Listener failed on {message.hook}")
