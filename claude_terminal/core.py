"""The ``Core`` value: owns the registry, bus, providers, tracker and dispatcher.

Every table lives on an instance, so several cores can coexist (tests
build one per case). Public methods never raise for runtime failures;
they log and return a failure value instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from loguru import logger

from claude_terminal.bus.events import EventSource, EventType
from claude_terminal.bus.hub import EventBus, EventHandler
from claude_terminal.config.schema import Config, Settings
from claude_terminal.errors import ClosedSessionError, SpawnError
from claude_terminal.models import ProjectRef, SessionKind, SessionStatus
from claude_terminal.providers.base import SessionObserver
from claude_terminal.providers.hooks import HooksProvider
from claude_terminal.providers.scraping import ScrapingProvider
from claude_terminal.providers.transport.hook_server import HookEventServer
from claude_terminal.scheduler import Scheduler
from claude_terminal.session.project_store import JsonProjectStore, Project
from claude_terminal.status.dispatcher import StatusDispatcher, TabObserver
from claude_terminal.status.notifications import DesktopNotificationSink, NotificationSink
from claude_terminal.terminal import kinds
from claude_terminal.terminal.backend import build_backend
from claude_terminal.terminal.input import Debouncer
from claude_terminal.terminal.kinds import LaunchSpec
from claude_terminal.terminal.registry import SessionRegistry
from claude_terminal.terminal.session import BackendFactory, Session
from claude_terminal.tracking.time_tracker import TimeTracker

ProjectLike = Union[Project, ProjectRef]


@dataclass(frozen=True)
class OpenResult:
    """Outcome of an ``open_*`` call."""

    success: bool
    session_id: Optional[str] = None
    error: Optional[str] = None


class Core:
    """Terminal multiplexer plus Claude state engine, wired together."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        scheduler: Scheduler,
        store: Optional[JsonProjectStore] = None,
        sink: Optional[NotificationSink] = None,
        backend_factory: BackendFactory = build_backend,
        hook_server: Optional[HookEventServer] = None,
        serve_hooks: bool = True,
    ) -> None:
        self.config = config or Config()
        self.settings = Settings(self.config)
        self.scheduler = scheduler
        self.store = store or JsonProjectStore(self.config.data_path / "projects.json")

        self.bus = EventBus(clock=scheduler.now)
        self.tracker = TimeTracker(self.store, scheduler, self.config.tracking)
        self.registry = SessionRegistry(
            config=self.config,
            scheduler=scheduler,
            tracker=self.tracker,
            backend_factory=backend_factory,
        )
        self.hook_server = hook_server or HookEventServer(
            scheduler, self.config.port_file_path, self.config.hooks.host
        )
        self._serve_hooks = serve_hooks
        self.hooks = HooksProvider(
            self.bus,
            self.store,
            self.registry,
            server=self.hook_server,
            require_open_terminal=self.config.hooks.require_open_terminal,
        )
        self.scraping = ScrapingProvider(self.bus, self.registry)
        self.dispatcher = StatusDispatcher(
            self.bus,
            self.registry,
            sink or DesktopNotificationSink(),
            scheduler=scheduler,
            config=self.config,
            settings=self.settings,
            project_name=self._project_name,
        )
        self.provider: Optional[EventSource] = None
        self._navigate_debounce = Debouncer(self.config.terminal.arrow_debounce_s, scheduler.now)
        self._active_project_id: Optional[str] = None
        self._consumers: list[Callable[[], None]] = []

    # ---- Startup / shutdown -------------------------------------------- #

    def start(self) -> None:
        self.tracker.start_background()
        self.init_claude_events()

    def init_claude_events(self) -> EventSource:
        """Wire consumers once and activate the provider chosen by settings."""
        if not self._consumers:
            self.dispatcher.start()
            self._consumers = self.tracker.attach(self.bus)
        mode = EventSource.HOOKS if self.settings.get("hooks_enabled") else EventSource.SCRAPING
        self.switch_provider(mode)
        logger.info(f"[core] Claude events initialised with provider: {mode.value}")
        return mode

    def switch_provider(self, mode: Union[EventSource, str]) -> bool:
        """Swap the active producer; subscribers stay wired."""
        try:
            target = EventSource(mode)
        except ValueError:
            logger.error(f"[core] Unknown provider: {mode}")
            return False
        if target is self.provider:
            return True
        self._deactivate_provider()
        if target is EventSource.HOOKS and self._serve_hooks:
            try:
                self.hook_server.start()
            except OSError as exc:
                logger.error(f"[core] Hook server failed to start, staying on scraping: {exc}")
                target = EventSource.SCRAPING
        (self.hooks if target is EventSource.HOOKS else self.scraping).start()
        self.provider = target
        self.dispatcher.set_mode(target)
        return target is EventSource(mode)

    def _deactivate_provider(self) -> None:
        if self.provider is EventSource.HOOKS:
            self.hooks.stop()
            if self._serve_hooks:
                self.hook_server.stop()
        elif self.provider is EventSource.SCRAPING:
            self.scraping.stop()
        self.provider = None

    def shutdown(self) -> None:
        """Close every session and persist running time slices."""
        logger.info("[core] Shutting down")
        self.registry.close_all()
        self._deactivate_provider()
        self.tracker.save_all_active_sessions()
        self.dispatcher.stop()
        for unsubscribe in self._consumers:
            unsubscribe()
        self._consumers.clear()

    # ---- Session control ------------------------------------------------ #

    def open_session(
        self,
        kind: SessionKind,
        launch: LaunchSpec,
        project: Optional[ProjectLike] = None,
        **options: Any,
    ) -> OpenResult:
        try:
            session = self.registry.create(kind, launch, project=_ref(project), **options)
        except SpawnError as exc:
            return self._spawn_failed(kind, exc)
        return OpenResult(True, session.id)

    def open_claude(
        self,
        project: ProjectLike,
        *,
        skip_permissions: Optional[bool] = None,
        run_claude: bool = True,
        resume_session_id: Optional[str] = None,
        pending_prompt: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> OpenResult:
        if skip_permissions is None:
            skip_permissions = bool(self.settings.get("skip_permissions", False))
        kind = SessionKind.CLAUDE if run_claude else SessionKind.SHELL
        try:
            if run_claude:
                launch = kinds.claude_launch(
                    self.config,
                    project.path,
                    resume_session_id=resume_session_id,
                    skip_permissions=skip_permissions,
                )
            else:
                launch = kinds.shell_launch(self.config, project.path)
        except SpawnError as exc:
            return self._spawn_failed(kind, exc)
        return self.open_session(
            kind,
            launch,
            project,
            display_name=display_name,
            pending_prompt=pending_prompt if run_claude else None,
        )

    def open_fivem_console(self, project: ProjectLike) -> OpenResult:
        run_command = project.run_command if isinstance(project, Project) else None
        try:
            launch = kinds.fivem_launch(self.config, project.path, run_command)
        except SpawnError as exc:
            return self._spawn_failed(SessionKind.FIVEM, exc)
        return self.open_session(SessionKind.FIVEM, launch, project, display_name="FiveM")

    def open_webapp(self, project: ProjectLike) -> OpenResult:
        existing = self.registry.find_single(project.id, SessionKind.WEBAPP)
        if existing is not None:
            return OpenResult(True, existing.id)
        dev_command = project.dev_command if isinstance(project, Project) else None
        try:
            launch = kinds.webapp_launch(self.config, project.path, dev_command)
        except SpawnError as exc:
            return self._spawn_failed(SessionKind.WEBAPP, exc)
        return self.open_session(SessionKind.WEBAPP, launch, project, display_name="WebApp")

    def open_file(self, path: str, project: Optional[ProjectLike] = None) -> OpenResult:
        try:
            launch = kinds.file_view_launch(self.config, path)
        except SpawnError as exc:
            return self._spawn_failed(SessionKind.FILE_VIEW, exc)
        name = launch.args[-1].replace("\\", "/").rsplit("/", 1)[-1]
        return self.open_session(SessionKind.FILE_VIEW, launch, project, display_name=name, file_path=path)

    def write(self, session_id: str, data: str) -> bool:
        try:
            self.registry.write(session_id, data)
        except (KeyError, ClosedSessionError) as exc:
            logger.debug(f"[core] Write to {session_id} dropped: {exc}")
            return False
        return True

    def paste(self, session_id: str, text: str) -> bool:
        try:
            return self.registry.paste(session_id, text)
        except (KeyError, ClosedSessionError) as exc:
            logger.debug(f"[core] Paste into {session_id} dropped: {exc}")
            return False

    def resize(self, session_id: str, cols: int, rows: int) -> bool:
        try:
            self.registry.resize(session_id, cols, rows)
        except (KeyError, ClosedSessionError) as exc:
            logger.debug(f"[core] Resize of {session_id} ignored: {exc}")
            return False
        return True

    def kill(self, session_id: str) -> bool:
        return self.registry.kill(session_id)

    def close(self, session_id: str) -> bool:
        return self.registry.close(session_id)

    def close_all(self) -> None:
        self.registry.close_all()

    def rename(self, session_id: str, name: str) -> bool:
        try:
            self.registry.rename(session_id, name)
        except KeyError:
            return False
        return True

    # ---- Subscription --------------------------------------------------- #

    def on_event(self, event_type: Union[EventType, str], handler: EventHandler) -> Callable[[], None]:
        return self.bus.subscribe(event_type, handler)

    def add_observer(self, observer: SessionObserver) -> Callable[[], None]:
        return self.registry.add_observer(observer)

    def on_tab_status(self, observer: TabObserver) -> Callable[[], None]:
        return self.dispatcher.add_tab_observer(observer)

    # ---- State queries -------------------------------------------------- #

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.registry.lookup(session_id)

    def get_session_status(self, session_id: str) -> Optional[dict[str, str]]:
        session = self.registry.lookup(session_id)
        if session is None:
            return None
        tab = self.dispatcher.tab_status(session_id)
        status, substatus = tab if tab is not None else (session.status, session.substatus)
        return {"status": status.value, "substatus": substatus.value}

    def get_terminal_stats(self, project_id: str) -> dict[str, int]:
        sessions = self.registry.list_by_project(project_id)
        working = 0
        for session in sessions:
            status = self.get_session_status(session.id)
            if status is not None and status["status"] == SessionStatus.WORKING.value:
                working += 1
        return {"total": len(sessions), "working": working}

    def get_dashboard_stats(self) -> dict[str, Any]:
        return self.dispatcher.stats.to_dict()

    def get_project_times(self, project_id: str) -> dict[str, int]:
        return self.tracker.get_project_times(project_id)

    def get_global_times(self) -> dict[str, int]:
        return self.tracker.get_global_times()

    # ---- Focus and navigation ------------------------------------------ #

    def set_window_focused(self, focused: bool) -> None:
        self.dispatcher.set_window_focused(focused)

    def set_active_session(self, session_id: Optional[str]) -> None:
        session = self.registry.lookup(session_id) if session_id else None
        self.dispatcher.set_active_session(session.id if session else None)
        project_id = session.project_id if session else None
        if project_id and project_id != self._active_project_id:
            self.tracker.switch_project(self._active_project_id, project_id)
        if session is not None:
            self._active_project_id = project_id

    @property
    def active_session_id(self) -> Optional[str]:
        return self.dispatcher.active_session_id

    def navigate(self, direction: str) -> Optional[str]:
        """Arrow navigation: left/right cycle sessions, up/down cycle projects.

        Returns the newly active session id, or ``None`` when the call was
        debounced, the direction is unknown or there is nothing to move to.
        """
        if direction not in ("left", "right", "up", "down"):
            logger.warning(f"[core] Unknown navigation direction: {direction}")
            return None
        if not self._navigate_debounce.allow():
            return None
        step = -1 if direction in ("left", "up") else 1
        if direction in ("left", "right"):
            candidates = (
                self.registry.list_by_project(self._active_project_id)
                if self._active_project_id
                else self.registry.all()
            )
            target = _cycle([s.id for s in candidates], self.active_session_id, step)
        else:
            projects: list[str] = []
            for session in self.registry.all():
                if session.project_id and session.project_id not in projects:
                    projects.append(session.project_id)
            project_id = _cycle(projects, self._active_project_id, step)
            sessions = self.registry.list_by_project(project_id) if project_id else []
            target = sessions[0].id if sessions else None
        if target is not None:
            self.set_active_session(target)
        return target

    # ---- Helpers -------------------------------------------------------- #

    def _spawn_failed(self, kind: SessionKind, exc: SpawnError) -> OpenResult:
        logger.error(f"[core] Could not open {kind.value} session: {exc}")
        self.dispatcher.show_error(f"Could not start {kind.value}", str(exc))
        return OpenResult(False, error=str(exc))

    def _project_name(self, project_id: str) -> Optional[str]:
        project = self.store.find_by_id(project_id)
        return project.name if project else None


def _ref(project: Optional[ProjectLike]) -> Optional[ProjectRef]:
    if project is None or isinstance(project, ProjectRef):
        return project
    return project.ref


def _cycle(items: list[str], current: Optional[str], step: int) -> Optional[str]:
    if not items:
        return None
    if current not in items:
        return items[0]
    return items[(items.index(current) + step) % len(items)]
