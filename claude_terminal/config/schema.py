"""Configuration schema for claude-terminal."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOOL_NAMES: tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "Bash",
    "Glob",
    "Grep",
    "Task",
    "WebFetch",
    "WebSearch",
    "TodoRead",
    "TodoWrite",
    "Notebook",
    "MultiEdit",
)


class AppConfig(BaseModel):
    """User-facing application settings."""

    hooks_enabled: bool = False
    terminal_theme: str = "claude"
    notifications_enabled: bool = True
    skip_permissions: bool = False
    editor: str = "code"
    notification_title_prefers_task_label: bool = True
    data_dir: str = "~/.claude-terminal"


class TerminalConfig(BaseModel):
    """PTY launch and input routing settings."""

    cols: int = 120
    rows: int = 30
    scrollback_lines: int = 1000
    drain_window_s: float = 2.0
    claude_command: str = "claude"
    fivem_command: str = "./FXServer.exe +exec server.cfg"
    shell: str = ""
    file_viewer: str = ""
    input_buffer_limit: int = 1000
    paste_debounce_s: float = 0.5
    arrow_debounce_s: float = 0.1
    pending_prompt_delay_s: float = 0.5
    port_scan_buffer: int = 2048


class EngineConfig(BaseModel):
    """Claude state engine timings and glyph sets."""

    base_ready_delay_s: float = 2.5
    post_enter_delay_s: float = 5.0
    tool_delay_s: float = 4.0
    thinking_delay_s: float = 1.5
    fast_track_s: float = 0.5
    recheck_delay_s: float = 1.0
    silence_threshold_s: float = 1.0
    verify_lines: int = 10
    attention_lines: int = 30
    spinner_first: str = "⠁"
    spinner_last: str = "⣿"
    completion_glyphs: str = "✳"
    done_line_glyphs: str = "✳✻✶✽✢"
    working_line_glyphs: str = "·✢✳✶✻✽"
    tool_names: list[str] = Field(default_factory=lambda: list(DEFAULT_TOOL_NAMES))


class TrackingConfig(BaseModel):
    """Time tracker thresholds."""

    idle_timeout_s: float = 300.0
    input_throttle_s: float = 1.0
    output_throttle_s: float = 5.0
    min_slice_s: float = 1.0
    ring_size: int = 100
    global_ring_size: int = 500
    midnight_check_s: float = 30.0
    heartbeat_s: float = 30.0
    sleep_gap_s: float = 120.0


class DispatchConfig(BaseModel):
    """Status dispatcher settings."""

    attention_cooldown_s: float = 5.0
    default_title: str = "Claude Terminal"


class HooksConfig(BaseModel):
    """Hook transport settings."""

    host: str = "127.0.0.1"
    port_file: str = "~/.claude-terminal/hooks/port"
    claude_settings: str = "~/.claude/settings.json"
    require_open_terminal: bool = True
    client_timeout_s: float = 1.0


class Config(BaseSettings):
    """Root configuration for claude-terminal."""

    app: AppConfig = Field(default_factory=AppConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded data directory."""
        return Path(self.app.data_dir).expanduser()

    @property
    def port_file_path(self) -> Path:
        return Path(self.hooks.port_file).expanduser()

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_TERMINAL_",
        env_nested_delimiter="__",
        extra="ignore",
    )


class Settings:
    """Key/value view over ``Config.app`` used by the core."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    def get(self, key: str, default: object = None) -> object:
        return getattr(self.config.app, _field_name(key), default)

    def set(self, key: str, value: object) -> None:
        name = _field_name(key)
        if name not in AppConfig.model_fields:
            raise KeyError(key)
        setattr(self.config.app, name, value)


def _field_name(key: str) -> str:
    """Accept ``hooksEnabled`` as well as ``hooks_enabled``."""
    out: list[str] = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)
