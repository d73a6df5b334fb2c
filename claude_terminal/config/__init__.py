"""Configuration module for claude-terminal."""

from claude_terminal.config.loader import get_config_path, load_config, save_config
from claude_terminal.config.schema import Config, Settings

__all__ = ["Config", "Settings", "load_config", "get_config_path", "save_config"]
