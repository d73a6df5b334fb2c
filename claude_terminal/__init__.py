"""claude-terminal - terminal session multiplexer and Claude state engine."""

__version__ = "0.1.0"
__logo__ = "✳"
