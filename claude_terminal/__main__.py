"""``python -m claude_terminal`` entry point (used by the installed hooks)."""

from claude_terminal.cli.commands import app

if __name__ == "__main__":
    app(prog_name="claude-terminal")
