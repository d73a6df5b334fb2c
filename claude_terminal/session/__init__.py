"""Persistent project metadata."""

from claude_terminal.session.project_store import JsonProjectStore, Project

__all__ = ["JsonProjectStore", "Project"]
