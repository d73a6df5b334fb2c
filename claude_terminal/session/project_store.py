"""Persistent project store backed by a single JSON document."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from claude_terminal.errors import PersistenceError
from claude_terminal.models import ProjectRef
from claude_terminal.utils.helpers import get_data_path, now_iso, short_id

_STORE_FILE = "projects.json"


def normalize_path(path: str) -> str:
    """Forward slashes, no trailing slash; case-folded on Windows."""
    normalized = path.replace("\\", "/").rstrip("/")
    return normalized.lower() if os.name == "nt" else normalized


@dataclass
class Project:
    """Project metadata stored in projects.json."""

    id: str
    path: str
    name: str = ""
    type: str = "general"
    run_command: str = ""
    dev_command: str = ""
    created_at: str = ""
    time_tracking: dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> ProjectRef:
        return ProjectRef(id=self.id, path=self.path, name=self.name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if not isinstance(values.get("time_tracking"), dict):
            values["time_tracking"] = {}
        return cls(**values)


class JsonProjectStore:
    """Projects plus the global time record in ``projects.json``.

    Document layout::

        {"projects": [{"id": ..., "path": ..., "time_tracking": {...}}, ...],
         "global_time_tracking": {...}}

    Writes are serialised by a lock and replace the file atomically.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or get_data_path() / _STORE_FILE
        self._lock = threading.RLock()
        self._projects: list[Project] = []
        self._global: dict[str, Any] = {}
        self._load()

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def list(self) -> list[Project]:
        with self._lock:
            return [replace(p, time_tracking=dict(p.time_tracking)) for p in self._projects]

    def find_by_id(self, project_id: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects:
                if project.id == project_id:
                    return replace(project, time_tracking=dict(project.time_tracking))
        return None

    def find_by_path(self, path: str) -> Optional[Project]:
        """Project whose path is the longest prefix of ``path``."""
        target = normalize_path(path)
        best: Optional[Project] = None
        best_len = -1
        with self._lock:
            for project in self._projects:
                root = normalize_path(project.path)
                if not root:
                    continue
                if (target == root or target.startswith(root + "/")) and len(root) > best_len:
                    best, best_len = project, len(root)
            if best is None:
                return None
            return replace(best, time_tracking=dict(best.time_tracking))

    def global_time_tracking(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._global)

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def add(self, path: str, name: str = "", type: str = "general", **extra: Any) -> Project:
        """Register a project; an already registered path is returned as is."""
        with self._lock:
            for project in self._projects:
                if normalize_path(project.path) == normalize_path(path):
                    return replace(project)
            project = Project(
                id=short_id(),
                path=path,
                name=name or os.path.basename(path.rstrip("/\\")) or path,
                type=type,
                created_at=now_iso(),
                **extra,
            )
            self._projects.append(project)
            self._save()
        logger.info(f"[projects] Added {project.name} ({project.id}) at {path}")
        return replace(project)

    def update(self, project_id: str, patch: dict[str, Any]) -> Optional[Project]:
        """Apply ``patch`` to a project and persist.

        Raises:
            PersistenceError: the document could not be written.
        """
        known = {f.name for f in fields(Project)} - {"id"}
        unknown = set(patch) - known
        if unknown:
            raise KeyError(", ".join(sorted(unknown)))
        with self._lock:
            for index, project in enumerate(self._projects):
                if project.id != project_id:
                    continue
                updated = replace(project, **patch)
                self._projects[index] = updated
                try:
                    self._save()
                except PersistenceError:
                    self._projects[index] = project
                    raise
                return replace(updated, time_tracking=dict(updated.time_tracking))
        return None

    def update_global_time_tracking(self, record: dict[str, Any]) -> None:
        with self._lock:
            previous, self._global = self._global, dict(record)
            try:
                self._save()
            except PersistenceError:
                self._global = previous
                raise

    def remove(self, project_id: str) -> bool:
        with self._lock:
            before = len(self._projects)
            self._projects = [p for p in self._projects if p.id != project_id]
            if len(self._projects) == before:
                return False
            self._save()
            return True

    # ------------------------------------------------------------------ #
    # Private helpers                                                      #
    # ------------------------------------------------------------------ #

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"[projects] Could not read {self.path}: {exc}; starting empty")
            return
        if not isinstance(data, dict):
            logger.warning(f"[projects] Unexpected document in {self.path}; starting empty")
            return
        for raw in data.get("projects") or []:
            if isinstance(raw, dict) and raw.get("id") and raw.get("path"):
                try:
                    self._projects.append(Project.from_dict(raw))
                except TypeError as exc:
                    logger.warning(f"[projects] Skipping malformed project entry: {exc}")
        glob = data.get("global_time_tracking")
        self._global = glob if isinstance(glob, dict) else {}

    def _save(self) -> None:
        document = {
            "projects": [asdict(project) for project in self._projects],
            "global_time_tracking": self._global,
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise PersistenceError(f"could not write {self.path}: {exc}") from exc
