from pathlib import Path
import os
from typing import Iterable, Optional

TASKMASTER_DIR = ".taskmaster"
TASKS_DIRNAME = "tasks"
REPORTS_DIRNAME = "reports"
TASKS_FILENAME = "tasks.json"

PROJECT_ROOT_ENV = "TASKMASTER_PROJECT_ROOT"
# A directory holding one of these owns a task store.
STORE_MARKERS = (TASKMASTER_DIR, ".taskmasterconfig")
# Repository roots; the upward search never crosses one.
BOUNDARY_MARKERS = (".git", ".hg", ".svn")
MAX_SEARCH_DEPTH = 50


def _has_marker(directory: Path, markers: Iterable[str]) -> bool:
    return any((directory / marker).exists() for marker in markers)


def find_project_root(start: Optional[Path | str] = None) -> Path:
    """Walk upward from ``start`` (default: cwd) to the directory owning the store.

    ``start`` itself wins when it carries a store or boundary marker. Above it,
    a ``.taskmaster`` counts when it sits beside a boundary marker or in the
    direct parent; one further up without a boundary is treated as stray (a
    leftover in the home directory, say) and skipped. The first boundary
    without a store ends the search and becomes the root. With no marker at
    all, ``start`` is returned so a fresh project can be initialized in place.
    """
    base = Path(start).expanduser().resolve() if start is not None else Path.cwd().resolve()
    if _has_marker(base, STORE_MARKERS) or _has_marker(base, BOUNDARY_MARKERS):
        return base

    for depth, directory in enumerate(base.parents[: MAX_SEARCH_DEPTH - 1], start=1):
        if _has_marker(directory, BOUNDARY_MARKERS):
            return directory
        if depth == 1 and _has_marker(directory, STORE_MARKERS):
            return directory
    return base


def resolve_project_root(start: Optional[Path | str] = None) -> Path:
    """``$TASKMASTER_PROJECT_ROOT`` when it names a directory, else find_project_root."""
    env_root = os.environ.get(PROJECT_ROOT_ENV)
    if env_root:
        candidate = Path(env_root).expanduser()
        if candidate.is_dir():
            return candidate.resolve()
    return find_project_root(start)


class PathResolver:
    """Maps a project root to the task document location. Pure path joining."""

    def __init__(self, project_root: Path | str):
        self.project_root = Path(project_root)

    @property
    def taskmaster_dir(self) -> Path:
        return self.project_root / TASKMASTER_DIR

    @property
    def tasks_dir(self) -> Path:
        return self.taskmaster_dir / TASKS_DIRNAME

    @property
    def tasks_path(self) -> Path:
        return self.tasks_dir / TASKS_FILENAME

    @property
    def reports_dir(self) -> Path:
        return self.taskmaster_dir / REPORTS_DIRNAME

    def get_tasks_dir(self) -> Path:
        return self.tasks_dir

    def get_tasks_path(self) -> Path:
        return self.tasks_path


__all__ = [
    "PathResolver",
    "find_project_root",
    "resolve_project_root",
    "TASKMASTER_DIR",
    "TASKS_FILENAME",
]
