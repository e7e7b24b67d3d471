from pathlib import Path

import pytest

from infrastructure.path_resolver import PathResolver, find_project_root, resolve_project_root


def test_paths_are_composed_under_taskmaster_dir(tmp_path: Path):
    resolver = PathResolver(tmp_path)

    assert resolver.tasks_dir == tmp_path / ".taskmaster" / "tasks"
    assert resolver.get_tasks_path() == tmp_path / ".taskmaster" / "tasks" / "tasks.json"
    assert resolver.get_tasks_dir() == resolver.tasks_dir
    assert resolver.reports_dir == tmp_path / ".taskmaster" / "reports"
    # Pure path joining: nothing is created.
    assert not resolver.taskmaster_dir.exists()


def test_project_root_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TASKMASTER_PROJECT_ROOT", str(tmp_path))
    assert resolve_project_root() == tmp_path.resolve()


def test_missing_environment_root_is_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TASKMASTER_PROJECT_ROOT", str(tmp_path / "does-not-exist"))
    monkeypatch.chdir(tmp_path)

    root = resolve_project_root()

    assert root != tmp_path / "does-not-exist"
    assert root.exists()


def test_store_directory_found_from_nested_working_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("TASKMASTER_PROJECT_ROOT", raising=False)
    (tmp_path / ".taskmaster").mkdir()
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "src" / "pkg" / "deep"
    nested.mkdir(parents=True)

    assert resolve_project_root(nested) == tmp_path.resolve()
    monkeypatch.chdir(nested)
    assert resolve_project_root() == tmp_path.resolve()


def test_store_in_direct_parent_needs_no_boundary(tmp_path: Path):
    (tmp_path / ".taskmasterconfig").write_text("{}", encoding="utf-8")
    child = tmp_path / "docs"
    child.mkdir()

    assert find_project_root(child) == tmp_path.resolve()


def test_boundary_without_store_stops_the_search(tmp_path: Path):
    # the .taskmaster above the repository belongs to someone else
    (tmp_path / ".taskmaster").mkdir()
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    start = repo / "src" / "module"
    start.mkdir(parents=True)

    assert find_project_root(start) == repo.resolve()


def test_start_with_marker_is_its_own_root(tmp_path: Path):
    (tmp_path / "outer" / ".git").mkdir(parents=True)
    inner = tmp_path / "outer" / "inner"
    (inner / ".taskmaster").mkdir(parents=True)

    assert find_project_root(inner) == inner.resolve()
