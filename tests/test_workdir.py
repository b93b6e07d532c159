"""Tests for per-task working directory preparation."""

from __future__ import annotations

import subprocess
from pathlib import Path

import allure
import pytest

from task_courier.runner.workdir import TaskWorkdirManager, WorkdirError, is_remote_locator

pytestmark = [
    allure.epic("Tool Execution"),
    allure.feature("Task Workdir"),
]


@pytest.fixture
def workdir_manager(tmp_path: Path) -> TaskWorkdirManager:
    return TaskWorkdirManager(tmp_path / "workspace")


class TestPlaceholderProject:
    def test_local_path_gets_placeholder_files(self, workdir_manager):
        result = workdir_manager.materialize(task_id="t1", project_path=".")

        assert result.cloned is False
        assert result.path == workdir_manager.root_dir / "t1"
        assert {p.name for p in result.path.iterdir()} == {"README.md", "pyproject.toml", "main.py"}

    def test_existing_files_are_not_overwritten(self, workdir_manager):
        path = workdir_manager.allocate("t2")
        (path / "main.py").write_text("print('mine')\n", "utf-8")

        workdir_manager.materialize(task_id="t2", project_path="/some/local/dir")

        assert (path / "main.py").read_text("utf-8") == "print('mine')\n"
        assert (path / "README.md").exists()

    def test_allocate_is_idempotent(self, workdir_manager):
        first = workdir_manager.allocate("t3")
        second = workdir_manager.allocate("t3")

        assert first == second
        assert first.is_dir()

    def test_allocate_failure_raises_workdir_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", "utf-8")
        manager = TaskWorkdirManager(blocker)

        with pytest.raises(WorkdirError):
            manager.allocate("t4")


class TestRemoteProject:
    @pytest.mark.parametrize(
        "locator",
        [
            "https://github.com/acme/api.git",
            "http://git.local/repo",
            "ssh://git@host/repo.git",
            "git://host/repo.git",
            "git@github.com:acme/api.git",
        ],
    )
    def test_remote_locators(self, locator):
        assert is_remote_locator(locator)

    @pytest.mark.parametrize("locator", [".", "/srv/app", "relative/dir", "C:\\work"])
    def test_local_paths(self, locator):
        assert not is_remote_locator(locator)

    def test_clone_invokes_git(self, workdir_manager, monkeypatch):
        calls: list[list[str]] = []

        def _fake_run(args, **kwargs):
            calls.append(args)
            Path(args[-1], ".git").mkdir(parents=True, exist_ok=True)
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", _fake_run)

        first = workdir_manager.materialize(task_id="t5", project_path="https://x.test/r.git")
        second = workdir_manager.materialize(task_id="t5", project_path="https://x.test/r.git")

        assert first.cloned and second.cloned
        assert calls == [["git", "clone", "--", "https://x.test/r.git", str(first.path)]]

    def test_failed_clone_raises(self, workdir_manager, monkeypatch):
        def _fake_run(args, **kwargs):
            return subprocess.CompletedProcess(args, 128, stdout="", stderr="repository not found")

        monkeypatch.setattr(subprocess, "run", _fake_run)

        with pytest.raises(WorkdirError, match="repository not found"):
            workdir_manager.materialize(task_id="t6", project_path="https://x.test/missing.git")
