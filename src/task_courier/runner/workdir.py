"""Per-task working directory preparation."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_REMOTE_PREFIXES = ("https://", "http://", "ssh://", "git://")
_SCP_LIKE_LOCATOR = re.compile(r"^[\w.-]+@[\w.-]+:.+")

_PLACEHOLDER_README = (
    "# Task Courier Project\n\nThis project was created for automated task execution.\n"
)
_PLACEHOLDER_MANIFEST = (
    "[project]\n"
    'name = "task-courier-project"\n'
    'version = "1.0.0"\n'
    'description = "Project for task-courier automation"\n'
)
_PLACEHOLDER_MAIN = 'print("Hello from task-courier automation!")\n'


class WorkdirError(RuntimeError):
    """The working directory could not be allocated or populated."""


@dataclass(slots=True)
class MaterializedWorkdir:
    """Prepared working directory for one task."""

    path: Path
    cloned: bool


def is_remote_locator(project_path: str) -> bool:
    """Return True for URLs and ``user@host:path`` git locators."""

    candidate = project_path.strip()
    return candidate.startswith(_REMOTE_PREFIXES) or bool(_SCP_LIKE_LOCATOR.match(candidate))


class TaskWorkdirManager:
    """Creates deterministic per-task directories under one root."""

    def __init__(self, root_dir: Path, *, git_command: str = "git") -> None:
        self.root_dir = root_dir
        self.git_command = git_command

    def allocate(self, task_id: str) -> Path:
        path = self.root_dir / task_id
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise WorkdirError(f"Cannot create working directory {path}: {error}") from error
        return path

    def materialize(self, *, task_id: str, project_path: str) -> MaterializedWorkdir:
        """Clone remote projects, otherwise lay out a placeholder project."""

        path = self.allocate(task_id)
        if is_remote_locator(project_path):
            if (path / ".git").is_dir():
                logger.info("Repository already cloned in %s, reusing", path)
            else:
                self._clone(project_path, path)
            return MaterializedWorkdir(path=path, cloned=True)

        self._write_placeholder(path)
        return MaterializedWorkdir(path=path, cloned=False)

    def _clone(self, locator: str, path: Path) -> None:
        logger.info("Cloning repository %s into %s", locator, path)
        try:
            completed = subprocess.run(  # noqa: S603
                [self.git_command, "clone", "--", locator, str(path)],
                check=False,
                capture_output=True,
                text=True,
            )
        except OSError as error:
            raise WorkdirError(f"git clone failed to start: {error}") from error
        if completed.returncode != 0:
            raise WorkdirError(
                f"git clone of {locator} failed with code {completed.returncode}: "
                f"{completed.stderr.strip()}",
            )

    def _write_placeholder(self, path: Path) -> None:
        logger.info("Creating basic project structure in %s", path)
        files = {
            "README.md": _PLACEHOLDER_README,
            "pyproject.toml": _PLACEHOLDER_MANIFEST,
            "main.py": _PLACEHOLDER_MAIN,
        }
        try:
            for name, content in files.items():
                target = path / name
                if not target.exists():
                    target.write_text(content, "utf-8")
        except OSError as error:
            raise WorkdirError(f"Cannot write placeholder project in {path}: {error}") from error
