"""Execution orchestrator: task record in, persisted execution result out."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from task_courier.config import DEFAULT_TIMEOUT_SECONDS, StateLayout
from task_courier.contracts import read_execution_result, write_execution_result
from task_courier.models import ExecutionResult, TaskRecord
from task_courier.runner.backend import (
    ToolLaunchError,
    ToolRunner,
    ToolRunRequest,
    build_tool_command,
    build_tool_env,
)
from task_courier.runner.workdir import TaskWorkdirManager

logger = logging.getLogger(__name__)


class ExecutionOrchestrator:
    """Prepares the workdir, runs the tool and persists its logs.

    Non-zero exits and timeouts come back as unsuccessful results. Workdir and
    launch failures raise ``WorkdirError`` / ``ToolLaunchError``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        layout: StateLayout,
        tool_command: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        credential_env: str = "ANTHROPIC_API_KEY",
        credential: str = "",
        sensitive_env_names: tuple[str, ...] = (),
        git_command: str = "git",
        base_env: Mapping[str, str] | None = None,
        runner: ToolRunner | None = None,
    ) -> None:
        self.layout = layout
        self.tool_command = tool_command
        self.timeout_seconds = timeout_seconds
        self.credential_env = credential_env
        self.credential = credential
        self.sensitive_env_names = sensitive_env_names
        self.base_env = base_env
        self.workdirs = TaskWorkdirManager(layout.workspace_dir, git_command=git_command)
        self.runner = runner or ToolRunner()

    def execute(self, task: TaskRecord) -> ExecutionResult:
        logger.info("Starting tool execution for task %s", task.id)
        logger.info(
            "Description: %s | project: %s | type: %s",
            task.description,
            task.project_path,
            task.task_type.value,
        )
        workdir = self.workdirs.materialize(task_id=task.id, project_path=task.project_path)
        argv = build_tool_command(
            tool_command=self.tool_command,
            task_type=task.task_type,
            work_dir=workdir.path.resolve(),
            description=task.description,
        )
        env = build_tool_env(
            base_env=self.base_env if self.base_env is not None else os.environ,
            credential_env=self.credential_env,
            credential=self.credential,
            sensitive_names=self.sensitive_env_names,
        )
        request = ToolRunRequest(
            task_id=task.id,
            argv=argv,
            work_dir=workdir.path,
            env=env,
            timeout_seconds=self.timeout_seconds,
        )

        try:
            result = self.runner.run(request)
        except ToolLaunchError as error:
            self._write_error_artifact(task.id, str(error))
            raise

        self.persist(result)
        return result

    def persist(self, result: ExecutionResult) -> Path:
        """Write the full execution log, plus stderr when the run failed."""

        log_path = self.layout.execution_log_path(result.task_id)
        write_execution_result(log_path, result)
        if not result.success:
            self._write_error_artifact(result.task_id, result.stderr or result.error or "")
        logger.info("Execution log written to %s", log_path)
        return log_path

    def load_result(self, task_id: str) -> ExecutionResult:
        return read_execution_result(self.layout.execution_log_path(task_id))

    def _write_error_artifact(self, task_id: str, text: str) -> None:
        path = self.layout.error_log_path(task_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, "utf-8")
