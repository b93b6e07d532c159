"""File-based contracts for the state handed between pipeline stages."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from task_courier.models import ExecutionResult, TaskRecord, TaskType, new_task_id, utc_now_iso


def write_json(path: Path, payload: Any) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a sibling temp file, then replace ``path`` in one step.

    Readers either see the previous file or the complete new one.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def append_ndjson(path: Path, record: dict[str, Any]) -> None:
    """Append one JSON record as a single line."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False) + "\n")


def task_from_dict(raw: dict[str, Any]) -> TaskRecord:
    """Build a task record from a JSON object, filling intake defaults."""

    task_id = raw.get("id") or new_task_id()
    description = raw.get("description", "")
    project_path = raw.get("project_path", raw.get("projectPath")) or "."
    task_type_raw = raw.get("task_type", raw.get("taskType"))
    user_email = raw.get("user_email", raw.get("userEmail")) or ""
    requirements = raw.get("requirements") or []
    timestamp = raw.get("timestamp") or utc_now_iso()

    if not isinstance(task_id, str) or not task_id.strip():
        raise ValueError("task.id must be a non-empty string")
    if not isinstance(description, str):
        raise TypeError("task.description must be a string")
    if not isinstance(project_path, str):
        raise TypeError("task.project_path must be a string")
    if task_type_raw is not None and not isinstance(task_type_raw, str):
        raise TypeError("task.task_type must be a string")
    if not isinstance(user_email, str):
        raise TypeError("task.user_email must be a string")
    if not isinstance(requirements, list) or not all(
        isinstance(item, str) for item in requirements
    ):
        raise TypeError("task.requirements must be an array of strings")
    if not isinstance(timestamp, str):
        raise TypeError("task.timestamp must be a string")

    return TaskRecord(
        id=task_id,
        description=description,
        project_path=project_path,
        task_type=TaskType.parse(task_type_raw) or TaskType.CODE,
        user_email=user_email,
        requirements=tuple(requirements),
        timestamp=timestamp,
    )


def write_task(path: Path, task: TaskRecord) -> None:
    write_json(path, task.to_dict())


def read_task(path: Path) -> TaskRecord:
    return task_from_dict(load_json(path))


def write_task_batch(path: Path, tasks: list[TaskRecord]) -> None:
    """Serialize an intake batch as a JSON array."""

    write_json_atomic(path, [task.to_dict() for task in tasks])


def read_task_batch(path: Path) -> list[TaskRecord]:
    raw = json.loads(path.read_text("utf-8"))
    if not isinstance(raw, list):
        raise TypeError(f"Expected JSON array in {path}")
    tasks: list[TaskRecord] = []
    for item in raw:
        if not isinstance(item, dict):
            raise TypeError("task batch entry must be an object")
        tasks.append(task_from_dict(item))
    return tasks


def write_execution_result(path: Path, result: ExecutionResult) -> None:
    write_json(path, result.to_dict())


def read_execution_result(path: Path) -> ExecutionResult:
    """Load and validate a persisted execution log."""

    raw = load_json(path)
    required = {
        "task_id",
        "command",
        "work_dir",
        "start_time",
        "end_time",
        "duration_ms",
        "exit_code",
        "stdout",
        "stderr",
    }
    missing = [key for key in sorted(required) if key not in raw]
    if missing:
        raise ValueError(f"Execution log missing required fields: {', '.join(missing)}")

    exit_code = raw["exit_code"]
    if exit_code is not None and not isinstance(exit_code, int):
        raise ValueError("execution_log.exit_code must be an integer or null")
    error = raw.get("error")
    try:
        return ExecutionResult(
            task_id=str(raw["task_id"]),
            command=str(raw["command"]),
            work_dir=str(raw["work_dir"]),
            start_time=str(raw["start_time"]),
            end_time=str(raw["end_time"]),
            duration_ms=int(raw["duration_ms"]),
            exit_code=exit_code,
            stdout=str(raw["stdout"]),
            stderr=str(raw["stderr"]),
            timed_out=bool(raw.get("timed_out", False)),
            error=str(error) if error is not None else None,
        )
    except (TypeError, ValueError) as error:
        raise ValueError(f"Invalid execution log at {path}") from error
