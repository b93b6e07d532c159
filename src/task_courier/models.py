"""Domain models shared by the intake, runner, report and notify stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

TIMEOUT_EXIT_CODE = 124


class TaskType(str, Enum):
    """Tool invocation mode requested by the task author."""

    CODE = "code"
    DEBUG = "debug"
    TEST = "test"
    DEPLOY = "deploy"

    @classmethod
    def parse(cls, value: str | None) -> TaskType | None:
        """Return the member matching ``value`` (case-insensitive) or ``None``."""

        if value is None:
            return None
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return None


def new_task_id() -> str:
    """Generate an opaque task id unique per execution attempt."""

    millis = int(datetime.now(tz=UTC).timestamp() * 1000)
    return f"task-{millis}-{uuid4().hex[:8]}"


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True, slots=True)
class TaskRecord:
    """Canonical, immutable description of one unit of work."""

    id: str
    description: str
    project_path: str = "."
    task_type: TaskType = TaskType.CODE
    user_email: str = ""
    requirements: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "description": self.description,
            "project_path": self.project_path,
            "task_type": self.task_type.value,
            "user_email": self.user_email,
            "requirements": list(self.requirements),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Finalized outcome of one external tool run."""

    task_id: str
    command: str
    work_dir: str
    start_time: str
    end_time: str
    duration_ms: int
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "task_id": self.task_id,
            "command": self.command,
            "work_dir": self.work_dir,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timed_out": self.timed_out,
            "error": self.error,
            "success": self.success,
        }


@dataclass(frozen=True, slots=True)
class ReportPayload:
    """Data rendered into the notification body."""

    success: bool
    task_id: str
    description: str
    user_email: str
    formatted_time: str
    duration: str
    output: str
    error: str
    requirements: tuple[str, ...]
    project_path: str
    task_type: str
    subject: str

    def template_context(self) -> dict[str, object]:
        return {
            "success": self.success,
            "task_id": self.task_id,
            "description": self.description,
            "user_email": self.user_email,
            "formatted_time": self.formatted_time,
            "duration": self.duration,
            "output": self.output,
            "error": self.error,
            "requirements": list(self.requirements),
            "project_path": self.project_path,
            "task_type": self.task_type,
            "subject": self.subject,
        }


@dataclass(frozen=True, slots=True)
class RenderedReport:
    """Persisted report artifact and its metadata."""

    payload: ReportPayload
    html: str
    report_path: str
    meta_path: str

    @property
    def subject(self) -> str:
        return self.payload.subject


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    """Confirmation returned by the notifier after a successful send."""

    message_id: str
    recipient: str
    subject: str
    attachments: tuple[str, ...]
    sent_at: str
