"""Runtime configuration for intake, execution, reporting and delivery."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_TIMEOUT_SECONDS = 30 * 60


@dataclass(slots=True)
class MailboxSettings:
    """Inbound IMAP mailbox settings."""

    host: str = "imap.gmail.com"
    port: int = 993
    user: str = ""
    password: str = ""
    folder: str = "INBOX"
    subject_marker: str = "TASK:"
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class SmtpSettings:
    """Outbound SMTP relay settings."""

    host: str = "smtp.gmail.com"
    port: int = 587
    user: str = ""
    password: str = ""
    use_ssl: bool = False
    use_starttls: bool = True
    sender_name: str = "Task Courier"
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class RunnerSettings:
    """External tool execution settings."""

    tool_command: str = "claude-code"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    credential_env: str = "ANTHROPIC_API_KEY"
    credential: str = ""
    git_command: str = "git"


@dataclass(slots=True)
class ReportSettings:
    """Report rendering settings."""

    templates_dir: Path = Path("templates")
    max_output_chars: int = 5_000


@dataclass(slots=True)
class NotifySettings:
    """Notification delivery settings."""

    recipient: str = ""
    max_log_attachments: int = 3


@dataclass(slots=True)
class StateLayout:
    """Every persisted artifact path, derived from one state directory."""

    root: Path = Path(".")

    @property
    def seen_set_path(self) -> Path:
        return self.root / "processed-emails.json"

    @property
    def tasks_path(self) -> Path:
        return self.root / "tasks.json"

    @property
    def current_task_path(self) -> Path:
        return self.root / "current-task.json"

    @property
    def workspace_dir(self) -> Path:
        return self.root / "workspace"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def reports_dir(self) -> Path:
        return self.root / "reports"

    @property
    def audit_dir(self) -> Path:
        return self.root / "audit"

    def execution_log_path(self, task_id: str) -> Path:
        return self.logs_dir / f"{task_id}.log"

    def error_log_path(self, task_id: str) -> Path:
        return self.logs_dir / f"{task_id}_error.log"

    def report_path(self, task_id: str) -> Path:
        return self.reports_dir / f"{task_id}_report.html"

    def report_meta_path(self, task_id: str) -> Path:
        return self.reports_dir / f"{task_id}_report.json"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by pipeline stage."""

    state: StateLayout = field(default_factory=StateLayout)
    mailbox: MailboxSettings = field(default_factory=MailboxSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    report: ReportSettings = field(default_factory=ReportSettings)
    notify: NotifySettings = field(default_factory=NotifySettings)

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local runs."""

        root = state_dir or Path(os.getenv("TASK_COURIER_STATE_DIR", "."))
        credential_env = os.getenv("TASK_COURIER_TOOL_CREDENTIAL_ENV", "ANTHROPIC_API_KEY")
        templates_raw = os.getenv("TASK_COURIER_TEMPLATES_DIR")
        smtp_ssl = _env_bool("TASK_COURIER_SMTP_SSL", default=False)
        return cls(
            state=StateLayout(root=root),
            mailbox=MailboxSettings(
                host=os.getenv("TASK_COURIER_IMAP_HOST", "imap.gmail.com"),
                port=int(os.getenv("TASK_COURIER_IMAP_PORT", "993")),
                user=os.getenv("TASK_COURIER_IMAP_USER", ""),
                password=os.getenv("TASK_COURIER_IMAP_PASSWORD", ""),
                folder=os.getenv("TASK_COURIER_IMAP_FOLDER", "INBOX"),
                subject_marker=os.getenv("TASK_COURIER_SUBJECT_MARKER", "TASK:"),
                timeout_seconds=float(os.getenv("TASK_COURIER_IMAP_TIMEOUT_SECONDS", "30")),
            ),
            smtp=SmtpSettings(
                host=os.getenv("TASK_COURIER_SMTP_HOST", "smtp.gmail.com"),
                port=int(os.getenv("TASK_COURIER_SMTP_PORT", "587")),
                user=os.getenv("TASK_COURIER_SMTP_USER", ""),
                password=os.getenv("TASK_COURIER_SMTP_PASSWORD", ""),
                use_ssl=smtp_ssl,
                use_starttls=_env_bool("TASK_COURIER_SMTP_STARTTLS", default=not smtp_ssl),
                sender_name=os.getenv("TASK_COURIER_SMTP_SENDER_NAME", "Task Courier"),
                timeout_seconds=float(os.getenv("TASK_COURIER_SMTP_TIMEOUT_SECONDS", "30")),
            ),
            runner=RunnerSettings(
                tool_command=os.getenv("TASK_COURIER_TOOL_COMMAND", "claude-code"),
                timeout_seconds=float(
                    os.getenv("TASK_COURIER_TOOL_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)),
                ),
                credential_env=credential_env,
                credential=os.getenv(credential_env, ""),
                git_command=os.getenv("TASK_COURIER_GIT_COMMAND", "git"),
            ),
            report=ReportSettings(
                templates_dir=Path(templates_raw) if templates_raw else root / "templates",
                max_output_chars=int(os.getenv("TASK_COURIER_REPORT_MAX_OUTPUT_CHARS", "5000")),
            ),
            notify=NotifySettings(
                recipient=os.getenv("TASK_COURIER_RECIPIENT_EMAIL", ""),
                max_log_attachments=int(os.getenv("TASK_COURIER_MAX_LOG_ATTACHMENTS", "3")),
            ),
        )

    def validate_for_intake(self) -> None:
        """Raise configuration error if the mailbox cannot be reached with these values."""

        if not self.mailbox.host.strip():
            raise ValueError("TASK_COURIER_IMAP_HOST must be set.")
        if not self.mailbox.user or not self.mailbox.password:
            raise ValueError(
                "Mailbox credentials are required. "
                "Set TASK_COURIER_IMAP_USER and TASK_COURIER_IMAP_PASSWORD.",
            )
        if not self.mailbox.subject_marker.strip():
            raise ValueError("TASK_COURIER_SUBJECT_MARKER must not be empty.")

    def validate_for_run(self) -> None:
        if not self.runner.tool_command.strip():
            raise ValueError("TASK_COURIER_TOOL_COMMAND must not be empty.")
        if self.runner.timeout_seconds <= 0:
            raise ValueError("TASK_COURIER_TOOL_TIMEOUT_SECONDS must be > 0.")

    def validate_for_notify(self) -> None:
        """Raise configuration error if SMTP delivery is not configured."""

        if not self.smtp.user or not self.smtp.password:
            raise ValueError(
                "SMTP credentials are required. "
                "Set TASK_COURIER_SMTP_USER and TASK_COURIER_SMTP_PASSWORD.",
            )
        if self.smtp.use_ssl and self.smtp.use_starttls:
            raise ValueError(
                "TASK_COURIER_SMTP_SSL and TASK_COURIER_SMTP_STARTTLS are mutually exclusive.",
            )
        if self.notify.max_log_attachments < 0:
            raise ValueError("TASK_COURIER_MAX_LOG_ATTACHMENTS must be >= 0.")

    def sensitive_env_names(self) -> tuple[str, ...]:
        """Environment variables that must never reach the external tool."""

        return ("TASK_COURIER_IMAP_PASSWORD", "TASK_COURIER_SMTP_PASSWORD")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
