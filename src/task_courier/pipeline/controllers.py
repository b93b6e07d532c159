"""Controllers for pipeline CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from task_courier.config import Settings
from task_courier.intake import Mailbox, MailboxError, TaskParseError
from task_courier.notify import DeliveryError, NotificationConfigError, OutboundTransport
from task_courier.pipeline import stages
from task_courier.report import ReportBuildError
from task_courier.runner import ToolLaunchError, WorkdirError

logger = logging.getLogger(__name__)

STAGE_ERRORS: tuple[type[Exception], ...] = (
    ValueError,
    TypeError,
    OSError,
    MailboxError,
    TaskParseError,
    WorkdirError,
    ToolLaunchError,
    ReportBuildError,
    NotificationConfigError,
    DeliveryError,
)


@dataclass(slots=True)
class IntakePollCommand:
    """CLI input for one mailbox polling cycle."""

    state_dir: Path | None


@dataclass(slots=True)
class TaskPrepareCommand:
    """CLI input for building the current task record."""

    state_dir: Path | None
    task_data: str | None
    task_id: str | None
    description: str | None
    project_path: str | None
    task_type: str | None
    user_email: str | None


@dataclass(slots=True)
class TaskShowCommand:
    state_dir: Path | None
    task_file: Path | None


@dataclass(slots=True)
class RunCommand:
    """CLI input for executing the tool against the current task."""

    state_dir: Path | None
    task_file: Path | None
    tool_command: str | None
    timeout_seconds: float | None


@dataclass(slots=True)
class ReportCommand:
    """CLI input for rendering the current task report."""

    state_dir: Path | None
    task_file: Path | None
    error: str | None


@dataclass(slots=True)
class NotifySendCommand:
    """CLI input for sending a rendered report."""

    state_dir: Path | None
    task_id: str | None
    recipient: str | None


@dataclass(slots=True)
class NotifyTestCommand:
    state_dir: Path | None
    recipient: str | None


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI input for a full poll-run-report-notify pass."""

    state_dir: Path | None
    recipient: str | None
    notify: bool
    use_prefect: bool


class PipelineCliController:
    """Runs one pipeline stage per call and returns lines to print.

    Transports can be injected for tests; by default they are built from
    settings.
    """

    def __init__(
        self,
        *,
        mailbox: Mailbox | None = None,
        transport: OutboundTransport | None = None,
    ) -> None:
        self.mailbox = mailbox
        self.transport = transport

    def poll(self, command: IntakePollCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        summary = stages.poll_inbox(settings, mailbox=self.mailbox)
        lines = [
            "Intake summary: "
            f"matched={summary.matched} new={len(summary.tasks)} "
            f"duplicates={summary.duplicates} parse_failures={summary.parse_failures}",
        ]
        lines.extend(f"Task {task.id}: {task.description}" for task in summary.tasks)
        lines.append(f"Tasks file: {settings.state.tasks_path}")
        lines.append(f"has_tasks={str(bool(summary.tasks)).lower()}")
        return lines

    def prepare(self, command: TaskPrepareCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        task = stages.prepare_task(
            settings,
            task_data=command.task_data,
            overrides=stages.TaskOverrides(
                task_id=command.task_id,
                description=command.description,
                project_path=command.project_path,
                task_type=command.task_type,
                user_email=command.user_email,
            ),
        )
        return [
            f"Task prepared: task_id={task.id} type={task.task_type.value}",
            f"Task file: {settings.state.current_task_path}",
            f"task_id={task.id}",
        ]

    def show(self, command: TaskShowCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        task = stages.load_current_task(settings, command.task_file)
        lines = [
            f"Task ID:      {task.id}",
            f"Description:  {task.description}",
            f"Project path: {task.project_path}",
            f"Task type:    {task.task_type.value}",
            f"User e-mail:  {task.user_email or '-'}",
            f"Created:      {task.timestamp}",
        ]
        if task.requirements:
            lines.append("Requirements:")
            lines.extend(f"  - {item}" for item in task.requirements)
        return lines

    def run(self, command: RunCommand) -> list[str]:
        """Execute the current task. A failed tool run is reported, not raised."""

        settings = Settings.from_env(state_dir=command.state_dir)
        if command.tool_command:
            settings.runner.tool_command = command.tool_command
        if command.timeout_seconds is not None:
            settings.runner.timeout_seconds = command.timeout_seconds
        task = stages.load_current_task(settings, command.task_file)
        result = stages.run_task(settings, task)

        lines = [
            "Execution finished: "
            f"task_id={result.task_id} exit_code={result.exit_code} "
            f"timed_out={str(result.timed_out).lower()} duration_ms={result.duration_ms}",
            f"Log: {settings.state.execution_log_path(result.task_id)}",
        ]
        if result.error:
            lines.append(f"Error: {result.error}")
        lines.append(f"success={str(result.success).lower()}")
        return lines

    def report(self, command: ReportCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        try:
            task = stages.load_current_task(settings, command.task_file)
        except (FileNotFoundError, ValueError, TypeError) as error:
            logger.warning("Task record unavailable, report uses placeholders: %s", error)
            task = None
        rendered = stages.build_report(settings, task=task, error=command.error)
        return [
            f"Report: {rendered.report_path}",
            f"Subject: {rendered.subject}",
            f"success={str(rendered.payload.success).lower()}",
        ]

    def send(self, command: NotifySendCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        task_id = command.task_id or stages.load_current_task(settings).id
        receipt = stages.send_report(
            settings,
            task_id=task_id,
            recipient=command.recipient,
            transport=self.transport,
        )
        return [
            f"Report sent: to={receipt.recipient} message_id={receipt.message_id}",
            f"Attachments: {', '.join(receipt.attachments) or '-'}",
        ]

    def test_delivery(self, command: NotifyTestCommand) -> list[str]:
        settings = Settings.from_env(state_dir=command.state_dir)
        recipient = command.recipient or settings.notify.recipient
        notifier = stages.build_notifier(settings, transport=self.transport)
        receipt = notifier.send_test_message(recipient)
        return [f"Test message sent: to={receipt.recipient} message_id={receipt.message_id}"]

    def run_pipeline(self, command: PipelineRunCommand) -> list[str]:
        """Poll once and push every new task through run, report and notify."""

        if command.use_prefect:
            from task_courier.pipeline.prefect_flow import inbox_pipeline_flow  # noqa: PLC0415

            lines = inbox_pipeline_flow(
                state_dir=command.state_dir,
                recipient=command.recipient,
                notify=command.notify,
            )
            return lines or ["No new tasks."]

        settings = Settings.from_env(state_dir=command.state_dir)
        summary = stages.poll_inbox(settings, mailbox=self.mailbox)
        if not summary.tasks:
            return ["No new tasks."]

        lines: list[str] = []
        for task in summary.tasks:
            outcome = stages.run_task_pipeline(
                settings,
                task,
                recipient=command.recipient,
                transport=self.transport,
                notify=command.notify,
            )
            line = (
                f"task_id={task.id} success={str(outcome.result.success).lower()} "
                f"report={outcome.report.report_path}"
            )
            if outcome.receipt is not None:
                line += f" sent_to={outcome.receipt.recipient}"
            lines.append(line)
        return lines
