"""Stage functions shared by the CLI steps and the Prefect flow.

Each stage reads its input from the state directory (or takes it as an
argument), does one thing and persists its output so the next stage can run in
a separate process.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from task_courier.config import Settings
from task_courier.contracts import (
    load_json,
    read_execution_result,
    read_task,
    task_from_dict,
    write_task,
    write_task_batch,
)
from task_courier.intake import ImapMailbox, IntakeService, IntakeSummary, Mailbox, SeenSetStore
from task_courier.models import DeliveryReceipt, ExecutionResult, RenderedReport, TaskRecord
from task_courier.notify import Notifier, OutboundTransport, SmtpTransport
from task_courier.report import ReportBuilder
from task_courier.runner import ExecutionOrchestrator, ToolRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskOverrides:
    """Per-field values that win over the task data document."""

    task_id: str | None = None
    description: str | None = None
    project_path: str | None = None
    task_type: str | None = None
    user_email: str | None = None


@dataclass(slots=True)
class TaskOutcome:
    """Everything produced for one task by a full pipeline pass."""

    task: TaskRecord
    result: ExecutionResult
    report: RenderedReport
    receipt: DeliveryReceipt | None


def poll_inbox(settings: Settings, *, mailbox: Mailbox | None = None) -> IntakeSummary:
    """Run one intake cycle and write a non-empty batch to ``tasks.json``.

    An empty cycle keeps the previous batch so it is not lost before the
    downstream steps pick it up.
    """

    if mailbox is None:
        settings.validate_for_intake()
        mailbox = ImapMailbox(settings.mailbox)
    service = IntakeService(
        mailbox=mailbox,
        seen_set=SeenSetStore(settings.state.seen_set_path),
        subject_marker=settings.mailbox.subject_marker,
    )
    summary = service.poll()
    if summary.tasks:
        write_task_batch(settings.state.tasks_path, summary.tasks)
    return summary


def prepare_task(
    settings: Settings,
    *,
    task_data: str | None = None,
    overrides: TaskOverrides | None = None,
) -> TaskRecord:
    """Build the current task from a JSON document plus overrides.

    Missing fields get intake defaults. The record is written to
    ``current-task.json``.
    """

    raw: dict[str, Any] = {}
    if task_data:
        try:
            decoded = json.loads(task_data)
        except json.JSONDecodeError as error:
            raise ValueError(f"Task data is not valid JSON: {error}") from error
        if not isinstance(decoded, dict):
            raise ValueError("Task data must be a JSON object")
        raw.update(decoded)

    overrides = overrides or TaskOverrides()
    for key, value in (
        ("id", overrides.task_id),
        ("description", overrides.description),
        ("project_path", overrides.project_path),
        ("task_type", overrides.task_type),
        ("user_email", overrides.user_email),
    ):
        if value:
            raw[key] = value

    task = task_from_dict(raw)
    if not task.description.strip():
        raise ValueError("Task description is required")
    write_task(settings.state.current_task_path, task)
    logger.info("Prepared task %s: %s", task.id, task.description)
    return task


def load_current_task(settings: Settings, task_file: Path | None = None) -> TaskRecord:
    path = task_file or settings.state.current_task_path
    if not path.exists():
        raise FileNotFoundError(f"Task file not found: {path}")
    return read_task(path)


def build_orchestrator(
    settings: Settings,
    *,
    runner: ToolRunner | None = None,
) -> ExecutionOrchestrator:
    return ExecutionOrchestrator(
        layout=settings.state,
        tool_command=settings.runner.tool_command,
        timeout_seconds=settings.runner.timeout_seconds,
        credential_env=settings.runner.credential_env,
        credential=settings.runner.credential,
        sensitive_env_names=settings.sensitive_env_names(),
        git_command=settings.runner.git_command,
        runner=runner,
    )


def run_task(settings: Settings, task: TaskRecord) -> ExecutionResult:
    """Execute the tool for ``task``; launch and workdir failures propagate."""

    settings.validate_for_run()
    return build_orchestrator(settings).execute(task)


def build_report(
    settings: Settings,
    *,
    task: TaskRecord | None,
    error: str | None = None,
) -> RenderedReport:
    """Render the report for ``task`` from its persisted execution log.

    Without an execution log the report falls back to ``error`` or to the
    stage's error artifact, so a failed launch still yields a failure report.
    """

    result: ExecutionResult | None = None
    if task is not None:
        log_path = settings.state.execution_log_path(task.id)
        if log_path.exists():
            result = read_execution_result(log_path)
        elif not error:
            error = _read_error_artifact(settings.state.error_log_path(task.id))
    if result is None and not error:
        error = "Execution log not found"

    builder = ReportBuilder(
        layout=settings.state,
        templates_dir=settings.report.templates_dir,
        max_output_chars=settings.report.max_output_chars,
    )
    return builder.generate(result=result, task=task, error=error)


def build_notifier(
    settings: Settings,
    *,
    transport: OutboundTransport | None = None,
) -> Notifier:
    if transport is None:
        settings.validate_for_notify()
        transport = SmtpTransport(settings.smtp)
    return Notifier(
        transport=transport,
        layout=settings.state,
        max_log_attachments=settings.notify.max_log_attachments,
    )


def send_report(
    settings: Settings,
    *,
    task_id: str,
    recipient: str | None = None,
    transport: OutboundTransport | None = None,
) -> DeliveryReceipt:
    """Send the persisted report of ``task_id``.

    Recipient precedence: explicit argument, configured recipient, then the
    address the task came from.
    """

    report_path = settings.state.report_path(task_id)
    meta_path = settings.state.report_meta_path(task_id)
    if not report_path.exists() or not meta_path.exists():
        raise FileNotFoundError(f"No rendered report for task {task_id}")
    meta = load_json(meta_path)
    target = recipient or settings.notify.recipient or str(meta.get("recipient") or "")
    notifier = build_notifier(settings, transport=transport)
    return notifier.deliver(
        html=report_path.read_text("utf-8"),
        subject=str(meta.get("subject") or ""),
        recipient=target,
    )


def run_task_pipeline(
    settings: Settings,
    task: TaskRecord,
    *,
    recipient: str | None = None,
    transport: OutboundTransport | None = None,
    notify: bool = True,
) -> TaskOutcome:
    """Run, report and (optionally) notify for one task."""

    write_task(settings.state.current_task_path, task)
    result = run_task(settings, task)
    report = build_report(settings, task=task)
    receipt = None
    if notify:
        receipt = send_report(
            settings,
            task_id=task.id,
            recipient=recipient,
            transport=transport,
        )
    return TaskOutcome(task=task, result=result, report=report, receipt=receipt)


def _read_error_artifact(path: Path) -> str | None:
    if not path.exists():
        return None
    text = path.read_text("utf-8").strip()
    return text or None
