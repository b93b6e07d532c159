"""Report payload derivation, HTML rendering and artifact persistence."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound, select_autoescape

from task_courier.config import StateLayout
from task_courier.contracts import write_json
from task_courier.models import ExecutionResult, RenderedReport, ReportPayload, TaskRecord
from task_courier.report.templates import (
    DEFAULT_TEMPLATES,
    ERROR_TEMPLATE_NAME,
    SUCCESS_TEMPLATE_NAME,
)

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 5_000
TRUNCATION_MARKER = "\n\n... (output truncated, see attached logs for the full text)"
SUBJECT_DESCRIPTION_CHARS = 30
UNKNOWN_DURATION = "unknown"
UNKNOWN_DESCRIPTION = "Unknown task"


class ReportBuildError(RuntimeError):
    """The rendered report could not be persisted."""


def truncate_output(text: str, max_chars: int = MAX_OUTPUT_CHARS) -> str:
    """Cap output at ``max_chars`` and append the truncation marker.

    Already truncated text passes through unchanged.
    """

    if len(text) <= max_chars:
        return text
    if text.endswith(TRUNCATION_MARKER) and len(text) - len(TRUNCATION_MARKER) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def format_duration(elapsed_ms: float) -> str:
    """Render elapsed time in the coarsest unit, rounded half up."""

    elapsed = max(0.0, elapsed_ms)
    if elapsed < 1_000:
        return f"{_round_half_up(elapsed)}ms"
    if elapsed < 60_000:
        return f"{_round_half_up(elapsed / 1_000)}s"
    if elapsed < 3_600_000:
        return f"{_round_half_up(elapsed / 60_000)}min"
    return f"{_round_half_up(elapsed / 3_600_000)}h"


def calculate_duration(started_at: str | None, *, now: datetime) -> str:
    if not started_at:
        return UNKNOWN_DURATION
    try:
        start = datetime.fromisoformat(started_at)
    except ValueError:
        return UNKNOWN_DURATION
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    return format_duration((now - start).total_seconds() * 1000)


def generate_subject(description: str, *, success: bool) -> str:
    status = "✅ Success" if success else "❌ Failed"
    short = description[:SUBJECT_DESCRIPTION_CHARS]
    if len(description) > SUBJECT_DESCRIPTION_CHARS:
        short += "..."
    return f"{status} - {short}"


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class ReportBuilder:
    """Turns an execution outcome into a rendered, persisted notification body."""

    def __init__(
        self,
        *,
        layout: StateLayout,
        templates_dir: Path,
        max_output_chars: int = MAX_OUTPUT_CHARS,
    ) -> None:
        self.layout = layout
        self.templates_dir = templates_dir
        self.max_output_chars = max_output_chars
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html"], default_for_string=True),
        )

    def build_payload(
        self,
        *,
        result: ExecutionResult | None,
        task: TaskRecord | None,
        error: str | None = None,
        now: datetime | None = None,
    ) -> ReportPayload:
        """Derive the payload; missing task data degrades to placeholders."""

        current = now or datetime.now(tz=UTC)
        success = result.success if result is not None and not error else False
        description = task.description if task is not None and task.description else ""
        description = description or UNKNOWN_DESCRIPTION
        return ReportPayload(
            success=success,
            task_id=_task_id(task, result),
            description=description,
            user_email=task.user_email if task is not None else "",
            formatted_time=current.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            duration=calculate_duration(task.timestamp if task else None, now=current),
            output=truncate_output(result.stdout if result else "", self.max_output_chars),
            error=_error_text(result, error),
            requirements=task.requirements if task is not None else (),
            project_path=task.project_path if task is not None else ".",
            task_type=task.task_type.value if task is not None else "code",
            subject=generate_subject(description, success=success),
        )

    def generate_html_report(self, payload: ReportPayload) -> str:
        return self._template_for(payload.success).render(**payload.template_context())

    def generate(
        self,
        *,
        result: ExecutionResult | None,
        task: TaskRecord | None,
        error: str | None = None,
        now: datetime | None = None,
    ) -> RenderedReport:
        """Build, render and persist the report for one task."""

        payload = self.build_payload(result=result, task=task, error=error, now=now)
        html = self.generate_html_report(payload)
        report_path = self.layout.report_path(payload.task_id)
        meta_path = self.layout.report_meta_path(payload.task_id)
        try:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(html, "utf-8")
            write_json(
                meta_path,
                {
                    "task_id": payload.task_id,
                    "subject": payload.subject,
                    "success": payload.success,
                    "recipient": payload.user_email,
                    "report_path": str(report_path),
                },
            )
        except OSError as write_error:
            raise ReportBuildError(
                f"Cannot persist report {report_path}: {write_error}",
            ) from write_error

        logger.info("Report generated: %s", report_path)
        logger.info("Subject: %s", payload.subject)
        return RenderedReport(
            payload=payload,
            html=html,
            report_path=str(report_path),
            meta_path=str(meta_path),
        )

    def _template_for(self, success: bool) -> Template:
        name = SUCCESS_TEMPLATE_NAME if success else ERROR_TEMPLATE_NAME
        try:
            return self._env.get_template(name)
        except TemplateNotFound:
            logger.info("Template %s not found in %s, using built-in", name, self.templates_dir)
            return self._env.from_string(DEFAULT_TEMPLATES[name])


def _task_id(task: TaskRecord | None, result: ExecutionResult | None) -> str:
    if task is not None:
        return task.id
    if result is not None:
        return result.task_id
    return "unknown-task"


def _error_text(result: ExecutionResult | None, error: str | None) -> str:
    if error:
        return error
    if result is None:
        return ""
    parts = [result.error] if result.error else []
    if result.stderr.strip():
        parts.append(result.stderr.strip())
    return "\n\n".join(parts)
