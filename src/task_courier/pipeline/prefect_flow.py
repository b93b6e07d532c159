"""Prefect flow chaining intake, execution, reporting and delivery.

The stage logic lives in ``task_courier.pipeline.stages``; this module only
wraps it in Prefect tasks so a scheduler run shows one task run per stage.
"""

from __future__ import annotations

import logging
from pathlib import Path

from prefect import flow, task

from task_courier.config import Settings
from task_courier.contracts import write_task
from task_courier.models import DeliveryReceipt, ExecutionResult, RenderedReport, TaskRecord
from task_courier.pipeline import stages

logger = logging.getLogger(__name__)


@task(name="poll_inbox")
def poll_inbox_step(settings: Settings) -> list[TaskRecord]:
    return stages.poll_inbox(settings).tasks


@task(name="run_tool")
def run_tool_step(settings: Settings, task_record: TaskRecord) -> ExecutionResult:
    write_task(settings.state.current_task_path, task_record)
    return stages.run_task(settings, task_record)


@task(name="build_report")
def build_report_step(settings: Settings, task_record: TaskRecord) -> RenderedReport:
    return stages.build_report(settings, task=task_record)


@task(name="send_report")
def send_report_step(
    settings: Settings,
    task_id: str,
    recipient: str | None,
) -> DeliveryReceipt:
    return stages.send_report(settings, task_id=task_id, recipient=recipient)


@flow(name="inbox_pipeline_flow")
def inbox_pipeline_flow(
    *,
    state_dir: Path | None = None,
    recipient: str | None = None,
    notify: bool = True,
) -> list[str]:
    """Poll once, then run, report and notify every new task in order.

    Infrastructure failures fail the flow run; result-level failures come out
    as failure reports. Returns one summary line per task.
    """

    settings = Settings.from_env(state_dir=state_dir)
    tasks = poll_inbox_step(settings)
    logger.info("Pipeline flow picked up %d task(s)", len(tasks))

    lines: list[str] = []
    for task_record in tasks:
        result = run_tool_step(settings, task_record)
        report = build_report_step(settings, task_record)
        line = (
            f"task_id={task_record.id} success={str(result.success).lower()} "
            f"report={report.report_path}"
        )
        if notify:
            receipt = send_report_step(settings, task_record.id, recipient)
            line += f" sent_to={receipt.recipient}"
        lines.append(line)
    return lines
