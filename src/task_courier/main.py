"""CLI entrypoint for task-courier."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from task_courier import __version__
from task_courier.logging_setup import configure_logging
from task_courier.pipeline.controllers import (
    STAGE_ERRORS,
    IntakePollCommand,
    NotifySendCommand,
    NotifyTestCommand,
    PipelineCliController,
    PipelineRunCommand,
    ReportCommand,
    RunCommand,
    TaskPrepareCommand,
    TaskShowCommand,
)

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()

CommandT = TypeVar("CommandT")

_state_dir_option = click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="State directory. Defaults to TASK_COURIER_STATE_DIR or the current directory.",
)
_task_file_option = click.option(
    "--task-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Task record JSON. Defaults to current-task.json in the state directory.",
)


@click.group()
@click.version_option(version=__version__, prog_name="task-courier")
@click.option(
    "--log-level",
    default=None,
    help="Log level (DEBUG, INFO, WARNING, ERROR). Defaults to TASK_COURIER_LOG_LEVEL or INFO.",
)
def task_courier(log_level: str | None) -> None:
    """Mail-triggered task runner."""

    configure_logging(log_level)


@task_courier.group()
def intake() -> None:
    """Mailbox intake commands."""


@intake.command("poll")
@_state_dir_option
def intake_poll(state_dir: Path | None) -> None:
    """Poll the mailbox once and write new tasks to tasks.json."""

    _run_step(PIPELINE_CONTROLLER.poll, IntakePollCommand(state_dir=state_dir))


@task_courier.group()
def task() -> None:
    """Current task record commands."""


@task.command("prepare")
@_state_dir_option
@click.option(
    "--task-data",
    envvar="TASK_COURIER_TASK_DATA",
    default=None,
    help="Task record as a JSON object, for example one entry of tasks.json.",
)
@click.option("--task-id", envvar="TASK_COURIER_TASK_ID", default=None, help="Task id override.")
@click.option(
    "--description",
    envvar="TASK_COURIER_TASK_DESCRIPTION",
    default=None,
    help="Task description override.",
)
@click.option(
    "--project-path",
    envvar="TASK_COURIER_PROJECT_PATH",
    default=None,
    help="Project path or repository URL override.",
)
@click.option(
    "--task-type",
    envvar="TASK_COURIER_TASK_TYPE",
    default=None,
    help="Task type override: code, debug, test or deploy.",
)
@click.option(
    "--user-email",
    envvar="TASK_COURIER_USER_EMAIL",
    default=None,
    help="Requester address override.",
)
def task_prepare(  # noqa: PLR0913
    state_dir: Path | None,
    task_data: str | None,
    task_id: str | None,
    description: str | None,
    project_path: str | None,
    task_type: str | None,
    user_email: str | None,
) -> None:
    """Build current-task.json from task data and overrides."""

    _run_step(
        PIPELINE_CONTROLLER.prepare,
        TaskPrepareCommand(
            state_dir=state_dir,
            task_data=task_data,
            task_id=task_id,
            description=description,
            project_path=project_path,
            task_type=task_type,
            user_email=user_email,
        ),
    )


@task.command("show")
@_state_dir_option
@_task_file_option
def task_show(state_dir: Path | None, task_file: Path | None) -> None:
    """Print the current task record."""

    _run_step(PIPELINE_CONTROLLER.show, TaskShowCommand(state_dir=state_dir, task_file=task_file))


@task_courier.command("run")
@_state_dir_option
@_task_file_option
@click.option(
    "--tool-command",
    default=None,
    help="Tool command line. Defaults to TASK_COURIER_TOOL_COMMAND or claude-code.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Hard timeout for the tool run. Defaults to TASK_COURIER_TOOL_TIMEOUT_SECONDS or 1800.",
)
def run(
    state_dir: Path | None,
    task_file: Path | None,
    tool_command: str | None,
    timeout_seconds: float | None,
) -> None:
    """Run the external tool for the current task and write its execution log."""

    _run_step(
        PIPELINE_CONTROLLER.run,
        RunCommand(
            state_dir=state_dir,
            task_file=task_file,
            tool_command=tool_command,
            timeout_seconds=timeout_seconds,
        ),
    )


@task_courier.command("report")
@_state_dir_option
@_task_file_option
@click.option(
    "--error",
    default=None,
    help="Failure text to report when no execution log exists.",
)
def report(state_dir: Path | None, task_file: Path | None, error: str | None) -> None:
    """Render the HTML report for the current task."""

    _run_step(
        PIPELINE_CONTROLLER.report,
        ReportCommand(state_dir=state_dir, task_file=task_file, error=error),
    )


@task_courier.group()
def notify() -> None:
    """Outbound notification commands."""


@notify.command("send")
@_state_dir_option
@click.option(
    "--task-id",
    envvar="TASK_COURIER_TASK_ID",
    default=None,
    help="Task whose report to send. Defaults to the current task.",
)
@click.option(
    "--recipient",
    default=None,
    help="Recipient address. Defaults to TASK_COURIER_RECIPIENT_EMAIL, then the task author.",
)
def notify_send(state_dir: Path | None, task_id: str | None, recipient: str | None) -> None:
    """Send the rendered report with recent logs attached."""

    _run_step(
        PIPELINE_CONTROLLER.send,
        NotifySendCommand(state_dir=state_dir, task_id=task_id, recipient=recipient),
    )


@notify.command("test")
@_state_dir_option
@click.option(
    "--recipient",
    default=None,
    help="Recipient address. Defaults to TASK_COURIER_RECIPIENT_EMAIL.",
)
def notify_test(state_dir: Path | None, recipient: str | None) -> None:
    """Send a short probe message to check SMTP settings."""

    _run_step(
        PIPELINE_CONTROLLER.test_delivery,
        NotifyTestCommand(state_dir=state_dir, recipient=recipient),
    )


@task_courier.group()
def pipeline() -> None:
    """End-to-end pipeline commands."""


@pipeline.command("run")
@_state_dir_option
@click.option("--recipient", default=None, help="Recipient override for every report.")
@click.option(
    "--notify/--no-notify",
    default=True,
    show_default=True,
    help="Send reports after rendering them.",
)
@click.option(
    "--prefect/--no-prefect",
    "use_prefect",
    default=True,
    show_default=True,
    help="Run stages as a Prefect flow or as plain calls in this process.",
)
def pipeline_run(
    state_dir: Path | None,
    recipient: str | None,
    notify: bool,
    use_prefect: bool,
) -> None:
    """Poll once, then run, report and notify every new task."""

    _run_step(
        PIPELINE_CONTROLLER.run_pipeline,
        PipelineRunCommand(
            state_dir=state_dir,
            recipient=recipient,
            notify=notify,
            use_prefect=use_prefect,
        ),
    )


def _run_step(step: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = step(command)
    except STAGE_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_courier()
