from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from task_courier import __version__, main
from task_courier.main import task_courier

pytestmark = [
    allure.epic("Pipeline CLI"),
    allure.feature("Scheduler Steps"),
]


@pytest.fixture
def runner(clean_env) -> CliRunner:
    return CliRunner()


@pytest.fixture
def controller_fakes(monkeypatch, fake_mailbox, fake_transport):
    monkeypatch.setattr(main.PIPELINE_CONTROLLER, "mailbox", fake_mailbox)
    monkeypatch.setattr(main.PIPELINE_CONTROLLER, "transport", fake_transport)
    return fake_mailbox, fake_transport


def _prepare(runner: CliRunner, state_dir: Path, **overrides: str):
    args = ["task", "prepare", "--state-dir", str(state_dir)]
    for key, value in overrides.items():
        args.extend([f"--{key.replace('_', '-')}", value])
    return runner.invoke(task_courier, args)


def test_version(runner) -> None:
    result = runner.invoke(task_courier, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_prepare_and_show_task(runner, state_dir) -> None:
    task_data = json.dumps(
        {
            "id": "t1",
            "description": "from json",
            "projectPath": "https://github.com/acme/api.git",
            "requirements": ["one", "two"],
        },
    )

    prepared = _prepare(runner, state_dir, task_data=task_data, description="run unit tests")
    shown = runner.invoke(task_courier, ["task", "show", "--state-dir", str(state_dir)])

    assert prepared.exit_code == 0, prepared.output
    assert "task_id=t1" in prepared.output
    stored = json.loads((state_dir / "current-task.json").read_text("utf-8"))
    assert stored["description"] == "run unit tests"
    assert stored["project_path"] == "https://github.com/acme/api.git"
    assert stored["task_type"] == "code"
    assert shown.exit_code == 0
    assert "Description:  run unit tests" in shown.output
    assert "  - one" in shown.output


def test_prepare_reads_task_data_from_environment(runner, state_dir) -> None:
    result = runner.invoke(
        task_courier,
        ["task", "prepare", "--state-dir", str(state_dir)],
        env={"TASK_COURIER_TASK_DATA": '{"description": "env task", "taskType": "debug"}'},
    )

    assert result.exit_code == 0, result.output
    stored = json.loads((state_dir / "current-task.json").read_text("utf-8"))
    assert stored["description"] == "env task"
    assert stored["task_type"] == "debug"
    assert stored["id"].startswith("task-")


def test_prepare_without_description_fails(runner, state_dir) -> None:
    result = _prepare(runner, state_dir, task_type="test")

    assert result.exit_code != 0
    assert "description is required" in result.output


def test_prepare_rejects_malformed_json(runner, state_dir) -> None:
    result = _prepare(runner, state_dir, task_data="{not json")

    assert result.exit_code != 0
    assert "not valid JSON" in result.output


def test_run_report_and_send_steps(
    runner,
    state_dir,
    echo_tool_command,
    controller_fakes,
) -> None:
    _, transport = controller_fakes
    _prepare(
        runner,
        state_dir,
        task_id="t1",
        description="run unit tests",
        task_type="test",
        user_email="alice@example.com",
    )

    ran = runner.invoke(
        task_courier,
        [
            "run",
            "--state-dir",
            str(state_dir),
            "--tool-command",
            f"{echo_tool_command} --stdout '12 passed'",
        ],
    )
    reported = runner.invoke(task_courier, ["report", "--state-dir", str(state_dir)])
    sent = runner.invoke(task_courier, ["notify", "send", "--state-dir", str(state_dir)])

    assert ran.exit_code == 0, ran.output
    assert "success=true" in ran.output
    assert reported.exit_code == 0, reported.output
    assert "Subject: ✅ Success - run unit tests" in reported.output
    html = (state_dir / "reports" / "t1_report.html").read_text("utf-8")
    assert "12 passed" in html
    assert sent.exit_code == 0, sent.output
    assert "to=alice@example.com" in sent.output
    message = transport.sent[0]
    assert message.subject == "✅ Success - run unit tests"
    assert "t1.log" in [item.filename for item in message.attachments]
    assert (state_dir / "audit" / "email-sent.log").exists()


def test_failed_tool_run_is_not_a_cli_error(runner, state_dir, echo_tool_command) -> None:
    _prepare(runner, state_dir, task_id="t2", description="break it")

    ran = runner.invoke(
        task_courier,
        [
            "run",
            "--state-dir",
            str(state_dir),
            "--tool-command",
            f"{echo_tool_command} --exit-code 1 --stderr kaboom",
        ],
    )
    reported = runner.invoke(task_courier, ["report", "--state-dir", str(state_dir)])

    assert ran.exit_code == 0, ran.output
    assert "success=false" in ran.output
    assert "Subject: ❌ Failed - break it" in reported.output
    assert "kaboom" in (state_dir / "reports" / "t2_report.html").read_text("utf-8")


def test_launch_failure_exits_non_zero_and_report_uses_error_artifact(runner, state_dir) -> None:
    _prepare(runner, state_dir, task_id="t3", description="missing tool")

    ran = runner.invoke(
        task_courier,
        ["run", "--state-dir", str(state_dir), "--tool-command", "no-such-tool-binary"],
    )
    reported = runner.invoke(task_courier, ["report", "--state-dir", str(state_dir)])

    assert ran.exit_code != 0
    assert "not found" in ran.output
    assert not (state_dir / "logs" / "t3.log").exists()
    assert reported.exit_code == 0, reported.output
    assert "success=false" in reported.output
    assert "no-such-tool-binary" in (state_dir / "reports" / "t3_report.html").read_text("utf-8")


def test_report_without_task_uses_placeholders(runner, state_dir) -> None:
    result = runner.invoke(
        task_courier,
        ["report", "--state-dir", str(state_dir), "--error", "scheduler lost the workspace"],
    )

    assert result.exit_code == 0, result.output
    assert "Subject: ❌ Failed - Unknown task" in result.output


def test_notify_send_requires_rendered_report(runner, state_dir, controller_fakes) -> None:
    result = runner.invoke(
        task_courier,
        ["notify", "send", "--state-dir", str(state_dir), "--task-id", "missing"],
    )

    assert result.exit_code != 0
    assert "No rendered report" in result.output


def test_notify_test_uses_configured_recipient(runner, state_dir, controller_fakes) -> None:
    _, transport = controller_fakes

    result = runner.invoke(
        task_courier,
        ["notify", "test", "--state-dir", str(state_dir)],
        env={"TASK_COURIER_RECIPIENT_EMAIL": "ops@example.com"},
    )

    assert result.exit_code == 0, result.output
    assert transport.sent[0].recipient == "ops@example.com"


def test_empty_poll_keeps_previous_task_batch(
    runner,
    state_dir,
    controller_fakes,
    make_email,
) -> None:
    mailbox, _ = controller_fakes
    mailbox.add("1", make_email("TASK: first", "Task Type: test\n"))
    mailbox.add("2", make_email("TASK: second"))

    first = runner.invoke(task_courier, ["intake", "poll", "--state-dir", str(state_dir)])
    second = runner.invoke(task_courier, ["intake", "poll", "--state-dir", str(state_dir)])

    assert first.exit_code == 0, first.output
    assert "has_tasks=true" in first.output
    assert "has_tasks=false" in second.output
    batch = json.loads((state_dir / "tasks.json").read_text("utf-8"))
    assert [item["description"] for item in batch] == ["first", "second"]
    assert [path.name for path in state_dir.iterdir() if path.name.endswith(".tmp")] == []
    assert len(json.loads((state_dir / "processed-emails.json").read_text("utf-8"))) == 2


def test_pipeline_run_without_prefect(
    runner,
    state_dir,
    controller_fakes,
    make_email,
    echo_tool_command,
) -> None:
    mailbox, transport = controller_fakes
    mailbox.add(
        "1",
        make_email("TASK: run unit tests", "Task Type: test\n", sender="alice@example.com"),
    )

    result = runner.invoke(
        task_courier,
        ["pipeline", "run", "--state-dir", str(state_dir), "--no-prefect"],
        env={"TASK_COURIER_TOOL_COMMAND": f"{echo_tool_command} --stdout '12 passed'"},
    )

    assert result.exit_code == 0, result.output
    assert "success=true" in result.output
    assert "sent_to=alice@example.com" in result.output
    assert transport.sent[0].subject == "✅ Success - run unit tests"
    assert "12 passed" in transport.sent[0].html


def test_pipeline_run_with_empty_inbox(runner, state_dir, controller_fakes) -> None:
    result = runner.invoke(
        task_courier,
        ["pipeline", "run", "--state-dir", str(state_dir), "--no-prefect"],
    )

    assert result.exit_code == 0, result.output
    assert "No new tasks." in result.output
