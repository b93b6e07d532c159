from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from task_courier.config import StateLayout
from task_courier.models import ExecutionResult, TaskRecord, TaskType
from task_courier.report import (
    TRUNCATION_MARKER,
    ReportBuildError,
    ReportBuilder,
    calculate_duration,
    format_duration,
    generate_subject,
    truncate_output,
)

pytestmark = [
    allure.epic("Reporting"),
    allure.feature("HTML Report"),
]

NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=UTC)


def _result(task_id: str = "t1", **overrides) -> ExecutionResult:
    values = {
        "task_id": task_id,
        "command": "claude-code --mode test",
        "work_dir": "/work/t1",
        "start_time": NOW.isoformat(),
        "end_time": NOW.isoformat(),
        "duration_ms": 1500,
        "exit_code": 0,
        "stdout": "12 passed",
        "stderr": "",
    }
    values.update(overrides)
    return ExecutionResult(**values)


def _task(**overrides) -> TaskRecord:
    values = {
        "id": "t1",
        "description": "run unit tests",
        "project_path": ".",
        "task_type": TaskType.TEST,
        "user_email": "alice@example.com",
        "timestamp": (NOW - timedelta(seconds=42)).isoformat(),
    }
    values.update(overrides)
    return TaskRecord(**values)


@pytest.fixture
def builder(layout, tmp_path: Path) -> ReportBuilder:
    return ReportBuilder(layout=layout, templates_dir=tmp_path / "no-templates")


def test_subject_for_long_description() -> None:
    subject = generate_subject("Refactor the payment module to use async IO", success=True)

    assert subject == "✅ Success - Refactor the payment module to..."


def test_subject_for_short_failure() -> None:
    assert generate_subject("fix bug", success=False) == "❌ Failed - fix bug"


def test_subject_exactly_thirty_chars_has_no_ellipsis() -> None:
    description = "x" * 30

    assert generate_subject(description, success=True) == f"✅ Success - {description}"


def test_truncation_caps_output_and_is_idempotent() -> None:
    once = truncate_output("a" * 6000)
    twice = truncate_output(once)

    assert once == "a" * 5000 + TRUNCATION_MARKER
    assert twice == once


def test_short_output_is_untouched() -> None:
    assert truncate_output("12 passed") == "12 passed"
    assert truncate_output("") == ""


@pytest.mark.parametrize(
    ("elapsed_ms", "expected"),
    [
        (0, "0ms"),
        (499.5, "500ms"),
        (999, "999ms"),
        (1_000, "1s"),
        (1_500, "2s"),
        (59_000, "59s"),
        (90_000, "2min"),
        (3_599_000, "60min"),
        (5_400_000, "2h"),
    ],
)
def test_format_duration_units(elapsed_ms: float, expected: str) -> None:
    assert format_duration(elapsed_ms) == expected


def test_calculate_duration_handles_missing_and_naive_timestamps() -> None:
    assert calculate_duration(None, now=NOW) == "unknown"
    assert calculate_duration("yesterday", now=NOW) == "unknown"
    assert calculate_duration("2026-03-02T09:59:30", now=NOW) == "30s"


def test_end_to_end_success_report(builder, layout) -> None:
    rendered = builder.generate(
        result=_result(),
        task=_task(requirements=("fast", "green")),
        now=NOW,
    )

    assert rendered.payload.success is True
    assert rendered.subject == "✅ Success - run unit tests"
    assert rendered.payload.duration == "42s"
    assert "12 passed" in rendered.html
    assert "Task ID: t1" in rendered.html
    assert rendered.html.index("fast") < rendered.html.index("green")
    assert Path(rendered.report_path) == layout.report_path("t1")
    assert layout.report_path("t1").read_text("utf-8") == rendered.html
    meta = json.loads(layout.report_meta_path("t1").read_text("utf-8"))
    assert meta == {
        "task_id": "t1",
        "subject": "✅ Success - run unit tests",
        "success": True,
        "recipient": "alice@example.com",
        "report_path": str(layout.report_path("t1")),
    }


def test_success_without_output_shows_placeholder(builder) -> None:
    rendered = builder.generate(result=_result(stdout=""), task=_task(), now=NOW)

    assert "No output" in rendered.html
    assert "Requirements:" not in rendered.html


def test_failure_report_shows_error_and_partial_output(builder) -> None:
    result = _result(exit_code=2, stdout="3 passed, 1 failed", stderr="AssertionError")

    rendered = builder.generate(result=result, task=_task(), now=NOW)

    assert rendered.payload.success is False
    assert rendered.subject.startswith("❌ Failed - ")
    assert "AssertionError" in rendered.html
    assert "Partial output" in rendered.html
    assert "3 passed, 1 failed" in rendered.html


def test_failure_report_hides_empty_partial_output(builder) -> None:
    result = _result(exit_code=1, stdout="", error="tool exited with code 1")

    rendered = builder.generate(result=result, task=_task(), now=NOW)

    assert "tool exited with code 1" in rendered.html
    assert "Partial output" not in rendered.html


def test_error_only_report_without_task(builder, layout) -> None:
    rendered = builder.generate(result=None, task=None, error="Tool command not found", now=NOW)

    assert rendered.payload.success is False
    assert rendered.payload.task_id == "unknown-task"
    assert rendered.payload.duration == "unknown"
    assert rendered.subject == "❌ Failed - Unknown task"
    assert "Tool command not found" in rendered.html
    assert layout.report_path("unknown-task").exists()


def test_output_is_html_escaped(builder) -> None:
    rendered = builder.generate(result=_result(stdout="<script>x</script>"), task=_task(), now=NOW)

    assert "<script>x</script>" not in rendered.html
    assert "&lt;script&gt;" in rendered.html


def test_external_template_wins_over_builtin(layout, tmp_path: Path) -> None:
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "success-report.html").write_text(
        "<p>{{ task_id }}|{{ duration }}|{% for r in requirements %}[{{ r }}]{% endfor %}</p>",
        "utf-8",
    )
    builder = ReportBuilder(layout=layout, templates_dir=templates)

    rendered = builder.generate(result=_result(), task=_task(requirements=("a", "b")), now=NOW)

    assert rendered.html == "<p>t1|42s|[a][b]</p>"


def test_missing_error_template_falls_back_to_builtin(layout, tmp_path: Path) -> None:
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "success-report.html").write_text("custom", "utf-8")
    builder = ReportBuilder(layout=layout, templates_dir=templates)

    rendered = builder.generate(result=_result(exit_code=1), task=_task(), now=NOW)

    assert "Task ID: t1" in rendered.html
    assert "Task failed" in rendered.html


def test_unwritable_report_dir_raises(tmp_path: Path) -> None:
    root = tmp_path / "state"
    root.mkdir()
    (root / "reports").write_text("not a directory", "utf-8")
    builder = ReportBuilder(layout=StateLayout(root=root), templates_dir=tmp_path / "none")

    with pytest.raises(ReportBuildError):
        builder.generate(result=_result(), task=_task(), now=NOW)


def test_long_output_is_truncated_in_payload(builder) -> None:
    rendered = builder.generate(result=_result(stdout="y" * 7000), task=_task(), now=NOW)

    assert rendered.payload.output.endswith(TRUNCATION_MARKER)
    assert len(rendered.payload.output) == 5000 + len(TRUNCATION_MARKER)
