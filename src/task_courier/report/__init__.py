"""HTML report generation for task outcomes."""

from task_courier.report.builder import (
    MAX_OUTPUT_CHARS,
    TRUNCATION_MARKER,
    ReportBuildError,
    ReportBuilder,
    calculate_duration,
    format_duration,
    generate_subject,
    truncate_output,
)

__all__ = [
    "MAX_OUTPUT_CHARS",
    "TRUNCATION_MARKER",
    "ReportBuildError",
    "ReportBuilder",
    "calculate_duration",
    "format_duration",
    "generate_subject",
    "truncate_output",
]
