"""Turn a task e-mail into a task record.

Body grammar, one line at a time after stripping whitespace, blank lines ignored::

    Project Path: https://github.com/acme/billing.git
    Task Type: test
    Requirements:
    - keep the public API stable
    - add regression tests

Labels are accepted in English and Chinese, with an ASCII or full-width colon.
A task type outside ``code``/``debug``/``test``/``deploy`` is ignored. Once the
requirements label is seen, every line starting with ``-`` becomes one
requirement, in order.
"""

from __future__ import annotations

import hashlib
import html
import re
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import parseaddr

from task_courier.models import TaskRecord, TaskType, new_task_id, utc_now_iso

PROJECT_PATH_LABELS = ("Project Path", "项目路径")
TASK_TYPE_LABELS = ("Task Type", "任务类型")
REQUIREMENTS_LABELS = ("Requirements", "具体要求")
REQUIREMENT_BULLET = "-"

_COLONS = (":", "：")
_HTML_TAG = re.compile(r"<[^>]+>")
_HTML_BREAK = re.compile(r"<\s*(br|/p|/div|/li)\s*/?>", re.IGNORECASE)


class TaskParseError(ValueError):
    """Inbound message cannot be turned into a task record."""


@dataclass(slots=True)
class TaskBody:
    """Fields extracted from the message body."""

    project_path: str = "."
    task_type: TaskType = TaskType.CODE
    requirements: list[str] = field(default_factory=list)


def parse_task_body(text: str) -> TaskBody:
    """Parse the body grammar in a single stateful pass."""

    body = TaskBody()
    in_requirements = False
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        value = _label_value(line, PROJECT_PATH_LABELS)
        if value is not None:
            body.project_path = value or "."
            continue

        value = _label_value(line, TASK_TYPE_LABELS)
        if value is not None:
            task_type = TaskType.parse(value)
            if task_type is not None:
                body.task_type = task_type
            continue

        if _label_value(line, REQUIREMENTS_LABELS) is not None:
            in_requirements = True
            continue

        if in_requirements and line.startswith(REQUIREMENT_BULLET):
            requirement = line[len(REQUIREMENT_BULLET) :].strip()
            if requirement:
                body.requirements.append(requirement)
    return body


def _label_value(line: str, labels: tuple[str, ...]) -> str | None:
    for label in labels:
        if not line.startswith(label):
            continue
        rest = line[len(label) :]
        if rest[:1] in _COLONS:
            return rest[1:].strip()
    return None


def build_task_record(
    message: EmailMessage,
    *,
    subject_marker: str,
    task_id: str | None = None,
) -> TaskRecord:
    """Build a task record from a parsed message or raise ``TaskParseError``."""

    subject = str(message.get("Subject", "") or "")
    if subject_marker not in subject:
        raise TaskParseError(f"Subject does not contain {subject_marker!r}: {subject!r}")
    description = subject.replace(subject_marker, "", 1).strip()
    if not description:
        raise TaskParseError("Task subject has no description after the marker")

    body = parse_task_body(extract_text_body(message))
    _, from_address = parseaddr(str(message.get("From", "") or ""))
    return TaskRecord(
        id=task_id or new_task_id(),
        description=description,
        project_path=body.project_path,
        task_type=body.task_type,
        user_email=from_address,
        requirements=tuple(body.requirements),
        timestamp=utc_now_iso(),
    )


def extract_text_body(message: EmailMessage) -> str:
    """Return the plain text body, falling back to tag-stripped HTML."""

    try:
        part = message.get_body(preferencelist=("plain",))
        if part is not None:
            return part.get_content()
        part = message.get_body(preferencelist=("html",))
        if part is not None:
            return _html_to_text(part.get_content())
    except (LookupError, UnicodeError) as error:
        raise TaskParseError(f"Cannot decode message body: {error}") from error
    return ""


def _html_to_text(markup: str) -> str:
    with_breaks = _HTML_BREAK.sub("\n", markup)
    return html.unescape(_HTML_TAG.sub("", with_breaks))


def message_fingerprint(message: EmailMessage, raw: bytes) -> str:
    """Dedup key for an inbound message.

    ``<Message-ID>-<Date>`` when both headers exist, otherwise a digest of the
    raw bytes so that messages lacking either header still get a stable key.
    """

    message_id = str(message.get("Message-ID", "") or "").strip()
    date = str(message.get("Date", "") or "").strip()
    if message_id and date:
        return f"{message_id}-{date}"
    return "sha256:" + hashlib.sha256(raw).hexdigest()
