"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from email.message import EmailMessage
from email.utils import format_datetime
from pathlib import Path

import pytest

from task_courier.config import Settings, StateLayout
from task_courier.notify.transport import OutboundMessage, TransportError

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


class FakeMailbox:
    """In-memory mailbox keyed by reference, remembering the unread flag."""

    def __init__(self, messages: dict[str, bytes] | None = None) -> None:
        self.messages: dict[str, bytes] = dict(messages or {})
        self.unread: set[str] = set(self.messages)
        self.marked: list[str] = []
        self.fetched: list[str] = []
        self.connections = 0
        self.search_error: Exception | None = None
        self.fetch_errors: dict[str, Exception] = {}

    def add(self, ref: str, raw: bytes) -> None:
        self.messages[ref] = raw
        self.unread.add(ref)

    def __enter__(self) -> FakeMailbox:
        self.connections += 1
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def search_unread(self, subject_marker: str) -> list[str]:
        if self.search_error is not None:
            raise self.search_error
        return [
            ref
            for ref, raw in self.messages.items()
            if ref in self.unread and subject_marker.encode() in raw
        ]

    def fetch(self, ref: str) -> bytes:
        if ref in self.fetch_errors:
            raise self.fetch_errors[ref]
        self.fetched.append(ref)
        return self.messages[ref]

    def mark_read(self, ref: str) -> None:
        self.marked.append(ref)
        self.unread.discard(ref)


class FakeTransport:
    """Records outbound messages instead of talking to SMTP."""

    def __init__(
        self,
        *,
        verify_error: str | None = None,
        send_error: str | None = None,
    ) -> None:
        self.verify_error = verify_error
        self.send_error = send_error
        self.verified = 0
        self.sent: list[OutboundMessage] = []

    def verify(self) -> None:
        self.verified += 1
        if self.verify_error:
            raise TransportError(self.verify_error)

    def send(self, message: OutboundMessage) -> str:
        if self.send_error:
            raise TransportError(self.send_error)
        self.sent.append(message)
        return f"<fake-{len(self.sent)}@example.test>"


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture()
def layout(state_dir: Path) -> StateLayout:
    return StateLayout(root=state_dir)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop TASK_COURIER_* variables inherited from the developer shell."""

    for name in list(os.environ):
        if name.startswith("TASK_COURIER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings(clean_env: None, state_dir: Path) -> Settings:
    return Settings.from_env(state_dir=state_dir)


@pytest.fixture()
def echo_tool_command(monkeypatch: pytest.MonkeyPatch) -> str:
    """Command line of the local stand-in tool, importable from the child process."""

    existing = os.environ.get("PYTHONPATH")
    python_path = str(SRC_DIR) if not existing else os.pathsep.join([str(SRC_DIR), existing])
    monkeypatch.setenv("PYTHONPATH", python_path)
    return f"{shlex.quote(sys.executable)} -m task_courier.runner.echo_tool"


@pytest.fixture()
def make_email() -> Callable[..., bytes]:
    """Build a raw RFC 822 task message."""

    counter = iter(range(1, 10_000))

    def _make(  # noqa: PLR0913
        subject: str,
        body: str = "",
        *,
        sender: str = "Alice <alice@example.com>",
        message_id: str | None = "auto",
        date: datetime | None = None,
        html: str | None = None,
    ) -> bytes:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = "tasks@example.com"
        if message_id == "auto":
            message["Message-ID"] = f"<msg-{next(counter)}@example.com>"
        elif message_id is not None:
            message["Message-ID"] = message_id
        message["Date"] = format_datetime(date or datetime(2026, 3, 2, 9, 30, tzinfo=UTC))
        if html is not None and not body:
            message.set_content(html, subtype="html")
        else:
            message.set_content(body)
            if html is not None:
                message.add_alternative(html, subtype="html")
        return message.as_bytes()

    return _make


@pytest.fixture()
def fake_mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def failing_transport() -> FakeTransport:
    return FakeTransport(send_error="550 mailbox unavailable")


@pytest.fixture()
def transport_factory() -> type[FakeTransport]:
    return FakeTransport
