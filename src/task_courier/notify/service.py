"""Report delivery over an outbound transport with an append-only audit trail."""

from __future__ import annotations

import logging
import traceback
from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment, select_autoescape

from task_courier.config import StateLayout
from task_courier.contracts import append_ndjson
from task_courier.models import DeliveryReceipt
from task_courier.notify.transport import (
    Attachment,
    OutboundMessage,
    OutboundTransport,
    TransportError,
)
from task_courier.report.templates import TEST_MESSAGE_TEMPLATE

logger = logging.getLogger(__name__)

SENT_AUDIT_FILE = "email-sent.log"
ERROR_AUDIT_FILE = "email-errors.log"
LOG_CONTENT_TYPE = "application/json"
REPORT_CONTENT_TYPE = "text/html"
TEST_SUBJECT = "task-courier delivery test"


class NotificationConfigError(ValueError):
    """Recipient or body missing; the message cannot be built."""


class DeliveryError(RuntimeError):
    """Transport verification or send failed."""


class Notifier:
    """Sends rendered reports with the most recent logs attached."""

    def __init__(
        self,
        *,
        transport: OutboundTransport,
        layout: StateLayout,
        max_log_attachments: int = 3,
    ) -> None:
        self.transport = transport
        self.layout = layout
        self.max_log_attachments = max_log_attachments

    @property
    def sent_audit_path(self) -> Path:
        return self.layout.audit_dir / SENT_AUDIT_FILE

    @property
    def error_audit_path(self) -> Path:
        return self.layout.audit_dir / ERROR_AUDIT_FILE

    def deliver(self, *, html: str, subject: str, recipient: str) -> DeliveryReceipt:
        """Verify the transport, attach recent artifacts and send one message.

        Raises ``NotificationConfigError`` before any network activity when the
        recipient or body is empty, and ``DeliveryError`` when the transport
        fails. Both outcomes of a real send attempt land in the audit logs.
        """

        if not recipient.strip():
            raise NotificationConfigError("Recipient e-mail address is required")
        if not html.strip():
            raise NotificationConfigError("Report HTML body is empty")

        attachments = self.gather_attachments()
        message = OutboundMessage(
            recipient=recipient,
            subject=subject,
            html=html,
            attachments=tuple(attachments),
        )
        try:
            self.transport.verify()
            message_id = self.transport.send(message)
        except TransportError as error:
            self._audit_failure(error)
            logger.error("Failed to send report to %s: %s", recipient, error)
            raise DeliveryError(str(error)) from error

        sent_at = datetime.now(tz=UTC).isoformat()
        self._audit(
            self.sent_audit_path,
            {
                "timestamp": sent_at,
                "recipient": recipient,
                "subject": subject,
                "message_id": message_id,
                "status": "sent",
            },
        )
        logger.info("Report sent to %s (%s)", recipient, message_id)
        return DeliveryReceipt(
            message_id=message_id,
            recipient=recipient,
            subject=subject,
            attachments=tuple(item.filename for item in attachments),
            sent_at=sent_at,
        )

    def send_test_message(self, recipient: str) -> DeliveryReceipt:
        """Send a fixed probe message to check SMTP settings."""

        env = Environment(autoescape=select_autoescape(default_for_string=True))
        html = env.from_string(TEST_MESSAGE_TEMPLATE).render(
            sent_at=datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S"),
        )
        return self.deliver(html=html, subject=TEST_SUBJECT, recipient=recipient)

    def gather_attachments(self) -> list[Attachment]:
        """Collect recent logs and the newest report; failures shrink the list."""

        attachments: list[Attachment] = []
        for directory, pattern, limit, content_type in (
            (self.layout.logs_dir, "*.log", self.max_log_attachments, LOG_CONTENT_TYPE),
            (self.layout.reports_dir, "*.html", 1, REPORT_CONTENT_TYPE),
        ):
            try:
                paths = _newest(directory, pattern, limit)
            except OSError as error:
                logger.warning("Cannot list %s in %s: %s", pattern, directory, error)
                continue
            for path in paths:
                try:
                    data = path.read_bytes()
                except OSError as error:
                    logger.warning("Skipping attachment %s: %s", path, error)
                    continue
                attachments.append(
                    Attachment(filename=path.name, data=data, content_type=content_type),
                )
        return attachments

    def _audit_failure(self, error: BaseException) -> None:
        self._audit(
            self.error_audit_path,
            {
                "timestamp": datetime.now(tz=UTC).isoformat(),
                "error": str(error),
                "stack": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__),
                ),
                "status": "failed",
            },
        )

    def _audit(self, path: Path, record: dict[str, str]) -> None:
        try:
            append_ndjson(path, record)
        except OSError as error:
            logger.warning("Cannot append audit record to %s: %s", path, error)


def _newest(directory: Path, pattern: str, limit: int) -> list[Path]:
    if limit <= 0 or not directory.is_dir():
        return []
    stamped: list[tuple[float, Path]] = []
    for path in directory.glob(pattern):
        try:
            if not path.is_file():
                continue
            stamped.append((path.stat().st_mtime, path))
        except FileNotFoundError:
            continue
    stamped.sort(key=lambda item: (item[0], item[1].name), reverse=True)
    return [path for _, path in stamped[:limit]]
