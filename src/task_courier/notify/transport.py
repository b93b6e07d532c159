"""Outbound mail transport."""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol

from task_courier import __version__
from task_courier.config import SmtpSettings

logger = logging.getLogger(__name__)

_PLAIN_FALLBACK = "This report is HTML only. Open it in an HTML-capable mail client.\n"


class TransportError(RuntimeError):
    """SMTP connection, authentication or send failure."""


@dataclass(frozen=True, slots=True)
class Attachment:
    """File attached to an outbound message."""

    filename: str
    data: bytes
    content_type: str


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """Message handed to the transport."""

    recipient: str
    subject: str
    html: str
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)


class OutboundTransport(Protocol):
    """Operations the notifier needs from a mail relay."""

    def verify(self) -> None:
        """Raise ``TransportError`` unless the relay accepts a session."""

    def send(self, message: OutboundMessage) -> str:
        """Send and return the provider message id."""


class SmtpTransport:
    """SMTP relay client with STARTTLS or implicit TLS."""

    def __init__(self, settings: SmtpSettings) -> None:
        self.settings = settings

    @property
    def sender_address(self) -> str:
        return self.settings.user

    def verify(self) -> None:
        client = self._connect()
        try:
            status, _ = client.noop()
        except (smtplib.SMTPException, OSError) as error:
            raise TransportError(f"SMTP verification failed: {error}") from error
        finally:
            _quit(client)
        if status != 250:
            raise TransportError(f"SMTP server answered NOOP with {status}")
        logger.info("SMTP server connection verified")

    def send(self, message: OutboundMessage) -> str:
        mime = self.build_mime(message)
        client = self._connect()
        try:
            client.send_message(mime)
        except (smtplib.SMTPException, OSError) as error:
            raise TransportError(f"SMTP send failed: {error}") from error
        finally:
            _quit(client)
        return str(mime["Message-ID"])

    def build_mime(self, message: OutboundMessage) -> EmailMessage:
        mime = EmailMessage()
        mime["From"] = formataddr((self.settings.sender_name, self.sender_address))
        mime["To"] = message.recipient
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid(domain=_sender_domain(self.sender_address))
        mime["X-Mailer"] = f"task-courier {__version__}"
        mime.set_content(_PLAIN_FALLBACK)
        mime.add_alternative(message.html, subtype="html")
        for attachment in message.attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            mime.add_attachment(
                attachment.data,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return mime

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        context = ssl.create_default_context()
        try:
            if settings.use_ssl:
                client: smtplib.SMTP = smtplib.SMTP_SSL(
                    settings.host,
                    settings.port,
                    timeout=settings.timeout_seconds,
                    context=context,
                )
            else:
                client = smtplib.SMTP(
                    settings.host,
                    settings.port,
                    timeout=settings.timeout_seconds,
                )
                if settings.use_starttls:
                    client.starttls(context=context)
            if settings.user:
                client.login(settings.user, settings.password)
        except (smtplib.SMTPException, OSError) as error:
            raise TransportError(
                f"SMTP connection to {settings.host}:{settings.port} failed: {error}",
            ) from error
        return client


def _quit(client: smtplib.SMTP) -> None:
    try:
        client.quit()
    except (smtplib.SMTPException, OSError):
        client.close()


def _sender_domain(address: str) -> str | None:
    _, _, domain = address.rpartition("@")
    return domain or None
