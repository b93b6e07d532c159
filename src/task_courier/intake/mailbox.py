"""Inbound mailbox transport used by the intake stage."""

from __future__ import annotations

import imaplib
import logging
from typing import Protocol

from task_courier.config import MailboxSettings

logger = logging.getLogger(__name__)


class MailboxError(RuntimeError):
    """Mailbox connection or protocol failure; aborts the polling cycle."""


class Mailbox(Protocol):
    """Operations the intake stage needs from an inbound transport."""

    def __enter__(self) -> Mailbox:
        """Connect and select the task folder."""

    def __exit__(self, *exc_info: object) -> None:
        """Disconnect."""

    def search_unread(self, subject_marker: str) -> list[str]:
        """Return references of unread messages whose subject contains the marker."""

    def fetch(self, ref: str) -> bytes:
        """Return the full RFC 822 message without marking it read."""

    def mark_read(self, ref: str) -> None:
        """Flag the message as consumed upstream."""


class ImapMailbox:
    """IMAP4-over-SSL mailbox bound to one folder."""

    def __init__(self, settings: MailboxSettings) -> None:
        self.settings = settings
        self._client: imaplib.IMAP4_SSL | None = None

    def __enter__(self) -> ImapMailbox:
        logger.info("Connecting to IMAP server %s:%s", self.settings.host, self.settings.port)
        try:
            client = imaplib.IMAP4_SSL(
                self.settings.host,
                self.settings.port,
                timeout=self.settings.timeout_seconds,
            )
            client.login(self.settings.user, self.settings.password)
            status, _ = client.select(self.settings.folder, readonly=False)
        except (OSError, imaplib.IMAP4.error) as error:
            raise MailboxError(f"IMAP connection failed: {error}") from error
        if status != "OK":
            raise MailboxError(f"Cannot select mailbox folder {self.settings.folder!r}")
        self._client = client
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
            self._client.logout()
        except (OSError, imaplib.IMAP4.error) as error:
            logger.warning("IMAP logout failed: %s", error)
        finally:
            self._client = None

    def search_unread(self, subject_marker: str) -> list[str]:
        client = self._require_client()
        quoted = '"' + subject_marker.replace("\\", "\\\\").replace('"', '\\"') + '"'
        try:
            status, data = client.uid("SEARCH", None, "UNSEEN", "SUBJECT", quoted)
        except (OSError, imaplib.IMAP4.error) as error:
            raise MailboxError(f"IMAP search failed: {error}") from error
        if status != "OK":
            raise MailboxError(f"IMAP search returned {status}")
        if not data or not data[0]:
            return []
        return [uid.decode("ascii") for uid in data[0].split()]

    def fetch(self, ref: str) -> bytes:
        client = self._require_client()
        try:
            status, data = client.uid("FETCH", ref, "(BODY.PEEK[])")
        except (OSError, imaplib.IMAP4.error) as error:
            raise MailboxError(f"IMAP fetch failed for {ref}: {error}") from error
        if status != "OK":
            raise MailboxError(f"IMAP fetch returned {status} for {ref}")
        for item in data:
            if isinstance(item, tuple) and len(item) == 2 and isinstance(item[1], bytes):
                return item[1]
        raise MailboxError(f"IMAP fetch returned no message body for {ref}")

    def mark_read(self, ref: str) -> None:
        client = self._require_client()
        try:
            status, _ = client.uid("STORE", ref, "+FLAGS", "(\\Seen)")
        except (OSError, imaplib.IMAP4.error) as error:
            raise MailboxError(f"IMAP store failed for {ref}: {error}") from error
        if status != "OK":
            raise MailboxError(f"IMAP store returned {status} for {ref}")

    def _require_client(self) -> imaplib.IMAP4_SSL:
        if self._client is None:
            raise MailboxError("Not connected to IMAP server")
        return self._client
