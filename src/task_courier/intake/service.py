"""Deduplicated task intake from the inbound mailbox."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser

from task_courier.intake.mailbox import Mailbox
from task_courier.intake.parser import TaskParseError, build_task_record, message_fingerprint
from task_courier.intake.seen_set import SeenSetStore
from task_courier.models import TaskRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IntakeSummary:
    """Counters for one polling cycle."""

    matched: int = 0
    duplicates: int = 0
    parse_failures: int = 0
    tasks: list[TaskRecord] = field(default_factory=list)


class IntakeService:
    """Polls the mailbox once and turns new task messages into task records."""

    def __init__(
        self,
        *,
        mailbox: Mailbox,
        seen_set: SeenSetStore,
        subject_marker: str = "TASK:",
    ) -> None:
        self.mailbox = mailbox
        self.seen_set = seen_set
        self.subject_marker = subject_marker

    def poll(self) -> IntakeSummary:
        """Run one cycle; mailbox errors propagate and abort the cycle.

        Messages are marked read only once the whole batch has been fetched, so
        an aborted cycle leaves the mailbox and the seen set as they were.
        """

        seen = self.seen_set.load()
        summary = IntakeSummary()
        consumed: list[str] = []
        with self.mailbox as mailbox:
            refs = mailbox.search_unread(self.subject_marker)
            summary.matched = len(refs)
            if not refs:
                logger.info("No new task emails found")
            for ref in refs:
                raw = mailbox.fetch(ref)
                if self._consume(ref=ref, raw=raw, seen=seen, summary=summary):
                    consumed.append(ref)
            for ref in consumed:
                mailbox.mark_read(ref)

        self.seen_set.save(seen)
        logger.info(
            "Intake cycle finished: matched=%d new=%d duplicates=%d parse_failures=%d",
            summary.matched,
            len(summary.tasks),
            summary.duplicates,
            summary.parse_failures,
        )
        return summary

    def _consume(
        self,
        *,
        ref: str,
        raw: bytes,
        seen: set[str],
        summary: IntakeSummary,
    ) -> bool:
        """Record the outcome of one message; True when it should be marked read."""

        try:
            message = _parse_message(raw)
            fingerprint = message_fingerprint(message, raw)
        except (TaskParseError, ValueError, LookupError) as error:
            summary.parse_failures += 1
            logger.warning("Skipping unparseable message %s: %s", ref, error)
            return False

        if fingerprint in seen:
            summary.duplicates += 1
            logger.info("Email %s already processed, skipping", fingerprint)
            return True

        try:
            task = build_task_record(message, subject_marker=self.subject_marker)
        except TaskParseError as error:
            summary.parse_failures += 1
            logger.warning("Skipping task email %s: %s", fingerprint, error)
            return False

        seen.add(fingerprint)
        summary.tasks.append(task)
        logger.info("Parsed new task %s: %s", task.id, task.description)
        return True


def _parse_message(raw: bytes) -> EmailMessage:
    message = BytesParser(policy=policy.default).parsebytes(raw)
    if not isinstance(message, EmailMessage):
        raise TaskParseError("Parser did not return an EmailMessage")
    return message
