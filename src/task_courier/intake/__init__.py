"""Mailbox intake with fingerprint deduplication."""

from task_courier.intake.mailbox import ImapMailbox, Mailbox, MailboxError
from task_courier.intake.parser import TaskParseError, build_task_record, parse_task_body
from task_courier.intake.seen_set import SeenSetStore
from task_courier.intake.service import IntakeService, IntakeSummary

__all__ = [
    "ImapMailbox",
    "IntakeService",
    "IntakeSummary",
    "Mailbox",
    "MailboxError",
    "SeenSetStore",
    "TaskParseError",
    "build_task_record",
    "parse_task_body",
]
