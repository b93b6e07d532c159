"""Outbound notification of task reports."""

from task_courier.notify.service import DeliveryError, NotificationConfigError, Notifier
from task_courier.notify.transport import (
    Attachment,
    OutboundMessage,
    OutboundTransport,
    SmtpTransport,
    TransportError,
)

__all__ = [
    "Attachment",
    "DeliveryError",
    "NotificationConfigError",
    "Notifier",
    "OutboundMessage",
    "OutboundTransport",
    "SmtpTransport",
    "TransportError",
]
