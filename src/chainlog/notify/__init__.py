"""Notifications for security-relevant account changes."""

from .delivery import Delivery, Envelope, LogDelivery, WebhookDelivery
from .models import Audience, Notification
from .notifier import Notifier

__all__ = [
    "Audience",
    "Delivery",
    "Envelope",
    "LogDelivery",
    "Notification",
    "Notifier",
    "WebhookDelivery",
]
