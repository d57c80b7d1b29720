"""Expiry-notice delivery: email transport, formatting and readiness gate."""

from homex.notifiers.formatter import EmailMessage, format_expiry_notice
from homex.notifiers.notifier import ExpiryNotifier, build_notifier
from homex.notifiers.sendgrid import EmailClient, EmailRateLimitError

__all__ = [
    "ExpiryNotifier",
    "build_notifier",
    "EmailClient",
    "EmailRateLimitError",
    "EmailMessage",
    "format_expiry_notice",
]
