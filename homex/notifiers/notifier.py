"""Expiry-notice delivery with a readiness gate.

Provides :class:`ExpiryNotifier`, the object the notification sweep calls
for each listing about to expire.  It is built once at startup and passed to
:class:`~homex.lifecycle.service.ListingService`; there is no module-level
transport state.

Readiness
---------
:meth:`ExpiryNotifier.start` verifies the email credentials once.  Until
that succeeds :meth:`is_ready` is ``False`` and the sweep skips itself with
a single warning instead of failing every send.  In dry-run mode the
notifier is ready without credentials and only logs what it would send.

Failure contract
----------------
:meth:`send_expiry_notice` returns ``False`` for any expected delivery
failure (rejected address, API down, retries exhausted).  It raises only for
programmer error, such as a listing without an email address.

Typical usage::

    client = EmailClient(api_key=settings.sendgrid_api_key, sender=settings.email_from)
    notifier = ExpiryNotifier(client)
    await notifier.start()

    if notifier.is_ready():
        delivered = await notifier.send_expiry_notice(listing)

    await notifier.close()
"""

from __future__ import annotations

import logging

from homex.core import events
from homex.core.exceptions import NotificationFailure
from homex.core.models import Listing
from homex.core.settings import Settings
from homex.notifiers.formatter import format_expiry_notice
from homex.notifiers.sendgrid import EmailClient

__all__ = ["ExpiryNotifier", "build_notifier"]

logger = logging.getLogger(__name__)


class ExpiryNotifier:
    """Sends "your listing is expiring soon" emails.

    Args:
        client: Email transport, or ``None`` when credentials are not
            configured (the notifier then never becomes ready unless
            *dry_run* is set).
        dry_run: Log formatted messages at ``INFO`` instead of sending.
    """

    def __init__(self, client: EmailClient | None, *, dry_run: bool = False) -> None:
        self._client = client
        self._dry_run = dry_run
        self._ready = False

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def start(self) -> bool:
        """Verify the transport and set the readiness flag.

        Never raises for a verification failure; the error is logged and
        the notifier stays not-ready.

        Returns:
            The resulting readiness.
        """
        if self._dry_run:
            self._ready = True
            logger.info("Email notifier in dry-run mode; notices will be logged only.")
            return True

        if self._client is None:
            self._ready = False
            logger.warning(
                "Email not configured (SENDGRID_API_KEY/EMAIL_FROM missing); "
                "expiry notices disabled."
            )
            return False

        try:
            await self._client.verify()
        except NotificationFailure as exc:
            self._ready = False
            logger.error("Email verification failed: %s", exc)
            return False

        self._ready = True
        logger.info("Email transport verified (sender=%s).", self._client.sender)
        return True

    def is_ready(self) -> bool:
        return self._ready

    async def send_expiry_notice(self, listing: Listing) -> bool:
        """Email the owner of *listing* that it is about to expire.

        Returns:
            ``True`` if the email API accepted the message (or, in dry-run,
            it was logged); ``False`` on any delivery failure.

        Raises:
            ValueError: If the listing has no email address.
        """
        message = format_expiry_notice(listing)

        if self._dry_run:
            logger.info(
                "[dry-run] Would email %s about listing %s\n%s",
                message.to,
                listing.id,
                message.text,
            )
            return True

        if not self._ready or self._client is None:
            logger.warning("Email transport not ready; skipping notice for %s", listing.id)
            return False

        try:
            message_id = await self._client.send(message.to, message.subject, message.text)
        except NotificationFailure as exc:
            logger.error(
                "Expiry notice for %s (%s) failed: %s",
                listing.id,
                message.to,
                exc,
                extra={"event": events.LISTING_NOTIFY_ERROR},
            )
            return False
        except Exception:
            logger.critical(
                "Unexpected error sending expiry notice for %s",
                listing.id,
                exc_info=True,
            )
            raise

        logger.info(
            "Expiry notice sent for %s (message id %s)",
            listing.id,
            message_id or "-",
            extra={"event": events.LISTING_NOTIFIED},
        )
        return True

    async def send_test_email(self, to: str) -> bool:
        """Send a one-line test message to *to*; used by the maintenance CLI."""
        if self._client is None:
            return False
        try:
            await self._client.send(to, "Homex test", "Test message from the Homex listings API.")
        except NotificationFailure as exc:
            logger.error("Test email to %s failed: %s", to, exc)
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def build_notifier(settings: Settings) -> ExpiryNotifier:
    """Construct the notifier described by *settings* (not yet started)."""
    client: EmailClient | None = None
    if settings.email_configured:
        client = EmailClient(
            api_key=settings.sendgrid_api_key,
            sender=settings.email_from,
            base_url=settings.email_api_base_url,
            timeout=settings.email_timeout,
        )
    return ExpiryNotifier(client, dry_run=settings.dry_run)
