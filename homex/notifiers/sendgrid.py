"""Transactional email API client for Homex.

Provides :class:`EmailClient`, a small async wrapper around the SendGrid v3
Web API.  It handles:

* A keep-alive :class:`httpx.AsyncClient` with an explicit timeout budget.
* Automatic retries with capped exponential back-off via :mod:`tenacity`.
* ``Retry-After`` header honoring on HTTP 429 responses.
* Credential verification (``GET /v3/scopes``) used as the readiness check.
* Mapping of every delivery problem to
  :class:`~homex.core.exceptions.NotificationFailure`.

This module owns *transport* concerns only.  Message wording lives in
:mod:`homex.notifiers.formatter`; the readiness gate and failure isolation
live in :mod:`homex.notifiers.notifier`.

Typical usage::

    async with EmailClient(api_key="SG.xxx", sender="noreply@example.com") as client:
        await client.verify()
        await client.send("owner@example.com", "Subject", "Body")
"""

from __future__ import annotations

import logging
import random
from typing import Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from homex.core.exceptions import NotificationFailure

__all__ = ["EmailClient", "EmailRateLimitError"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_BASE_URL: Final[str] = "https://api.sendgrid.com"

#: HTTP status codes that indicate a transient server error and are safe to retry.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Connection-establishment timeout in seconds.
_DEFAULT_CONNECT_TIMEOUT: Final[float] = 5.0

#: Default total send attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

_MAX_BACKOFF_JITTER: Final[float] = 2.0
_MAX_BACKOFF_BASE: Final[float] = 30.0


# ---------------------------------------------------------------------------
# Retry signalling
# ---------------------------------------------------------------------------


class EmailRateLimitError(NotificationFailure):
    """HTTP 429 from the email API.

    Args:
        retry_after: Seconds to wait before retrying, as reported by the API.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limited, retry after {retry_after}s", status_code=429)


class _RetryableServerError(NotificationFailure):
    """Internal sentinel raised on 5xx to trigger a tenacity retry."""


def _email_wait(retry_state: RetryCallState) -> float:
    """Honour ``Retry-After`` on 429, otherwise exponential back-off + jitter."""
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, EmailRateLimitError) and exc.retry_after > 0:
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class EmailClient:
    """Async SendGrid client with timeout budget and automatic retries.

    Manages a single :class:`httpx.AsyncClient` for the object lifetime.
    Use as an ``async with`` context manager, or call :meth:`close`.

    Args:
        api_key: API key sent as a bearer token (non-empty).
        sender: ``From`` address for every message (non-empty).
        base_url: API root.  Defaults to the public SendGrid endpoint.
        timeout: Read/write timeout in seconds.
        max_attempts: Total send attempts including the initial try (≥ 1).
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`.

    Raises:
        ValueError: If ``api_key``, ``sender`` or ``max_attempts`` are invalid.
    """

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: float = 10.0,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("EmailClient requires a non-empty api_key.")
        if not sender:
            raise ValueError("EmailClient requires a non-empty sender.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._api_key = api_key
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._transport = transport
        self._timeout = httpx.Timeout(
            connect=_DEFAULT_CONNECT_TIMEOUT,
            read=timeout,
            write=timeout,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    @property
    def sender(self) -> str:
        return self._sender

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> EmailClient:
        await self._ensure_http_client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def verify(self) -> None:
        """Check that the API key is accepted by the email API.

        Raises:
            NotificationFailure: If the key is rejected or the API is
                unreachable.
        """
        client = await self._ensure_http_client()
        try:
            response = await client.get("/v3/scopes")
        except httpx.HTTPError as exc:
            raise NotificationFailure(f"email API unreachable: {exc}") from exc
        if response.status_code != 200:
            raise NotificationFailure(
                _extract_description(response), status_code=response.status_code
            )
        logger.debug("Email API credentials verified.")

    async def send(self, to: str, subject: str, text: str) -> str | None:
        """Send a plain-text email to one recipient.

        Retries on transport errors, HTTP 429 and HTTP 5xx.

        Returns:
            The provider message id (``X-Message-Id`` header), if any.

        Raises:
            NotificationFailure: When the message was not accepted after all
                attempts, or was rejected outright (4xx).
        """
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self._sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": text}],
        }
        try:
            return await self._send_with_retry(payload)
        except httpx.HTTPError as exc:
            raise NotificationFailure(f"email API unreachable: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("EmailClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "User-Agent": "homex/1.0",
                },
                transport=self._transport,
            )
            logger.debug("EmailClient HTTP session opened.")
        return self._http

    async def _send_with_retry(self, payload: dict[str, object]) -> str | None:
        retry_types = (EmailRateLimitError, _RetryableServerError, httpx.TransportError)

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Email send attempt %d/%d failed (%s), retrying",
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        message_id: str | None = None
        async for attempt in AsyncRetrying(
            wait=_email_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(retry_types),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                message_id = await self._single_attempt(payload)
        return message_id

    async def _single_attempt(self, payload: dict[str, object]) -> str | None:
        client = await self._ensure_http_client()
        response = await client.post("/v3/mail/send", json=payload)
        logger.debug("Email API response: HTTP %d", response.status_code)

        if response.status_code in (200, 202):
            return response.headers.get("x-message-id")

        if response.status_code == 429:
            raise EmailRateLimitError(retry_after=_parse_retry_after(response))

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                f"Transient server error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        raise NotificationFailure(_extract_description(response), status_code=response.status_code)


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _parse_retry_after(response: httpx.Response) -> float:
    """Seconds from the ``Retry-After`` header, at least 1.0."""
    header = response.headers.get("retry-after", "")
    try:
        return max(float(header), 1.0)
    except ValueError:
        return 1.0


def _extract_description(response: httpx.Response) -> str:
    """First ``errors[].message`` from a SendGrid error body, else raw text."""
    try:
        errors = response.json().get("errors") or []
        if errors and errors[0].get("message"):
            return str(errors[0]["message"])
    except Exception:  # noqa: BLE001
        pass
    return response.text or f"HTTP {response.status_code}"
