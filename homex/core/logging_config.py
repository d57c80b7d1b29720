"""Process-wide logging setup for the Homex service and its CLI.

Two kinds of work produce log lines, and each gets its own correlation id
so a reader can pull one thread out of the interleaved output:

* HTTP requests: :class:`~homex.api.middleware.RequestContextMiddleware` binds
  the request's ``X-Request-ID`` (client supplied or a fresh UUID).
* Scheduled sweeps: :class:`~homex.orchestrator.scheduler.ExpiryScheduler`
  binds an 8-character hex run id for the duration of one job run.

Both write to :data:`CORRELATION_ID_CTX`; the handler installed by
:func:`configure_logging` stamps the value onto every record.

Environment fallbacks (used when no explicit argument is given)::

    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import IO, Any

__all__ = [
    "configure_logging",
    "JsonFormatter",
    "CORRELATION_ID_CTX",
    "CorrelationContextFilter",
]

#: Request id or sweep run id of the work currently executing.  ``"-"`` when
#: neither is active (startup, shutdown, one-shot CLI commands).
CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="-")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS = ("text", "json")

_TEXT_LAYOUT = "%(asctime)s %(levelname)-8s [%(correlation_id)s] %(name)s: %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that log per-request or per-tick chatter at INFO.
_QUIET_BELOW_DEBUG = ("httpx", "httpcore", "asyncio", "apscheduler", "uvicorn.access")

# Marks the handler this module installs so reconfiguration can find it.
_HANDLER_NAME = "homex"


class CorrelationContextFilter(logging.Filter):
    """Copy :data:`CORRELATION_ID_CTX` onto ``record.correlation_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.correlation_id = CORRELATION_ID_CTX.get()
        return True


def _pick(value: str | None, env: str, default: str, allowed: tuple[str, ...]) -> str:
    raw = (value or os.environ.get(env) or default).strip()
    for name in allowed:
        if name.lower() == raw.lower():
            return name
    raise ValueError(f"Unknown {env} {raw!r}; expected one of {', '.join(allowed)}")


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """Install the Homex handler on the root logger.

    Safe to call more than once.  A repeat call only changes the level,
    unless *force* is set, in which case the handler is rebuilt (this is how
    tests switch format or stream).  Handlers installed by someone else,
    such as pytest's capture handler, are left in place.

    Args:
        level: Level name.  Falls back to ``$LOG_LEVEL``, then ``INFO``.
        fmt: ``"text"`` or ``"json"``.  Falls back to ``$LOG_FORMAT``,
            then ``"text"``.
        force: Rebuild the handler even if one is already installed.
        stream: Destination; defaults to ``sys.stderr``.

    Raises:
        ValueError: If *level* or *fmt* is not recognised.
    """
    level_name = _pick(level, "LOG_LEVEL", "INFO", LEVELS)
    fmt_name = _pick(fmt, "LOG_FORMAT", "text", FORMATS)

    root = logging.getLogger()
    root.setLevel(level_name)

    ours = [h for h in root.handlers if h.get_name() == _HANDLER_NAME]
    if ours and not force:
        for h in ours:
            h.setLevel(level_name)
    else:
        for h in ours:
            root.removeHandler(h)
            h.close()
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setLevel(level_name)
        handler.addFilter(CorrelationContextFilter())
        if fmt_name == "json":
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(_TEXT_LAYOUT, datefmt=_TEXT_DATEFMT))
        root.addHandler(handler)

    quiet_level = logging.NOTSET if level_name == "DEBUG" else logging.WARNING
    for name in _QUIET_BELOW_DEBUG:
        logging.getLogger(name).setLevel(quiet_level)


# ---------------------------------------------------------------------------
# JSON lines
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_BUILTIN_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "correlation_id",
    "event",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers.

    ``correlationId`` and ``event`` sit at the top level so a sweep run or
    a single request can be filtered without digging into ``extra``::

        {"ts": "2026-10-18T01:00:00.412+00:00", "level": "INFO",
         "logger": "homex.lifecycle.service", "correlationId": "9c41d07e",
         "event": "SWEEP_COMPLETE",
         "message": "Notification sweep complete: 2 selected, 2 sent, 0 failed in 0.31s",
         "extra": {}}
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "correlationId": getattr(record, "correlation_id", CORRELATION_ID_CTX.get()),
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
            "extra": {k: v for k, v in vars(record).items() if k not in _BUILTIN_ATTRS},
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)
