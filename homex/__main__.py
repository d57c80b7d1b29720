"""Homex process entry-point.

Usage:
    python -m homex [serve]
    python -m homex sweep-expired
    python -m homex notify-expiring
    python -m homex purge-old [--days N]
    python -m homex purge-matching PATTERN
    python -m homex send-test-email [--to ADDRESS]

``serve`` (the default) runs the HTTP API with the expiry scheduler.  The
other commands run one maintenance operation against the configured
database and exit.

Logging is configured first so every later import logs correctly.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import pydantic

from homex.core import configure_logging
from homex.core.exceptions import ConfigError, PersistenceError, SchedulerError
from homex.core.settings import Settings

if TYPE_CHECKING:
    from homex.orchestrator.runner import Runtime

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homex",
        description="Healthy Home Exchange listings API and maintenance tasks.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log expiry notices instead of sending them.",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("serve", help="Run the HTTP API and the expiry scheduler (default).")
    sub.add_parser("sweep-expired", help="Delete listings past their expiration date.")
    sub.add_parser("notify-expiring", help="Email owners of listings expiring in about a week.")

    purge_old = sub.add_parser("purge-old", help="Delete listings created more than N days ago.")
    purge_old.add_argument("--days", type=int, default=60, help="Age in days (default: 60).")

    purge_matching = sub.add_parser(
        "purge-matching",
        help="Delete listings whose name contains PATTERN (case-insensitive).",
    )
    purge_matching.add_argument("pattern", help="Literal text to look for in listing names.")

    test_email = sub.add_parser("send-test-email", help="Send one test email and exit.")
    test_email.add_argument(
        "--to",
        default=None,
        metavar="ADDRESS",
        help="Recipient (default: EMAIL_FROM).",
    )
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _serve(settings: Settings) -> None:
    import uvicorn  # noqa: PLC0415

    from homex.api.app import create_app  # noqa: PLC0415
    from homex.orchestrator.runner import check_database  # noqa: PLC0415

    # Unreachable store at boot is fatal.
    asyncio.run(check_database(settings))

    logger.info(
        "Homex starting on %s:%d (env=%s)",
        settings.host,
        settings.port,
        settings.environment,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
    )


async def _with_service(
    settings: Settings,
    action: Callable[[Runtime], Awaitable[object]],
    *,
    verify_email: bool = False,
) -> object:
    from homex.orchestrator.runner import open_runtime  # noqa: PLC0415

    async with open_runtime(settings, verify_email=verify_email) as runtime:
        return await action(runtime)


async def _send_test_email(runtime: Runtime, to: str) -> bool:
    notifier = runtime.notifier
    if not notifier.is_ready():
        raise ConfigError(
            "Email transport not ready. Set SENDGRID_API_KEY and EMAIL_FROM in .env (or env vars)."
        )
    return await notifier.send_test_email(to)


def _run_command(args: argparse.Namespace, settings: Settings) -> int:
    command = args.command or "serve"

    if command == "serve":
        _serve(settings)
        return 0

    if command == "sweep-expired":
        deleted = asyncio.run(_with_service(settings, lambda rt: rt.service.delete_expired()))
        logger.info("Deleted %s expired listing(s).", deleted)
        return 0

    if command == "notify-expiring":
        result = asyncio.run(
            _with_service(settings, lambda rt: rt.service.notify_expiring(), verify_email=True)
        )
        logger.info("%s", result)
        return 0

    if command == "purge-old":
        deleted = asyncio.run(
            _with_service(settings, lambda rt: rt.service.purge_created_before(args.days))
        )
        logger.info("Deleted %s listing(s) older than %d days.", deleted, args.days)
        return 0

    if command == "purge-matching":
        deleted = asyncio.run(
            _with_service(settings, lambda rt: rt.service.purge_matching_name(args.pattern))
        )
        logger.info("Deleted %s listing(s) matching %r.", deleted, args.pattern)
        return 0

    if command == "send-test-email":
        to = args.to or settings.email_from
        if not to:
            raise ConfigError("No recipient: pass --to or set EMAIL_FROM.")
        ok = asyncio.run(
            _with_service(settings, lambda rt: _send_test_email(rt, to), verify_email=True)
        )
        logger.info("Test email to %s %s.", to, "sent" if ok else "FAILED")
        return 0 if ok else 1

    raise ConfigError(f"Unknown command: {command}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"homex: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    try:
        settings = Settings()
    except pydantic.ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    if args.dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    try:
        code = _run_command(args, settings)
    except (ConfigError, PersistenceError, SchedulerError) as exc:
        logger.critical("Startup failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    main()
