from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Sequence

from invoice_downloader.config import Config, ConfigError
from invoice_downloader.json_logger import JsonLogger, get_logger, log_event, new_run_id
from invoice_downloader.pipeline import run_pipeline
from invoice_downloader.session import SessionLifecycle, get_instance

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-downloader",
        description="Download amazon.com order invoices for a year and write a card transaction report",
        epilog="Example: invoice-downloader --email user@example.com --password mypass --year 2022",
    )
    parser.add_argument("--email", dest="email", type=str, default=None, help="Amazon account email")
    parser.add_argument("--password", dest="password", type=str, default=None, help="Amazon account password")
    parser.add_argument("--year", dest="year", type=int, default=None, help="Year to download invoices for")
    parser.add_argument(
        "--download-path", dest="download_path", type=Path, default=None, help="Directory to download invoices to"
    )
    parser.add_argument(
        "--headless",
        dest="headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the browser without a window (CAPTCHAs then cannot be solved)",
    )
    parser.add_argument(
        "--login-retries", dest="login_retries", type=int, default=None, help="Extra sign-in attempts without CAPTCHA"
    )
    parser.add_argument("--max-pages", dest="max_pages", type=int, default=None, help="Order history page limit")
    parser.add_argument(
        "--hold-on-error",
        dest="hold_on_error",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Keep the browser open after a failure until Ctrl+C",
    )
    parser.add_argument("--json-log-file", dest="json_log_file", type=str, default=None, help="Also append JSON logs here")
    parser.add_argument(
        "--verbose", dest="verbose", action=argparse.BooleanOptionalAction, default=None, help="Emit debug events"
    )
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    keys = (
        "email",
        "password",
        "year",
        "download_path",
        "headless",
        "login_retries",
        "max_pages",
        "hold_on_error",
        "json_log_file",
        "verbose",
    )
    return {key: getattr(args, key) for key in keys if getattr(args, key) is not None}


async def _hold_for_inspection(*, config: Config, lifecycle: SessionLifecycle, logger: JsonLogger) -> None:
    if not config.hold_on_error or config.headless or get_instance() is None:
        return
    log_event(
        logger=logger,
        phase="orchestrator",
        status="warn",
        message="Browser left open for inspection; press Ctrl+C to exit",
    )
    await lifecycle.hold_until_shutdown()


async def _run_async(args: argparse.Namespace) -> int:
    run_id = args.run_id or new_run_id()
    try:
        config = Config.load(_overrides(args))
    except ConfigError as exc:
        logger = get_logger(run_id=run_id)
        log_event(logger=logger, phase="prereq", status="error", message=str(exc))
        logger.close()
        return EXIT_CONFIG_ERROR

    logger = get_logger(run_id=run_id, log_file_path=config.json_log_file or None, verbose=config.verbose)
    lifecycle = SessionLifecycle(logger=logger)
    lifecycle.install_signal_handlers()
    try:
        await run_pipeline(config=config, logger=logger, lifecycle=lifecycle)
        return EXIT_OK
    except asyncio.CancelledError:
        if not lifecycle.shutdown_requested:
            raise
        await lifecycle.cleanup(force=True)
        log_event(
            logger=logger,
            phase="orchestrator",
            message="Shutdown complete",
            signal=lifecycle.shutdown_signal,
        )
        return EXIT_OK
    except Exception as exc:
        log_event(
            logger=logger,
            phase="orchestrator",
            status="error",
            message="Failed to download invoices",
            error=str(exc),
            exc_type=type(exc).__name__,
        )
        await _hold_for_inspection(config=config, lifecycle=lifecycle, logger=logger)
        await lifecycle.cleanup(force=True)
        return EXIT_RUN_FAILED
    finally:
        lifecycle.remove_signal_handlers()
        logger.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])
    return asyncio.run(_run_async(args))


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    run()
