from __future__ import annotations

from invoice_downloader.auth import login
from invoice_downloader.config import Config
from invoice_downloader.crawler import CrawlSummary, crawl
from invoice_downloader.json_logger import JsonLogger, log_event, timed_event
from invoice_downloader.report import write_report
from invoice_downloader.session import SessionLifecycle

PHASE = "orchestrator"


async def run_pipeline(*, config: Config, logger: JsonLogger, lifecycle: SessionLifecycle) -> CrawlSummary:
    """Open a session, sign in, crawl the year, write the report, tear down.

    Any failure after the session opens is re-raised with the browser left
    open so the page can be inspected; the caller decides when to force the
    teardown.
    """

    log_event(logger=logger, phase=PHASE, message="Starting invoice download run", **config.redacted())

    with timed_event(logger=logger, phase="init", message="Browser session ready"):
        session = await lifecycle.create(config)

    try:
        with timed_event(logger=logger, phase="login", message="Signed in"):
            await login(
                session.page,
                email=config.email,
                password=config.password,
                logger=logger,
                retries=config.login_retries,
                captcha_solve_timeout_ms=config.captcha_solve_timeout_s * 1000,
            )

        summary = await crawl(
            session,
            year=config.year,
            download_dir=config.download_path,
            logger=logger,
            max_pages=config.max_pages,
        )

        summary.report_path = write_report(
            summary.transactions, config.download_path, config.year, logger=logger
        )
    except Exception as exc:
        log_event(
            logger=logger,
            phase=PHASE,
            status="error",
            message="Error during execution; keeping browser open",
            error=str(exc),
            exc_type=type(exc).__name__,
        )
        raise

    await lifecycle.cleanup(force=False)
    log_event(
        logger=logger,
        phase=PHASE,
        message="Invoice download run complete",
        captured=summary.captured,
        skipped=summary.skipped,
        failed=summary.failed,
        transactions=len(summary.transactions),
        report_path=summary.report_path,
    )
    return summary
