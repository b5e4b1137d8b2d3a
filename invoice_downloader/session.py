"""Ownership of the single browser session for a run.

``SessionLifecycle`` is the only writer of the process-wide session slot;
everything else reads it through ``get_instance()``. Each browser resource is
closed at most once, whichever of the graceful path, the error handler or a
signal-triggered shutdown gets there first.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from playwright.async_api import async_playwright

from invoice_downloader.browser import VIEWPORT, launch_browser
from invoice_downloader.config import Config
from invoice_downloader.json_logger import JsonLogger, log_event

PHASE = "session"
RESOURCES = ("page", "context", "browser", "playwright")
HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_ACTIVE_SESSION: BrowserSession | None = None


@dataclass
class BrowserSession:
    playwright: Any
    browser: Any
    context: Any
    page: Any
    closed_resources: set[str] = field(default_factory=set)

    @property
    def closed(self) -> bool:
        return self.closed_resources.issuperset(RESOURCES)

    def closer(self, resource: str) -> Callable[[], Awaitable[None]]:
        if resource == "playwright":
            return self.playwright.stop
        return getattr(self, resource).close


def get_instance() -> BrowserSession | None:
    """Return the live session, if any, for out-of-band callers."""

    return _ACTIVE_SESSION


class SessionLifecycle:
    def __init__(
        self,
        *,
        logger: JsonLogger,
        playwright_factory: Callable[[], Any] = async_playwright,
        launcher: Callable[..., Awaitable[Any]] = launch_browser,
    ) -> None:
        self.logger = logger
        self._playwright_factory = playwright_factory
        self._launcher = launcher
        self._cleanup_lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()
        self._installed_signals: list[signal.Signals] = []
        self._signal_target: asyncio.Task | None = None
        self.shutdown_signal: str | None = None

    @property
    def shutdown_requested(self) -> bool:
        return self.shutdown_signal is not None

    async def create(self, config: Config) -> BrowserSession:
        global _ACTIVE_SESSION

        existing = _ACTIVE_SESSION
        if existing is not None and not existing.closed:
            log_event(
                logger=self.logger,
                phase=PHASE,
                status="warn",
                message="Attempted to create a new session while one already exists",
            )
            return existing
        if existing is not None:
            log_event(logger=self.logger, phase=PHASE, message="Replacing closed browser session")

        config.download_path.mkdir(parents=True, exist_ok=True)

        playwright = await self._playwright_factory().start()
        browser = None
        try:
            browser = await self._launcher(playwright=playwright, config=config, logger=self.logger)
            context = await browser.new_context(viewport=VIEWPORT, accept_downloads=True)
            page = await context.new_page()
        except BaseException:
            if browser is not None:
                with contextlib.suppress(Exception):
                    await browser.close()
            with contextlib.suppress(Exception):
                await playwright.stop()
            raise

        _ACTIVE_SESSION = BrowserSession(playwright=playwright, browser=browser, context=context, page=page)
        log_event(logger=self.logger, phase=PHASE, message="Browser session opened", headless=config.headless)
        return _ACTIVE_SESSION

    async def cleanup(self, *, force: bool = False) -> None:
        """Close whatever is still open. Failures are logged, never raised.

        ``force`` also releases the process-wide slot so a later ``create``
        starts fresh. Signals arriving during teardown only flag the shutdown;
        a cancellation that still lands mid-loop is re-raised once every
        resource has been closed.
        """

        global _ACTIVE_SESSION

        self._signal_target = None
        cancelled: asyncio.CancelledError | None = None
        async with self._cleanup_lock:
            session = _ACTIVE_SESSION
            if session is not None:
                for resource in RESOURCES:
                    if resource in session.closed_resources:
                        continue
                    session.closed_resources.add(resource)
                    try:
                        await session.closer(resource)()
                    except asyncio.CancelledError as exc:
                        cancelled = exc
                    except Exception as exc:
                        log_event(
                            logger=self.logger,
                            phase=PHASE,
                            status="error",
                            message="Error during cleanup",
                            resource=resource,
                            error=str(exc),
                        )
            if force:
                _ACTIVE_SESSION = None
                self.remove_signal_handlers()
            log_event(logger=self.logger, phase=PHASE, message="Cleanup completed", forced=force)
        if cancelled is not None:
            raise cancelled

    def install_signal_handlers(self, task: asyncio.Task | None = None) -> None:
        """Route SIGINT/SIGTERM to a cancellation of ``task`` (default: current task)."""

        loop = asyncio.get_running_loop()
        self._signal_target = task or asyncio.current_task()
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Some environments (e.g. Windows) do not support custom signal handlers.
                log_event(
                    logger=self.logger,
                    phase=PHASE,
                    status="warn",
                    message="Signal handlers unavailable; interrupts will not trigger cleanup",
                    signal=sig.name,
                )
                continue
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        if not self._installed_signals:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self.shutdown_requested:
            log_event(
                logger=self.logger,
                phase=PHASE,
                status="warn",
                message="Shutdown already in progress",
                signal=sig.name,
            )
            return
        self.shutdown_signal = sig.name
        log_event(logger=self.logger, phase=PHASE, message=f"Received {sig.name}. Cleaning up...")
        self._shutdown_event.set()
        task = self._signal_target
        if task is not None and not task.done():
            task.cancel()

    async def hold_until_shutdown(self) -> str | None:
        """Wait for SIGINT/SIGTERM without cancelling the waiting task."""

        self._signal_target = None
        await self._shutdown_event.wait()
        return self.shutdown_signal

