from __future__ import annotations

import asyncio

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from invoice_downloader import page_selectors
from invoice_downloader.json_logger import JsonLogger, log_event

PHASE = "login"
SIGNIN_TIMEOUT_MS = 30_000
CAPTCHA_PROBE_TIMEOUT_MS = 5_000
CAPTCHA_SOLVE_TIMEOUT_MS = 300_000

OUTCOME_SUCCESS = "success"
OUTCOME_CAPTCHA = "captcha"


class AuthError(RuntimeError):
    """Raised when sign-in cannot be confirmed."""


async def login(
    page: Page,
    *,
    email: str,
    password: str,
    logger: JsonLogger,
    retries: int = 0,
    signin_timeout_ms: int = SIGNIN_TIMEOUT_MS,
    captcha_probe_timeout_ms: int = CAPTCHA_PROBE_TIMEOUT_MS,
    captcha_solve_timeout_ms: int = CAPTCHA_SOLVE_TIMEOUT_MS,
) -> None:
    """Sign in on ``page`` or raise ``AuthError``.

    ``retries`` only applies to attempts that ended without a CAPTCHA and
    without the account menu; an unsolved CAPTCHA is always fatal.
    """

    if not email or not password:
        raise AuthError("Email and password are required to sign in")

    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        if await _attempt_login(
            page,
            email=email,
            password=password,
            logger=logger,
            signin_timeout_ms=signin_timeout_ms,
            captcha_probe_timeout_ms=captcha_probe_timeout_ms,
            captcha_solve_timeout_ms=captcha_solve_timeout_ms,
        ):
            log_event(logger=logger, phase=PHASE, message="Login completed successfully", attempt=attempt)
            return
        if attempt < attempts:
            log_event(
                logger=logger,
                phase=PHASE,
                status="warn",
                message="Login not confirmed; retrying",
                attempt=attempt,
                attempts=attempts,
            )

    log_event(logger=logger, phase=PHASE, status="error", message="Login failed", attempts=attempts)
    raise AuthError("Login failed - unable to verify successful login")


async def _attempt_login(
    page: Page,
    *,
    email: str,
    password: str,
    logger: JsonLogger,
    signin_timeout_ms: int,
    captcha_probe_timeout_ms: int,
    captcha_solve_timeout_ms: int,
) -> bool:
    log_event(logger=logger, phase=PHASE, message="Navigating to sign-in page")
    await page.goto(page_selectors.SIGNIN_URL, wait_until="domcontentloaded")

    log_event(logger=logger, phase=PHASE, message="Entering email")
    await page.fill(page_selectors.LOGIN_EMAIL, email)
    await page.click(page_selectors.LOGIN_CONTINUE)

    log_event(logger=logger, phase=PHASE, message="Entering password")
    await page.fill(page_selectors.LOGIN_PASSWORD, password)
    await page.click(page_selectors.LOGIN_SUBMIT)

    outcome = await _race_login_outcome(
        page,
        signin_timeout_ms=signin_timeout_ms,
        captcha_probe_timeout_ms=captcha_probe_timeout_ms,
    )

    if outcome == OUTCOME_CAPTCHA or (
        outcome is None and await page.is_visible(page_selectors.LOGIN_CAPTCHA)
    ):
        log_event(
            logger=logger,
            phase=PHASE,
            status="warn",
            message="CAPTCHA detected! Please solve the CAPTCHA manually.",
            timeout_ms=captcha_solve_timeout_ms,
        )
        try:
            await page.wait_for_selector(page_selectors.LOGIN_SUCCESS, timeout=captcha_solve_timeout_ms)
        except PlaywrightTimeoutError as exc:
            log_event(
                logger=logger,
                phase=PHASE,
                status="error",
                message="CAPTCHA was not solved in time",
                timeout_ms=captcha_solve_timeout_ms,
            )
            raise AuthError("CAPTCHA was not solved within the allowed time") from exc

    return await page.is_visible(page_selectors.LOGIN_SUCCESS)


async def _race_login_outcome(
    page: Page, *, signin_timeout_ms: int, captcha_probe_timeout_ms: int
) -> str | None:
    """Return whichever of the account menu or the CAPTCHA shows up first."""

    tasks = {
        asyncio.create_task(
            page.wait_for_selector(page_selectors.LOGIN_SUCCESS, timeout=signin_timeout_ms)
        ): OUTCOME_SUCCESS,
        asyncio.create_task(
            page.wait_for_selector(page_selectors.LOGIN_CAPTCHA, timeout=captcha_probe_timeout_ms)
        ): OUTCOME_CAPTCHA,
    }
    pending = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is None:
                    return tasks[task]
                if not isinstance(exc, PlaywrightTimeoutError):
                    raise exc
        return None
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
