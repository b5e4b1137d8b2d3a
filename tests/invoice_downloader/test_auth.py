from __future__ import annotations

import asyncio
import io
import json

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from invoice_downloader import page_selectors
from invoice_downloader.auth import AuthError, login
from invoice_downloader.json_logger import JsonLogger

OK = "ok"
TIMEOUT = "timeout"
HANG = "hang"


class _FakeLoginPage:
    """Scripted stand-in for the sign-in page.

    ``waits`` maps a selector to the results of successive ``wait_for_selector``
    calls; the last entry repeats. ``visible`` does the same for ``is_visible``.
    """

    def __init__(self, *, waits: dict[str, list], visible: dict[str, list[bool]] | None = None) -> None:
        self.waits = {selector: list(results) for selector, results in waits.items()}
        self.visible = {selector: list(results) for selector, results in (visible or {}).items()}
        self.actions: list[tuple] = []
        self.wait_calls: list[tuple[str, int | None]] = []
        self.cancelled_waits: list[str] = []

    @staticmethod
    def _next(results: list):
        return results.pop(0) if len(results) > 1 else results[0]

    async def goto(self, url: str, **kwargs) -> None:
        self.actions.append(("goto", url))

    async def fill(self, selector: str, value: str) -> None:
        self.actions.append(("fill", selector, value))

    async def click(self, selector: str) -> None:
        self.actions.append(("click", selector))

    async def wait_for_selector(self, selector: str, timeout: int | None = None):
        self.wait_calls.append((selector, timeout))
        result = self._next(self.waits.get(selector, [TIMEOUT]))
        if result == HANG:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled_waits.append(selector)
                raise
        await asyncio.sleep(0)
        if result == TIMEOUT:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        if isinstance(result, Exception):
            raise result
        return object()

    async def is_visible(self, selector: str) -> bool:
        return self._next(self.visible.get(selector, [False]))


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


async def _login(page: _FakeLoginPage, stream: io.StringIO, **kwargs) -> None:
    await login(
        page,
        email=kwargs.pop("email", "user@example.com"),
        password=kwargs.pop("password", "secret"),
        logger=JsonLogger(stream=stream),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_login_success_without_captcha() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [OK], page_selectors.LOGIN_CAPTCHA: [HANG]},
        visible={page_selectors.LOGIN_SUCCESS: [True]},
    )
    stream = io.StringIO()

    await _login(page, stream)

    assert page.actions == [
        ("goto", page_selectors.SIGNIN_URL),
        ("fill", page_selectors.LOGIN_EMAIL, "user@example.com"),
        ("click", page_selectors.LOGIN_CONTINUE),
        ("fill", page_selectors.LOGIN_PASSWORD, "secret"),
        ("click", page_selectors.LOGIN_SUBMIT),
    ]
    assert _events(stream)[-1]["message"] == "Login completed successfully"
    assert not any(e["status"] == "warn" for e in _events(stream))
    assert page.cancelled_waits == [page_selectors.LOGIN_CAPTCHA]


@pytest.mark.asyncio
async def test_captcha_waits_for_manual_solve() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [HANG, OK], page_selectors.LOGIN_CAPTCHA: [OK]},
        visible={page_selectors.LOGIN_SUCCESS: [True]},
    )
    stream = io.StringIO()

    await _login(page, stream, captcha_solve_timeout_ms=120_000)

    assert (page_selectors.LOGIN_SUCCESS, 120_000) in page.wait_calls
    warning = next(e for e in _events(stream) if e["status"] == "warn")
    assert warning["message"] == "CAPTCHA detected! Please solve the CAPTCHA manually."
    assert _events(stream)[-1]["message"] == "Login completed successfully"


@pytest.mark.asyncio
async def test_unsolved_captcha_is_fatal() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [HANG, TIMEOUT], page_selectors.LOGIN_CAPTCHA: [OK]},
    )

    with pytest.raises(AuthError, match="CAPTCHA was not solved"):
        await _login(page, io.StringIO(), retries=3)

    goto_calls = [action for action in page.actions if action[0] == "goto"]
    assert len(goto_calls) == 1


@pytest.mark.asyncio
async def test_late_captcha_is_detected_after_probe_window() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [TIMEOUT, OK], page_selectors.LOGIN_CAPTCHA: [TIMEOUT]},
        visible={page_selectors.LOGIN_CAPTCHA: [True], page_selectors.LOGIN_SUCCESS: [True]},
    )
    stream = io.StringIO()

    await _login(page, stream)

    messages = [e["message"] for e in _events(stream)]
    assert "CAPTCHA detected! Please solve the CAPTCHA manually." in messages
    assert messages[-1] == "Login completed successfully"


@pytest.mark.asyncio
async def test_login_fails_when_account_menu_never_appears() -> None:
    page = _FakeLoginPage(waits={page_selectors.LOGIN_SUCCESS: [TIMEOUT], page_selectors.LOGIN_CAPTCHA: [TIMEOUT]})
    stream = io.StringIO()

    with pytest.raises(AuthError, match="Login failed - unable to verify successful login"):
        await _login(page, stream)

    last = _events(stream)[-1]
    assert last["status"] == "error"
    assert last["attempts"] == 1


@pytest.mark.asyncio
async def test_login_retries_before_giving_up() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [TIMEOUT, OK], page_selectors.LOGIN_CAPTCHA: [TIMEOUT, HANG]},
        visible={page_selectors.LOGIN_SUCCESS: [False, True]},
    )
    stream = io.StringIO()

    await _login(page, stream, retries=1)

    assert [action for action in page.actions if action[0] == "goto"] == [("goto", page_selectors.SIGNIN_URL)] * 2
    messages = [e["message"] for e in _events(stream)]
    assert "Login not confirmed; retrying" in messages
    assert messages[-1] == "Login completed successfully"


@pytest.mark.asyncio
async def test_unexpected_browser_error_propagates() -> None:
    page = _FakeLoginPage(
        waits={page_selectors.LOGIN_SUCCESS: [RuntimeError("Target page has been closed")], page_selectors.LOGIN_CAPTCHA: [HANG]},
    )

    with pytest.raises(RuntimeError, match="Target page has been closed"):
        await _login(page, io.StringIO())

    assert page.cancelled_waits == [page_selectors.LOGIN_CAPTCHA]


@pytest.mark.asyncio
@pytest.mark.parametrize(("email", "password"), [("", "secret"), ("user@example.com", "")])
async def test_blank_credentials_are_rejected_before_navigation(email: str, password: str) -> None:
    page = _FakeLoginPage(waits={})

    with pytest.raises(AuthError, match="Email and password are required"):
        await _login(page, io.StringIO(), email=email, password=password)

    assert page.actions == []
