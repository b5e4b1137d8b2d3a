from __future__ import annotations

import io
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest

from invoice_downloader import pipeline
from invoice_downloader.auth import AuthError
from invoice_downloader.config import Config
from invoice_downloader.crawler import CrawlSummary
from invoice_downloader.json_logger import JsonLogger
from invoice_downloader.models import OrderType, TransactionWithOrder
from invoice_downloader.report import read_report


class _FakeLifecycle:
    def __init__(self) -> None:
        self.session = SimpleNamespace(page=object(), context=object())
        self.created = 0
        self.cleanups: list[bool] = []

    async def create(self, config: Config):
        self.created += 1
        return self.session

    async def cleanup(self, *, force: bool = False) -> None:
        self.cleanups.append(force)


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        email="user@example.com",
        password="secret",
        year=2024,
        download_path=tmp_path,
        login_retries=2,
        captcha_solve_timeout_s=60,
        max_pages=5,
    )


def _summary(*transactions: TransactionWithOrder) -> CrawlSummary:
    summary = CrawlSummary(year=2024, pages=1, captured=len(transactions))
    summary.transactions.extend(transactions)
    return summary


@pytest.mark.asyncio
async def test_pipeline_runs_login_crawl_and_report(monkeypatch: pytest.MonkeyPatch, config: Config) -> None:
    lifecycle = _FakeLifecycle()
    login_calls: list[tuple] = []
    crawl_calls: list[dict] = []
    transaction = TransactionWithOrder(
        date=date(2024, 3, 14),
        amount=Decimal("25.50"),
        card_type="Visa",
        last_four_digits="1234",
        order_id="111-0000000-0000001",
        order_type=OrderType.AMAZON,
    )

    async def fake_login(page, **kwargs):
        login_calls.append((page, kwargs))

    async def fake_crawl(session, **kwargs):
        crawl_calls.append(kwargs)
        return _summary(transaction)

    monkeypatch.setattr(pipeline, "login", fake_login)
    monkeypatch.setattr(pipeline, "crawl", fake_crawl)
    stream = io.StringIO()

    summary = await pipeline.run_pipeline(config=config, logger=JsonLogger(stream=stream), lifecycle=lifecycle)

    page, login_kwargs = login_calls[0]
    assert page is lifecycle.session.page
    assert login_kwargs["retries"] == 2
    assert login_kwargs["captcha_solve_timeout_ms"] == 60_000
    assert crawl_calls[0]["max_pages"] == 5
    assert crawl_calls[0]["download_dir"] == config.download_path
    assert summary.report_path == config.download_path / "2024" / "transactions-2024.csv"
    assert read_report(summary.report_path) == [transaction]
    assert lifecycle.cleanups == [False]

    events = _events(stream)
    assert "password" not in events[0]
    assert "secret" not in stream.getvalue()
    assert events[-1]["message"] == "Invoice download run complete"


@pytest.mark.asyncio
async def test_pipeline_without_transactions_writes_no_report(monkeypatch: pytest.MonkeyPatch, config: Config) -> None:
    async def fake_login(page, **kwargs):
        return None

    async def fake_crawl(session, **kwargs):
        return _summary()

    monkeypatch.setattr(pipeline, "login", fake_login)
    monkeypatch.setattr(pipeline, "crawl", fake_crawl)
    lifecycle = _FakeLifecycle()

    summary = await pipeline.run_pipeline(
        config=config, logger=JsonLogger(stream=io.StringIO()), lifecycle=lifecycle
    )

    assert summary.report_path is None
    assert not (config.download_path / "2024" / "transactions-2024.csv").exists()
    assert lifecycle.cleanups == [False]


@pytest.mark.asyncio
async def test_pipeline_failure_keeps_session_open(monkeypatch: pytest.MonkeyPatch, config: Config) -> None:
    async def failing_login(page, **kwargs):
        raise AuthError("Login failed - unable to verify successful login")

    async def unexpected_crawl(session, **kwargs):
        raise AssertionError("crawl must not run after a failed login")

    monkeypatch.setattr(pipeline, "login", failing_login)
    monkeypatch.setattr(pipeline, "crawl", unexpected_crawl)
    lifecycle = _FakeLifecycle()
    stream = io.StringIO()

    with pytest.raises(AuthError):
        await pipeline.run_pipeline(config=config, logger=JsonLogger(stream=stream), lifecycle=lifecycle)

    assert lifecycle.created == 1
    assert lifecycle.cleanups == []
    error = [e for e in _events(stream) if e["phase"] == "orchestrator" and e["status"] == "error"][0]
    assert error["message"] == "Error during execution; keeping browser open"
    assert error["exc_type"] == "AuthError"
