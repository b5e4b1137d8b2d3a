from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urljoin

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from invoice_downloader import page_selectors
from invoice_downloader.delays import DelayPolicy, order_delay, page_navigation_delay
from invoice_downloader.extractor import extract_invoice_data
from invoice_downloader.invoice_grammar import ORDER_CARD_ID
from invoice_downloader.json_logger import JsonLogger, log_event
from invoice_downloader.models import InvoiceData, OrderRecord, OrderType, TransactionWithOrder, snapshot_path

PHASE = "crawl"
DEFAULT_MAX_PAGES = 100
ORDERS_READY_TIMEOUT_MS = 30_000

OUTCOME_CAPTURED = "captured"
OUTCOME_EXISTING = "existing"
OUTCOME_NO_INVOICE = "no_invoice"
OUTCOME_UNPARSEABLE = "unparseable"
OUTCOME_FAILED = "failed"

Extractor = Callable[..., InvoiceData]


class CrawlStepError(RuntimeError):
    """Raised when a single order card cannot be processed."""


@dataclass
class CrawlSummary:
    year: int
    pages: int = 0
    captured: int = 0
    skipped_existing: int = 0
    skipped_no_invoice: int = 0
    skipped_unparseable: int = 0
    failed: int = 0
    page_limit_reached: bool = False
    report_path: Path | None = None
    transactions: list[TransactionWithOrder] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        counter = {
            OUTCOME_CAPTURED: "captured",
            OUTCOME_EXISTING: "skipped_existing",
            OUTCOME_NO_INVOICE: "skipped_no_invoice",
            OUTCOME_UNPARSEABLE: "skipped_unparseable",
            OUTCOME_FAILED: "failed",
        }[outcome]
        setattr(self, counter, getattr(self, counter) + 1)

    @property
    def skipped(self) -> int:
        return self.skipped_existing + self.skipped_no_invoice + self.skipped_unparseable

    @property
    def total_amount(self) -> Decimal:
        return sum((item.amount for item in self.transactions), Decimal("0"))

    def summary_text(self) -> str:
        return (
            f"Invoice download process completed. Processed {self.captured} orders, "
            f"skipped {self.skipped} ({self.skipped_existing} existing invoices), "
            f"{self.failed} failed across {self.pages} pages; "
            f"{len(self.transactions)} transactions found."
        )


def parse_order_card_id(text: str) -> str | None:
    match = ORDER_CARD_ID.search(text or "")
    return match.group(1).upper() if match else None


async def classify_order_type(card: Any) -> OrderType:
    if await card.locator(page_selectors.AMAZON_FRESH_BADGE).count():
        return OrderType.AMAZON_FRESH
    if await card.locator(page_selectors.WHOLE_FOODS_BADGE).count():
        return OrderType.WHOLE_FOODS
    return OrderType.AMAZON


async def _order_card_text(card: Any) -> str:
    id_block = card.locator(page_selectors.ORDER_ID)
    if await id_block.count():
        return (await id_block.first.inner_text()) or ""
    return (await card.inner_text()) or ""


async def read_order_record(card: Any, *, year: int, download_dir: Path) -> OrderRecord | None:
    order_id = parse_order_card_id(await _order_card_text(card))
    if order_id is None:
        return None
    order_type = await classify_order_type(card)
    return OrderRecord(
        order_id=order_id,
        order_type=order_type,
        snapshot_path=snapshot_path(download_dir, year, order_type, order_id),
    )


async def navigate_to_orders(page: Page, *, year: int, logger: JsonLogger) -> bool:
    """Open the year-filtered order history; False when it lists no orders."""

    log_event(logger=logger, phase=PHASE, message="Navigating to orders page", year=year)
    await page.goto(page_selectors.order_history_url(year), wait_until="domcontentloaded")
    try:
        await page.wait_for_selector(page_selectors.ORDER_CARD, timeout=ORDERS_READY_TIMEOUT_MS)
    except PlaywrightTimeoutError:
        log_event(
            logger=logger,
            phase=PHASE,
            status="warn",
            message="No order cards found on orders page",
            year=year,
            url=page.url,
        )
        return False
    log_event(logger=logger, phase=PHASE, message="Successfully loaded orders page", year=year)
    return True


async def has_next_page(page: Page) -> bool:
    return await page.locator(page_selectors.NEXT_PAGE).count() > 0


async def go_to_next_page(page: Page, *, logger: JsonLogger, delay: DelayPolicy) -> None:
    log_event(logger=logger, phase=PHASE, message="Moving to next page...")
    await page.click(page_selectors.NEXT_PAGE)
    await page.wait_for_load_state("domcontentloaded")
    await page.wait_for_selector(page_selectors.ORDER_CARD, state="visible")
    await delay.wait(logger=logger, reason="after page navigation")


async def capture_invoice(context: Any, *, invoice_url: str, target: Path, logger: JsonLogger) -> None:
    """Render ``invoice_url`` to ``target`` on a throwaway page.

    The PDF is written next to the target and renamed into place, so an
    interrupted capture never leaves a file that would later count as done.
    """

    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".part")
    invoice_page = await context.new_page()
    try:
        await invoice_page.goto(invoice_url, wait_until="domcontentloaded")
        await invoice_page.pdf(path=str(partial), **page_selectors.SNAPSHOT_PDF_OPTIONS)
        partial.replace(target)
    finally:
        with contextlib.suppress(Exception):
            await invoice_page.close()
        partial.unlink(missing_ok=True)
    log_event(logger=logger, phase=PHASE, message="Saved invoice snapshot", path=str(target))


async def process_order_card(
    card: Any,
    *,
    context: Any,
    year: int,
    download_dir: Path,
    logger: JsonLogger,
    summary: CrawlSummary,
    extract: Extractor = extract_invoice_data,
) -> str:
    record = await read_order_record(card, year=year, download_dir=download_dir)
    if record is None:
        log_event(
            logger=logger,
            phase=PHASE,
            status="warn",
            message="Could not parse order ID from order card; skipping",
        )
        return OUTCOME_UNPARSEABLE

    order_logger = logger.bind(order_id=record.order_id, order_type=record.order_type.value)

    if record.snapshot_path.exists():
        log_event(logger=order_logger, phase=PHASE, message="Skipping existing invoice")
        outcome = OUTCOME_EXISTING
    else:
        link = card.locator(page_selectors.INVOICE_LINK)
        if not await link.count():
            log_event(logger=order_logger, phase=PHASE, message="No invoice link on order card; skipping")
            return OUTCOME_NO_INVOICE
        href = await link.first.get_attribute("href")
        if not href:
            raise CrawlStepError(f"Invoice URL not found for order {record.order_id}")
        log_event(logger=order_logger, phase=PHASE, message="Processing invoice")
        await capture_invoice(
            context,
            invoice_url=urljoin(page_selectors.BASE_URL, href),
            target=record.snapshot_path,
            logger=order_logger,
        )
        outcome = OUTCOME_CAPTURED

    invoice = await asyncio.to_thread(extract, record.snapshot_path, logger=order_logger)
    if invoice.order_id != record.order_id:
        log_event(
            logger=order_logger,
            phase=PHASE,
            status="warn",
            message="Invoice order number differs from order card",
            invoice_order_id=invoice.order_id,
        )
    summary.transactions.extend(
        TransactionWithOrder.from_payment(payment, order_id=record.order_id, order_type=record.order_type)
        for payment in invoice.payments
    )
    log_event(
        logger=order_logger,
        phase=PHASE,
        message="Extracted invoice payments",
        payments=len(invoice.payments),
        total=invoice.total,
    )
    return outcome


async def crawl(
    session: Any,
    *,
    year: int,
    download_dir: Path,
    logger: JsonLogger,
    max_pages: int = DEFAULT_MAX_PAGES,
    delay_between_orders: DelayPolicy | None = None,
    delay_between_pages: DelayPolicy | None = None,
    extract: Extractor = extract_invoice_data,
) -> CrawlSummary:
    """Walk the order history for ``year`` and collect every card payment.

    Per-order failures are logged and counted, never raised. Pagination is
    bounded by ``max_pages``.
    """

    page = session.page
    context = session.context
    delay_between_orders = delay_between_orders or order_delay()
    delay_between_pages = delay_between_pages or page_navigation_delay()
    download_dir = Path(download_dir)
    summary = CrawlSummary(year=year)

    log_event(logger=logger, phase=PHASE, message="Starting invoice download process", year=year)
    (download_dir / str(year)).mkdir(parents=True, exist_ok=True)

    if not await navigate_to_orders(page, year=year, logger=logger):
        log_event(logger=logger, phase=PHASE, message=summary.summary_text())
        return summary

    for page_number in range(1, max_pages + 1):
        summary.pages = page_number
        cards = page.locator(page_selectors.ORDER_CARD)
        card_count = await cards.count()
        log_event(
            logger=logger,
            phase=PHASE,
            message=f"Processing page {page_number}",
            page_number=page_number,
            orders=card_count,
        )

        for index in range(card_count):
            try:
                outcome = await process_order_card(
                    cards.nth(index),
                    context=context,
                    year=year,
                    download_dir=download_dir,
                    logger=logger,
                    summary=summary,
                    extract=extract,
                )
            except Exception as exc:
                log_event(
                    logger=logger,
                    phase=PHASE,
                    status="error",
                    message="Error downloading invoice",
                    page_number=page_number,
                    card_index=index,
                    error=str(exc),
                    exc_type=type(exc).__name__,
                )
                outcome = OUTCOME_FAILED
            summary.record(outcome)
            if outcome != OUTCOME_EXISTING:
                await delay_between_orders.wait(logger=logger, reason="before next order")

        if not await has_next_page(page):
            break
        if page_number == max_pages:
            summary.page_limit_reached = True
            log_event(
                logger=logger,
                phase=PHASE,
                status="warn",
                message="Page limit reached with further pages remaining; stopping",
                max_pages=max_pages,
            )
            break
        await go_to_next_page(page, logger=logger, delay=delay_between_pages)

    log_event(
        logger=logger,
        phase=PHASE,
        message=summary.summary_text(),
        captured=summary.captured,
        skipped=summary.skipped,
        failed=summary.failed,
        pages=summary.pages,
        transactions=len(summary.transactions),
        total_amount=summary.total_amount,
    )
    return summary
