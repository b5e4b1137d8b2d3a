from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from invoice_downloader import invoice_grammar as grammar
from invoice_downloader.json_logger import JsonLogger, log_event
from invoice_downloader.models import InvoiceData, OrderType, PaymentTransaction

PHASE = "extract"


class InvoiceExtractionError(ValueError):
    """Raised when a required invoice field (order id, order date) is missing."""


def read_pdf_text(pdf_path: Path | str) -> str:
    try:
        reader = PdfReader(str(pdf_path))
        return "\n".join((page.extract_text() or "") for page in reader.pages)
    except PdfReadError as exc:
        raise InvoiceExtractionError(f"Unreadable invoice PDF {pdf_path}: {exc}") from exc


def order_type_from_filename(pdf_path: Path | str) -> OrderType:
    name = Path(pdf_path).name.lower()
    # Longest prefix first so "amazon-fresh-" is not read as "amazon".
    for order_type in sorted(OrderType, key=lambda item: len(item.value), reverse=True):
        if name.startswith(f"{order_type.value}-"):
            return order_type
    return OrderType.AMAZON


def _extract_order_id(text: str) -> str:
    match = grammar.ORDER_NUMBER_LABELLED.search(text) or grammar.ORDER_NUMBER_BARE.search(text)
    if not match:
        raise InvoiceExtractionError("Order ID not found in invoice")
    return match.group(1)


def _parse_date(raw: str, *, label: str) -> date:
    try:
        return grammar.parse_month_day_year(raw)
    except (ValueError, OverflowError) as exc:
        raise InvoiceExtractionError(f"{label} {raw!r} is not a valid date") from exc


def _extract_order_date(text: str) -> date:
    match = grammar.ORDER_PLACED.search(text)
    if not match:
        raise InvoiceExtractionError("Order date not found in invoice")
    return _parse_date(match.group(1), label="Order date")


def _extract_total(text: str, *, order_id: str, logger: JsonLogger | None) -> Decimal:
    match = grammar.GRAND_TOTAL.search(text)
    if not match:
        if logger is not None:
            log_event(
                logger=logger,
                phase=PHASE,
                status="warn",
                message="Grand total not found in invoice; treating as zero",
                order_id=order_id,
            )
        return Decimal("0")
    return grammar.parse_amount(match.group(1))


def _extract_payments(text: str) -> list[PaymentTransaction]:
    window = grammar.payments_window(text)
    if window is None:
        return []

    payments: list[PaymentTransaction] = []
    for match in grammar.PAYMENT_LINE.finditer(window):
        payments.append(
            PaymentTransaction(
                date=_parse_date(match.group("date"), label="Payment date"),
                amount=grammar.parse_amount(match.group("amount")),
                card_type=match.group("card_type"),
                last_four_digits=match.group("last_four"),
            )
        )
    return payments


def parse_invoice_text(
    text: str,
    *,
    order_type: OrderType = OrderType.AMAZON,
    logger: JsonLogger | None = None,
) -> InvoiceData:
    """Parse flattened invoice text into an ``InvoiceData`` record.

    Missing order id or order date raise ``InvoiceExtractionError``. A missing
    grand total degrades to zero, and a zero total short-circuits with no
    payments. A missing credit card section yields no payments (gift card or
    points-only orders).
    """

    order_id = _extract_order_id(text)
    order_date = _extract_order_date(text)
    total = _extract_total(text, order_id=order_id, logger=logger)

    if total == 0:
        if logger is not None:
            log_event(
                logger=logger,
                phase=PHASE,
                message="Invoice has zero total; skipping payment extraction",
                order_id=order_id,
            )
        return InvoiceData(
            order_id=order_id,
            order_type=order_type,
            order_date=order_date,
            total=Decimal("0"),
            payments=[],
        )

    payments = _extract_payments(text)
    if logger is not None and not payments:
        log_event(
            logger=logger,
            phase=PHASE,
            status="warn",
            message="No credit card transactions found in invoice",
            order_id=order_id,
            total=total,
        )

    return InvoiceData(
        order_id=order_id,
        order_type=order_type,
        order_date=order_date,
        total=total,
        payments=payments,
    )


def extract_invoice_data(pdf_path: Path | str, *, logger: JsonLogger | None = None) -> InvoiceData:
    text = read_pdf_text(pdf_path)
    if logger is not None:
        logger.debug(phase=PHASE, message="Read invoice text", path=str(pdf_path), characters=len(text))
    return parse_invoice_text(text, order_type=order_type_from_filename(pdf_path), logger=logger)
