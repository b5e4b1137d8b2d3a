from __future__ import annotations

import csv
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Sequence

from invoice_downloader.json_logger import JsonLogger, log_event
from invoice_downloader.models import OrderType, TransactionWithOrder

PHASE = "report"
REPORT_HEADER = ["Date", "Amount", "Card Type", "Last 4 Digits", "Order ID", "Order Type"]


class ReportError(RuntimeError):
    """Raised when the yearly transaction report cannot be written."""


def report_path(output_dir: Path | str, year: int) -> Path:
    return Path(output_dir) / str(year) / f"transactions-{year}.csv"


def _format_amount(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def _row(transaction: TransactionWithOrder) -> list[str]:
    return [
        transaction.date.isoformat(),
        _format_amount(transaction.amount),
        transaction.card_type,
        transaction.last_four_digits,
        transaction.order_id,
        transaction.order_type.value,
    ]


def write_report(
    transactions: Sequence[TransactionWithOrder],
    output_dir: Path | str,
    year: int,
    *,
    logger: JsonLogger,
) -> Path | None:
    """Write ``transactions-{year}.csv`` sorted ascending by date.

    Returns the report path, or None when there was nothing to write.
    """

    if not transactions:
        log_event(logger=logger, phase=PHASE, status="warn", message="No transactions to report", year=year)
        return None

    path = report_path(output_dir, year)
    # sorted() is stable: same-day rows keep crawl order.
    ordered = sorted(transactions, key=lambda item: item.date)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerow(REPORT_HEADER)
            writer.writerows(_row(item) for item in ordered)
    except OSError as exc:
        log_event(
            logger=logger,
            phase=PHASE,
            status="error",
            message="Error generating transaction report",
            path=str(path),
            error=str(exc),
        )
        raise ReportError("Failed to generate transaction report") from exc

    log_event(
        logger=logger,
        phase=PHASE,
        message="Generated transaction report",
        path=str(path),
        rows=len(ordered),
        total_amount=_format_amount(sum((item.amount for item in ordered), Decimal("0"))),
    )
    return path


def read_report(path: Path | str) -> list[TransactionWithOrder]:
    """Parse a report written by ``write_report`` back into records."""

    with Path(path).open("r", newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames != REPORT_HEADER:
            raise ValueError(
                f"Report header mismatch.\nExpected: {REPORT_HEADER}\nGot:      {reader.fieldnames}\nFile: {path}"
            )
        return list(_records(reader))


def _records(rows: Iterable[dict[str, str]]) -> Iterable[TransactionWithOrder]:
    for line in rows:
        yield TransactionWithOrder(
            date=date.fromisoformat(line["Date"]),
            amount=Decimal(line["Amount"]),
            card_type=line["Card Type"],
            last_four_digits=line["Last 4 Digits"],
            order_id=line["Order ID"],
            order_type=OrderType(line["Order Type"]),
        )
