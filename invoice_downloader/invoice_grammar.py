"""Text patterns for amazon.com order cards and printable invoices.

Bump ``GRAMMAR_VERSION`` whenever a pattern changes in a way that can alter
what is extracted from an already-captured invoice.

Version history:
    1  labelled order number only, unscoped payment scan, single-word card types
    2  bare 3-7-7 order number fallback, payment scan scoped to the
       "Credit Card transactions" section, multi-word card types
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from dateutil import parser

GRAMMAR_VERSION = 2

# Order card on the order-history listing: "ORDER # 111-0496459-8356251".
# Unparseable cards are skipped by the crawler, never given placeholder ids.
ORDER_CARD_ID = re.compile(r"(?:Order|#)\s*#?\s*([A-Z0-9]+(?:-[A-Z0-9]+)+)", re.IGNORECASE)

ORDER_NUMBER_LABELLED = re.compile(r"order\s+number:?\s*(\d{3}-\d{7}-\d{7})", re.IGNORECASE)
ORDER_NUMBER_BARE = re.compile(r"(?<![\d-])(\d{3}-\d{7}-\d{7})(?![\d-])")

_MONTH_DAY_YEAR = r"[A-Za-z]+\.?\s+\d{1,2},\s*\d{4}"
_AMOUNT = r"[\d,]+\.\d{2}"

ORDER_PLACED = re.compile(rf"(?:Order\s+Placed:|placed\s+on)\s*({_MONTH_DAY_YEAR})", re.IGNORECASE)
GRAND_TOTAL = re.compile(rf"Grand\s+Total:\s*\$?\s*({_AMOUNT})", re.IGNORECASE)

PAYMENTS_HEADER = re.compile(r"Credit\s+Card\s+transactions", re.IGNORECASE)
PAYMENTS_TRAILER = re.compile(
    r"To view the status of your order|Return or replace items|Conditions of Use|Privacy Notice",
    re.IGNORECASE,
)
PAYMENT_LINE = re.compile(
    r"(?P<card_type>[A-Z][A-Za-z]*(?: [A-Z][A-Za-z]*){0,2})\s+ending\s+in\s+(?P<last_four>\d{4}):\s*"
    rf"(?P<date>{_MONTH_DAY_YEAR}):\s*\$\s*(?P<amount>{_AMOUNT})"
)


def parse_amount(raw: str) -> Decimal:
    return Decimal(raw.replace(",", "").strip())


def parse_month_day_year(raw: str) -> date:
    return parser.parse(" ".join(raw.split())).date()


def payments_window(text: str) -> str | None:
    """Return the text of the credit card section, or None when it is absent."""

    header = PAYMENTS_HEADER.search(text)
    if header is None:
        return None
    start = header.end()
    trailer = PAYMENTS_TRAILER.search(text, start)
    end = trailer.start() if trailer else len(text)
    return text[start:end]
