from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path


class OrderType(str, Enum):
    """Order family; the value doubles as the snapshot filename prefix."""

    AMAZON = "amazon"
    WHOLE_FOODS = "whole-foods"
    AMAZON_FRESH = "amazon-fresh"


SNAPSHOT_EXTENSION = "pdf"


def snapshot_path(download_dir: Path, year: int, order_type: OrderType, order_id: str) -> Path:
    return Path(download_dir) / str(year) / f"{order_type.value}-invoice-{order_id}.{SNAPSHOT_EXTENSION}"


@dataclass(frozen=True)
class OrderRecord:
    order_id: str
    order_type: OrderType
    snapshot_path: Path


@dataclass(frozen=True)
class PaymentTransaction:
    date: date
    amount: Decimal
    card_type: str
    last_four_digits: str


@dataclass(frozen=True)
class TransactionWithOrder:
    date: date
    amount: Decimal
    card_type: str
    last_four_digits: str
    order_id: str
    order_type: OrderType

    @classmethod
    def from_payment(
        cls, payment: PaymentTransaction, *, order_id: str, order_type: OrderType
    ) -> TransactionWithOrder:
        return cls(
            date=payment.date,
            amount=payment.amount,
            card_type=payment.card_type,
            last_four_digits=payment.last_four_digits,
            order_id=order_id,
            order_type=order_type,
        )


@dataclass
class InvoiceData:
    order_id: str
    order_type: OrderType
    order_date: date
    total: Decimal
    payments: list[PaymentTransaction] = field(default_factory=list)
