from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from invoice_downloader.json_logger import JsonLogger

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class DelayPolicy:
    """Jittered pause bounds in milliseconds, inclusive on both ends."""

    min_ms: int
    max_ms: int
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)
    sleep: Sleeper = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.min_ms < 0 or self.max_ms < self.min_ms:
            raise ValueError(f"Invalid delay bounds: {self.min_ms}..{self.max_ms} ms")

    def next_ms(self) -> int:
        return self.rng.randint(self.min_ms, self.max_ms)

    async def wait(self, *, logger: JsonLogger | None = None, reason: str = "") -> int:
        delay_ms = self.next_ms()
        if logger is not None:
            logger.debug(phase="throttle", message=f"Waiting {delay_ms}ms {reason}".rstrip(), delay_ms=delay_ms)
        await self.sleep(delay_ms / 1000)
        return delay_ms


ORDER_DELAY_MS = (800, 2000)
PAGE_NAVIGATION_DELAY_MS = (2000, 4000)


def order_delay(**kwargs) -> DelayPolicy:
    return DelayPolicy(*ORDER_DELAY_MS, **kwargs)


def page_navigation_delay(**kwargs) -> DelayPolicy:
    return DelayPolicy(*PAGE_NAVIGATION_DELAY_MS, **kwargs)
