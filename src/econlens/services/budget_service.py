"""Monthly inference cost budget.

Cost is reserved before an inference call (prompt tokens plus the full
`max_tokens` allowance) and settled with the actual cost afterwards. The
counter resets at the start of each UTC calendar month.
"""
from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from econlens.services.metrics import InsightMetrics

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


def estimate_cost(input_tokens: int, output_tokens: int, input_per_1k: float, output_per_1k: float) -> float:
    return input_tokens * input_per_1k / 1000.0 + output_tokens * output_per_1k / 1000.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonthlyBudget:
    def __init__(
        self,
        limit_usd: float,
        clock: Callable[[], datetime] = _utc_now,
        metrics: Optional[InsightMetrics] = None,
    ):
        self.limit_usd = float(limit_usd)
        self._clock = clock
        self._metrics = metrics
        self._lock = threading.Lock()
        self._month = self._month_of(clock())
        self._spent = 0.0
        self._reserved = 0.0

    @staticmethod
    def _month_of(ts: datetime) -> Tuple[int, int]:
        ts = ts.astimezone(timezone.utc) if ts.tzinfo else ts
        return ts.year, ts.month

    def _roll(self) -> None:
        # caller holds the lock
        month = self._month_of(self._clock())
        if month != self._month:
            logger.info("Budget month rolled over from %s to %s; spent %.4f USD", self._month, month, self._spent)
            self._month = month
            self._spent = 0.0
            self._reserved = 0.0
            self._publish()

    def _publish(self) -> None:
        if self._metrics is not None:
            self._metrics.set_monthly_cost(self._spent)

    def try_reserve(self, amount_usd: float) -> bool:
        """Reserve `amount_usd`; False (and nothing reserved) when it would exceed the limit."""
        with self._lock:
            self._roll()
            if self._spent + self._reserved + amount_usd > self.limit_usd:
                logger.warning(
                    "Monthly budget exceeded: spent %.4f + reserved %.4f + %.4f > %.2f USD",
                    self._spent,
                    self._reserved,
                    amount_usd,
                    self.limit_usd,
                )
                return False
            self._reserved += amount_usd
            return True

    def settle(self, reserved_usd: float, actual_usd: float) -> None:
        with self._lock:
            self._roll()
            self._reserved = max(0.0, self._reserved - reserved_usd)
            self._spent += actual_usd
            self._publish()

    def release(self, reserved_usd: float) -> None:
        self.settle(reserved_usd, 0.0)

    @property
    def spent(self) -> float:
        with self._lock:
            self._roll()
            return self._spent

    @property
    def remaining(self) -> float:
        with self._lock:
            self._roll()
            return max(0.0, self.limit_usd - self._spent - self._reserved)

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0.0
