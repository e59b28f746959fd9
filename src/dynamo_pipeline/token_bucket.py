from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable


class TokenBucket:
    def __init__(
        self,
        table_or_index_name: str,
        fill_rate_per_second: float,
        *,
        now: Callable[[], float] | None = None,
    ) -> None:
        if not isinstance(fill_rate_per_second, (int, float)) or fill_rate_per_second <= 0:
            raise ValueError("fill_rate_per_second must be > 0")

        self.table_or_index_name = table_or_index_name
        self.fill_rate_per_second = float(fill_rate_per_second)
        self._now = now or time.monotonic
        self._tokens = self.fill_rate_per_second
        self._last_filled = self._now()
        self._lock = threading.Lock()

    def take(self, quantity: float = 1, allow_deficit: bool = False) -> tuple[bool, float]:
        """Take ``quantity`` tokens.

        Returns whether enough tokens were available and the balance after the take.
        Without ``allow_deficit`` a failed take leaves the balance untouched.
        """
        with self._lock:
            self._refill()

            if self._tokens >= quantity:
                self._tokens -= quantity
                return True, self._tokens

            if allow_deficit:
                self._tokens -= quantity

            return False, self._tokens

    def peek(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def wait_seconds(self) -> float:
        """Seconds until the balance is back at zero; 0 when not in deficit."""
        available = self.peek()
        if available >= 0:
            return 0.0
        return abs(available) / self.fill_rate_per_second

    def _refill(self) -> None:
        now = self._now()
        elapsed = now - self._last_filled
        if elapsed <= 0:
            return

        tokens_to_add = math.floor(elapsed * self.fill_rate_per_second)
        if tokens_to_add == 0:
            return

        # no burst banking: at most one second's worth of tokens
        if self._tokens + tokens_to_add >= self.fill_rate_per_second:
            self._tokens = self.fill_rate_per_second
            self._last_filled = now
            return

        # keep the unconverted remainder of elapsed time for the next refill
        self._tokens += tokens_to_add
        self._last_filled += tokens_to_add / self.fill_rate_per_second
