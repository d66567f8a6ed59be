"""
nftmarket/deadline.py

Per-call time budget + cancellation signal.

A Deadline is created by whoever starts the work (request handler, scheduler tick)
and passed down to every ledger / metadata call. Each outbound call asks the
deadline for its timeout, so a slow ledger never holds a caller longer than its
budget, and setting the cancel event (scheduler shutdown) stops the next call.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from nftmarket.errors import CallCancelled


class Deadline:
    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        """Unbounded deadline (per-call caps still apply)."""
        return cls(timeout=None)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return self._expires_at - self._clock()

    def check(self, label: str = "call") -> None:
        """Raise CallCancelled if the caller cancelled or the budget is spent."""
        if self.cancelled:
            raise CallCancelled(f"{label} cancelled by caller")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise CallCancelled(f"{label} deadline exceeded")

    def timeout_for(self, cap: float, label: str = "call") -> float:
        """Timeout for the next outbound call: the per-call cap clipped to what is left."""
        self.check(label)
        remaining = self.remaining()
        if remaining is None:
            return cap
        return min(cap, remaining)
