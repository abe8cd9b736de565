from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ragchat.core.errors import DeadlineExceeded, RequestCancelled


class RequestBudget:
    """Deadline + cancellation signal threaded through every network call.

    Each call asks for `remaining()` and uses it as its own timeout, so the
    whole request can never outlive `timeout_seconds`.
    """

    def __init__(
        self,
        timeout_seconds: float,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self.expires_at = clock() + timeout_seconds
        self.cancel_event = cancel_event or threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self) -> None:
        if self.cancelled:
            raise RequestCancelled("request cancelled by caller")
        if self.expired:
            raise DeadlineExceeded("request deadline exceeded")

    def remaining(self) -> float:
        self.check()
        return self.expires_at - self._clock()

    def remaining_ms(self) -> int:
        return max(1, int(self.remaining() * 1000))


def remaining_or(budget: Optional[RequestBudget], default: Optional[float]) -> Optional[float]:
    return budget.remaining() if budget is not None else default
