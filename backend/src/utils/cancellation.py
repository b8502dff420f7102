"""
Cooperative cancellation for long-running operations.

A CancellationToken is checked by sync and location rewrites between
units of work. It is cancelled explicitly or when its deadline passes.
"""

import threading
import time
from typing import Callable, Optional


class CancellationToken:
    """
    Caller-supplied cancellation signal with an optional deadline.

    Args:
        deadline: Absolute time (in clock units) after which the token
            reports cancelled
        clock: Monotonic clock used for the deadline (injectable for tests)
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._deadline = deadline
        self._clock = clock
        self._event = threading.Event()

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CancellationToken":
        """Create a token that expires ``seconds`` from now."""
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    """True when a token is given and has been cancelled."""
    return token is not None and token.cancelled
