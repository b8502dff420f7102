"""
Retry and polling primitives.

RetryPolicy runs a callable with exponential backoff; poll_until waits
for a predicate to hold or a timeout to pass. Both take injectable sleep
and clock functions so tests run without real delays.
"""

import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

from backend.src.utils.logging_config import get_logger


logger = get_logger("sync")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay in seconds before the second attempt
        multiplier: Factor applied to the delay after each failure
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0

    def delays(self):
        """Delays slept between consecutive attempts."""
        delay = self.base_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield delay
            delay *= self.multiplier

    def run(
        self,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        description: str = "operation",
    ) -> T:
        """
        Call ``func`` until it succeeds or attempts are exhausted.

        Raises:
            The last exception raised by ``func`` once attempts run out
        """
        delays = list(self.delays())
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                delay = delays[attempt - 1]
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                sleep(delay)


def poll_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Evaluate ``predicate`` every ``interval`` seconds until it returns True.

    Returns:
        True if the predicate held before ``timeout`` elapsed, False otherwise
    """
    deadline = clock() + timeout
    while True:
        if predicate():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(interval, remaining))
