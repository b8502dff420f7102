"""
In-process claim registry.

A claim marks a key (an event id) as owned by one in-flight operation.
Approval takes a claim before calling the external calendar so a second
approval of the same event fails fast instead of creating a duplicate
external event. The claim is held only in memory; the version-checked
database write remains the final arbiter across processes.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Set


class ClaimUnavailableError(Exception):
    """Raised when a key is already claimed by another operation."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"{key} is already being processed")


class ClaimRegistry:
    """Thread-safe set of claimed keys."""

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: Set[str] = set()

    def claim(self, key: str) -> bool:
        """
        Try to claim a key.

        Returns:
            True if the claim was acquired, False if already held
        """
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._claimed.discard(key)

    def is_claimed(self, key: str) -> bool:
        with self._lock:
            return key in self._claimed

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """
        Hold a claim for the duration of the block.

        Raises:
            ClaimUnavailableError: If the key is already claimed
        """
        if not self.claim(key):
            raise ClaimUnavailableError(key)
        try:
            yield
        finally:
            self.release(key)
