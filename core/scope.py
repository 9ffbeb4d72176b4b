"""
Per-request deadline and cancellation signal.

The HTTP layer opens one RequestScope per request; the store checks it
before every call and aborts instead of retrying once it has expired or
been cancelled.
"""

import threading
import time
from typing import Optional

from core.errors import DeadlineExceeded, RequestCancelled


class RequestScope:
    """Deadline plus a cancellation flag shared by one request."""

    def __init__(self, deadline: Optional[float] = None):
        # Absolute time.monotonic() value, None for no deadline
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, timeout_ms: Optional[int]) -> "RequestScope":
        if not timeout_ms or timeout_ms <= 0:
            return cls()
        return cls(deadline=time.monotonic() + timeout_ms / 1000.0)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining_ms(self) -> Optional[int]:
        """Milliseconds left before the deadline, None without one."""
        if self.deadline is None:
            return None
        return max(0, int((self.deadline - time.monotonic()) * 1000))

    def check(self, operation: str) -> None:
        """
        Raise if the request may no longer touch the store.

        Raises:
            RequestCancelled: The host cancelled the request
            DeadlineExceeded: The deadline has passed
        """
        if self.cancelled:
            raise RequestCancelled(operation)
        if self.expired:
            raise DeadlineExceeded(operation)
