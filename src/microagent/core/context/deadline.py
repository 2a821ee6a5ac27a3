from __future__ import annotations

import threading
import time


class Deadline:
    """Monotonic deadline plus cancel flag, handed down from a request to its steps."""

    def __init__(self, timeout_s: float | None = None, parent: Deadline | None = None) -> None:
        now = time.monotonic()
        expires_at = now + timeout_s if timeout_s is not None else None
        if parent is not None and parent.expires_at is not None:
            expires_at = parent.expires_at if expires_at is None else min(expires_at, parent.expires_at)
        self.expires_at = expires_at
        self.parent = parent
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.parent.cancelled if self.parent is not None else False

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def remaining(self) -> float | None:
        """Seconds left, ``None`` when unbounded; a cancelled deadline has none left."""
        if self.cancelled:
            return 0.0
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def bound(self, timeout_s: float | None) -> float | None:
        """Clamp a per-call timeout to what is left of this deadline."""
        remaining = self.remaining()
        if timeout_s is None:
            return remaining
        if remaining is None:
            return timeout_s
        return min(timeout_s, remaining)

    def child(self, timeout_s: float | None = None) -> Deadline:
        return Deadline(timeout_s, parent=self)
