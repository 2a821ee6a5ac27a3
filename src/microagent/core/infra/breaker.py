from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CircuitBreaker:
    service: str
    failure_threshold: int = 3
    open_seconds: int = 60
    half_open_max_trials: int = 1
    state: str = CLOSED
    failure_count: int = 0
    opened_at: datetime | None = None
    last_error: str | None = None
    half_open_trials_used: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def allow_request(self, now: datetime | None = None) -> bool:
        current = now or _utc_now()
        with self._lock:
            if self.state == CLOSED:
                return True
            if self.state == OPEN:
                cooldown = timedelta(seconds=max(1, self.open_seconds))
                if self.opened_at is None or current < self.opened_at + cooldown:
                    return False
                self.state = HALF_OPEN
                self.half_open_trials_used = 0
            if self.half_open_trials_used >= max(1, self.half_open_max_trials):
                return False
            self.half_open_trials_used += 1
            return True

    def record_success(self) -> tuple[str, str] | None:
        with self._lock:
            previous = self.state
            self.state = CLOSED
            self.failure_count = 0
            self.opened_at = None
            self.last_error = None
            self.half_open_trials_used = 0
            return (previous, CLOSED) if previous != CLOSED else None

    def record_failure(self, error_str: str, now: datetime | None = None) -> tuple[str, str] | None:
        current = now or _utc_now()
        with self._lock:
            previous = self.state
            self.last_error = error_str
            if self.state == HALF_OPEN:
                self.failure_count = max(self.failure_threshold, self.failure_count + 1)
                self._trip(current)
            else:
                self.failure_count += 1
                if self.failure_count >= max(1, self.failure_threshold):
                    self._trip(current)
            return (previous, self.state) if previous != self.state else None

    def _trip(self, now: datetime) -> None:
        self.state = OPEN
        self.opened_at = now
        self.half_open_trials_used = 0

    def snapshot(self) -> dict[str, object]:
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "opened_at_iso": self.opened_at.isoformat() if self.opened_at else None,
            "last_error": self.last_error,
        }
