from __future__ import annotations

import logging
import threading
from typing import Callable, TypeVar

from microagent.core.config.settings import BreakerSettings
from microagent.core.errors import ServiceDegradedError

from .breaker import CircuitBreaker

SERVICES = ("llm",)
T = TypeVar("T")

logger = logging.getLogger("microagent.infra.breakers")


class BreakerManager:
    """One circuit breaker per collaborator, shared by every request of a process."""

    def __init__(self, settings: BreakerSettings | None = None) -> None:
        self.settings = settings or BreakerSettings()
        self.enabled = self.settings.enabled
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        for service in SERVICES:
            self.get(service)

    def get(self, service: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(service)
            if breaker is None:
                breaker = CircuitBreaker(
                    service=service,
                    failure_threshold=self.settings.failure_threshold,
                    open_seconds=self.settings.open_seconds,
                    half_open_max_trials=self.settings.half_open_max_trials,
                )
                self._breakers[service] = breaker
            return breaker

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.snapshot() for name, breaker in breakers.items()}

    def wrap(self, service: str, fn: Callable[[], T]) -> T:
        if not self.enabled:
            return fn()

        breaker = self.get(service)
        if not breaker.allow_request():
            raise ServiceDegradedError(service, breaker.last_error)

        try:
            result = fn()
        except Exception as exc:
            transition = breaker.record_failure(str(exc))
            if transition is not None:
                self._log_transition(service, transition, str(exc))
            raise

        transition = breaker.record_success()
        if transition is not None:
            self._log_transition(service, transition, "request succeeded")
        return result

    def _log_transition(self, service: str, transition: tuple[str, str], reason: str) -> None:
        logger.warning(
            "breaker_transition",
            extra={
                "extra_fields": {
                    "service": service,
                    "from_state": transition[0],
                    "to_state": transition[1],
                    "reason": reason,
                }
            },
        )
