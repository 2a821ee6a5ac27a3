from datetime import datetime, timedelta, timezone

import pytest

from microagent.core.config.settings import BreakerSettings
from microagent.core.errors import ServiceDegradedError
from microagent.core.infra.breaker import CircuitBreaker
from microagent.core.infra.breaker_manager import BreakerManager


def test_breaker_transitions() -> None:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    breaker = CircuitBreaker(service="llm", failure_threshold=3, open_seconds=60, half_open_max_trials=1)

    assert breaker.allow_request(now=now) is True
    assert breaker.record_failure("e1", now=now) is None
    assert breaker.record_failure("e2", now=now + timedelta(seconds=1)) is None
    assert breaker.record_failure("e3", now=now + timedelta(seconds=2)) == ("closed", "open")

    assert breaker.allow_request(now=now + timedelta(seconds=10)) is False
    assert breaker.allow_request(now=now + timedelta(seconds=63)) is True
    assert breaker.state == "half_open"
    assert breaker.allow_request(now=now + timedelta(seconds=63)) is False

    assert breaker.record_success() == ("half_open", "closed")
    assert breaker.snapshot()["failure_count"] == 0

    for offset in (64, 65, 66):
        breaker.record_failure("again", now=now + timedelta(seconds=offset))
    assert breaker.allow_request(now=now + timedelta(seconds=131)) is True
    assert breaker.record_failure("still broken", now=now + timedelta(seconds=132)) == ("half_open", "open")


def test_manager_wrap_opens_and_short_circuits() -> None:
    manager = BreakerManager(BreakerSettings(failure_threshold=2))
    calls = []

    def failing():
        calls.append(1)
        raise ConnectionError("down")

    for _ in range(2):
        with pytest.raises(ConnectionError):
            manager.wrap("llm", failing)

    with pytest.raises(ServiceDegradedError) as excinfo:
        manager.wrap("llm", failing)

    assert len(calls) == 2
    assert excinfo.value.service == "llm"
    assert manager.snapshot()["llm"]["state"] == "open"
    assert manager.wrap("tool:other", lambda: "fine") == "fine"


def test_disabled_breakers_pass_everything_through() -> None:
    manager = BreakerManager(BreakerSettings(enabled=False, failure_threshold=1))

    def failing():
        raise ConnectionError("down")

    for _ in range(3):
        with pytest.raises(ConnectionError):
            manager.wrap("llm", failing)

    assert manager.snapshot()["llm"]["state"] == "closed"
