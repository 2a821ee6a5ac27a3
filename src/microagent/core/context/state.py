from __future__ import annotations

import threading
from typing import Any, Callable, Iterator, Mapping


class ContextState:
    """Key/value facts for one context tier, safe for concurrent steps of a request."""

    def __init__(self, tier: str, initial: Mapping[str, Any] | None = None) -> None:
        self.tier = tier
        self._lock = threading.RLock()
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def setdefault(self, key: str, value: Any) -> Any:
        with self._lock:
            return self._data.setdefault(key, value)

    def update(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.update(values)

    def compute(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace ``key`` with ``fn(current)`` and return the new value."""
        with self._lock:
            value = fn(self._data.get(key, default))
            self._data[key] = value
            return value

    def pop(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.pop(key, default)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __repr__(self) -> str:
        return f"ContextState(tier={self.tier!r}, keys={sorted(self.snapshot())!r})"
