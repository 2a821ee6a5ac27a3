from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .context import get_log_context

_CORE_KEYS = frozenset({"ts_iso_utc", "level", "logger", "msg"})


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    if isinstance(value, Enum):
        return _jsonable(value.value)
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Field order: core fields, then the ambient ``log_context`` ids, then the
    record's ``extra_fields``. Later sources never overwrite the core fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_iso_utc": self._timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        self._merge(payload, get_log_context())
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            self._merge(payload, extra_fields)
        if record.exc_info:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    @staticmethod
    def _timestamp(record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def _merge(payload: dict[str, Any], fields: dict[str, Any]) -> None:
        for key, value in fields.items():
            if key in _CORE_KEYS:
                continue
            payload[key] = _jsonable(value)

    @staticmethod
    def _exception_fields(record: logging.LogRecord) -> dict[str, str]:
        exc_type, exc_value, exc_tb = record.exc_info
        return {
            "exc_type": exc_type.__name__ if exc_type else "Exception",
            "exc_msg": str(exc_value) if exc_value is not None else "",
            "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        }
