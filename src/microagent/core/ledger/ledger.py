from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from microagent.core.logging.context import get_log_context

from .schemas import LedgerRecord

logger = logging.getLogger("microagent.ledger")


class WriteLedger:
    """Append-only record of memory writes so retried requests never write twice.

    With a ``state_dir`` the ledger is a JSONL file guarded by a lock file, so
    several processes sharing the directory agree; without one it lives in
    process memory.
    """

    def __init__(self, state_dir: str | Path | None = None, max_records: int = 5000, lock_timeout_s: float = 2.0) -> None:
        self.max_records = max_records
        self.lock_timeout_s = lock_timeout_s
        self._mutex = threading.RLock()
        self._records: list[LedgerRecord] = []
        self.path: Path | None = None
        self.lock_path: Path | None = None
        if state_dir is not None:
            directory = Path(state_dir)
            directory.mkdir(parents=True, exist_ok=True)
            self.path = directory / "memory_ledger.jsonl"
            self.lock_path = directory / "memory_ledger.lock"

    def has_succeeded(self, key: str) -> bool:
        with self._mutex:
            latest = self._latest_record_by_key().get(key)
        return latest is not None and latest.status == "succeeded"

    def try_start(self, key: str, kind: str, meta: dict | None = None) -> bool:
        with self._mutex, self._file_lock():
            latest = self._latest_record_by_key().get(key)
            if latest is not None and latest.status in {"succeeded", "started"}:
                return False
            self._append(
                LedgerRecord(
                    key=key,
                    kind=kind,
                    status="started",
                    ts_iso=self._now_iso(),
                    correlation_id=get_log_context().get("correlation_id"),
                    meta=meta or {},
                )
            )
            self.trim(self.max_records)
            return True

    def mark(self, key: str, status: str, meta_update: dict | None = None) -> None:
        with self._mutex, self._file_lock():
            latest = self._latest_record_by_key().get(key)
            merged_meta: dict = dict(latest.meta) if latest is not None else {}
            if meta_update:
                merged_meta.update(meta_update)
            self._append(
                LedgerRecord(
                    key=key,
                    kind=latest.kind if latest is not None else "memory_update",
                    status=status,
                    ts_iso=self._now_iso(),
                    correlation_id=latest.correlation_id if latest is not None else None,
                    meta=merged_meta,
                )
            )

    def trim(self, max_records: int) -> None:
        if max_records <= 0:
            return
        records = self._read_all_records()
        if len(records) <= max_records:
            return
        keep = records[-max_records:]
        if self.path is None:
            self._records = keep
            return
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            for record in keep:
                handle.write(record.model_dump_json())
                handle.write("\n")
        tmp_path.replace(self.path)

    def _append(self, record: LedgerRecord) -> None:
        if self.path is None:
            self._records.append(record)
            return
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(record.model_dump_json())
            handle.write("\n")

    def _read_all_records(self) -> list[LedgerRecord]:
        if self.path is None:
            return list(self._records)
        if not self.path.exists():
            return []
        records: list[LedgerRecord] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                raw = line.strip()
                if not raw:
                    continue
                try:
                    records.append(LedgerRecord.model_validate(json.loads(raw)))
                except ValueError:
                    continue
        return records

    def _latest_record_by_key(self) -> dict[str, LedgerRecord]:
        latest: dict[str, LedgerRecord] = {}
        for record in self._read_all_records():
            latest[record.key] = record
        return latest

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        if self.lock_path is None:
            yield
            return

        acquired = False
        deadline = time.monotonic() + self.lock_timeout_s
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                acquired = True
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    logger.warning(
                        "ledger_lock_timeout",
                        extra={"extra_fields": {"lock_path": str(self.lock_path)}},
                    )
                    break
                time.sleep(0.01)

        try:
            yield
        finally:
            # Only the holder removes the lock file.
            if acquired:
                try:
                    self.lock_path.unlink()
                except FileNotFoundError:
                    pass
