from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger("microagent.memory.consolidation")


class ConsolidationScheduler:
    """Runs consolidation jobs off the request path; callers never wait on them."""

    def __init__(self, autostart: bool = True) -> None:
        self.autostart = autostart
        self.scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 300},
            timezone=timezone.utc,
        )
        self._started = False
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self.scheduler.start()
            self._started = True

    def shutdown(self) -> None:
        with self._lock:
            if self._started:
                self.scheduler.shutdown(wait=False)
                self._started = False

    def submit(self, conversation_id: str, fn: Callable[[str], object]) -> str:
        if self.autostart:
            self.start()
        job_id = f"consolidate:{conversation_id}"
        self.scheduler.add_job(
            self._run,
            trigger="date",
            run_date=datetime.now(timezone.utc),
            args=[conversation_id, fn],
            id=job_id,
            replace_existing=True,
        )
        return job_id

    @staticmethod
    def _run(conversation_id: str, fn: Callable[[str], object]) -> None:
        try:
            fn(conversation_id)
        except Exception:
            logger.exception(
                "consolidation_failed",
                extra={"extra_fields": {"conversation_id": conversation_id}},
            )
