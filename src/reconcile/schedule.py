"""Next-run bookkeeping for the recurring Xero check (driven by system cron)."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from src.xero.config import get_schedule_file

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = 1800


class CheckSchedule:
    """
    Tracks when the paid-invoice check should next run.

    A stored next run in the past (missed while nothing was invoking us) is
    rescheduled to now rather than skipped.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        interval: int = CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path else get_schedule_file()
        self.interval = interval
        self.clock = clock

    def next_run_at(self) -> Optional[int]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                return int(json.load(f).get("next_run_at") or 0) or None
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Corrupted schedule file {self.path}: {e}")
            return None

    def _save(self, next_run_at: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump({"next_run_at": next_run_at, "interval": self.interval}, f)

    def ensure_scheduled(self) -> int:
        """Create the schedule if missing, reschedule if missed. Returns the next run time."""
        now = int(self.clock())
        next_run = self.next_run_at()

        if next_run is None:
            logger.info("No check scheduled, scheduling now")
            self._save(now)
            return now

        if next_run < now:
            logger.info(f"Scheduled check at {next_run} was missed, rescheduling")
            self._save(now)
            return now

        return next_run

    def is_due(self) -> bool:
        return self.ensure_scheduled() <= int(self.clock())

    def mark_run(self) -> int:
        """Record a completed run and schedule the next one an interval later."""
        next_run = int(self.clock()) + self.interval
        self._save(next_run)
        return next_run

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
