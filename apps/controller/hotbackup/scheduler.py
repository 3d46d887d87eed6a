"""Recurring backup triggers, one per HotBackup identity.

Triggers are APScheduler cron jobs on a BackgroundScheduler. The scheduler
only ever calls the run body; it never touches resource status itself.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .errors import ScheduleError
from .models import NamespacedName

logger = logging.getLogger(__name__)

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


def parse_schedule(schedule: str, timezone: str = "UTC") -> CronTrigger:
    """Build a cron trigger from a schedule string.

    Accepts standard five-field crontab, six-field crontab with a leading
    seconds field, and the ``@hourly``-style macros.

    Raises:
        ScheduleError: If the string is empty or not a valid expression
    """
    expression = MACROS.get(schedule.strip().lower(), schedule.strip())
    fields = expression.split()
    try:
        if len(fields) == 5:
            return CronTrigger.from_crontab(expression, timezone=timezone)
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second, minute=minute, hour=hour, day=day,
                month=month, day_of_week=day_of_week, timezone=timezone,
            )
    except ValueError as exc:
        raise ScheduleError(f"Invalid schedule '{schedule}': {exc}") from exc
    raise ScheduleError(f"Invalid schedule '{schedule}': expected 5 or 6 fields, got {len(fields)}")


@dataclass(frozen=True)
class ScheduleEntry:
    job_id: str
    schedule: str


class RecurrenceScheduler:
    def __init__(self, scheduler: BackgroundScheduler | None = None, timezone: str = "UTC"):
        self.timezone = timezone
        self._scheduler = scheduler or BackgroundScheduler(
            timezone=timezone,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        )
        self._lock = threading.Lock()
        self._entries: dict[NamespacedName, ScheduleEntry] = {}

    def install(self, key: NamespacedName, schedule: str, run_body: Callable[[], object]) -> ScheduleEntry:
        """Install or replace the trigger for ``key``.

        The previous job is removed before the new one is added, so two
        triggers for one identity never coexist.

        Raises:
            ScheduleError: If ``schedule`` does not parse; any previous
                entry for ``key`` is removed as well
        """
        try:
            trigger = parse_schedule(schedule, self.timezone)
        except ScheduleError:
            self.remove(key)
            raise

        with self._lock:
            previous = self._entries.pop(key, None)
            if previous:
                self._remove_job(previous.job_id)
            job = self._scheduler.add_job(
                run_body,
                trigger=trigger,
                id=f"hotbackup-{key.namespace}-{key.name}-{uuid.uuid4().hex[:8]}",
                name=str(key),
                replace_existing=False,
            )
            entry = ScheduleEntry(job_id=job.id, schedule=schedule)
            self._entries[key] = entry

        action = "Replaced" if previous else "Added"
        logger.info(f"📅 [{key}] {action} schedule '{schedule}' (job {entry.job_id})")
        self.start()
        return entry

    def remove(self, key: NamespacedName) -> bool:
        """Cancel the trigger for ``key`` if there is one.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._remove_job(entry.job_id)
        logger.info(f"🗑️  [{key}] Removed schedule '{entry.schedule}' (job {entry.job_id})")
        return True

    def entry(self, key: NamespacedName) -> ScheduleEntry | None:
        with self._lock:
            return self._entries.get(key)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        with self._lock:
            self._entries.clear()

    def _remove_job(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug(f"Job {job_id} already gone")

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
