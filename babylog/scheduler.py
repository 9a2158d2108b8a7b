"""Notification schedule consumer.

Finds enabled schedules whose ``next_run`` has passed, claims each one by
advancing ``next_run`` with a compare-and-set, and hands the claimed
schedule to a delivery callback. Advancing ``next_run`` is the only write
this module makes.

Rows whose ``chat_id`` differs from ``user_id`` are skipped: a reminder
must only ever go to its owner's personal chat.

Reminder delivery is switched off in this release (see
``FORCED_SETTINGS``); the consumer exists so schedules imported from
backups keep a consistent ``next_run``.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from babylog.storage.sqlite import SQLiteRecordStore
from babylog.types import NotificationSchedule, unix_now

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 24 * 60


def _parse_time_of_day(value: str) -> Optional[tuple]:
    try:
        hours, minutes = value.split(":", 1)
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours, minutes


def compute_next_run(schedule: NotificationSchedule, now: int) -> int:
    """Return the first run time strictly after ``now``.

    ``schedule_data`` may carry ``timesOfDay`` (``["08:00", "20:00"]``, UTC)
    or ``intervalMinutes``; without either the schedule repeats daily.
    """
    data = schedule.schedule_data or {}
    times = [t for t in (_parse_time_of_day(v) for v in data.get("timesOfDay") or []) if t]
    if times:
        base = datetime.fromtimestamp(now, tz=timezone.utc)
        candidates = []
        for day_offset in (0, 1):
            day = (base + timedelta(days=day_offset)).date()
            for hours, minutes in times:
                moment = datetime(day.year, day.month, day.day, hours, minutes, tzinfo=timezone.utc)
                candidates.append(int(moment.timestamp()))
        return min(c for c in candidates if c > now)

    interval = data.get("intervalMinutes") or DEFAULT_INTERVAL_MINUTES
    try:
        step = max(1, int(interval)) * 60
    except (TypeError, ValueError):
        step = DEFAULT_INTERVAL_MINUTES * 60
    last = schedule.next_run if schedule.next_run is not None else now
    if last > now:
        return last
    missed = (now - last) // step + 1
    return last + missed * step


class ScheduleConsumer:
    """Claims due schedules and advances them."""

    def __init__(
        self,
        store: SQLiteRecordStore,
        deliver: Optional[Callable[[NotificationSchedule], None]] = None,
        clock: Callable[[], int] = unix_now,
        batch_size: int = 100,
    ):
        self.store = store
        self.deliver = deliver
        self.clock = clock
        self.batch_size = batch_size
        self._running = threading.Lock()

    def run_once(self, now: Optional[int] = None) -> List[NotificationSchedule]:
        """Process one tick. Returns the schedules this call claimed.

        Returns an empty list if another tick is still running.
        """
        if not self._running.acquire(blocking=False):
            logger.debug("Schedule tick already running, skipping")
            return []
        try:
            return self._tick(self.clock() if now is None else now)
        finally:
            self._running.release()

    def _tick(self, now: int) -> List[NotificationSchedule]:
        claimed = []
        for schedule in self.store.due_schedules(now, limit=self.batch_size):
            if not schedule.is_personal:
                logger.warning(
                    f"Skipping schedule {schedule.id}: chat_id {schedule.chat_id} "
                    f"does not match user_id {schedule.user_id}"
                )
                continue
            new_next_run = compute_next_run(schedule, now)
            won = self.store.claim_schedule(
                schedule.id, schedule.user_id, schedule.next_run, new_next_run
            )
            if not won:
                logger.debug(f"Schedule {schedule.id} claimed elsewhere")
                continue
            claimed.append(schedule)
            if self.deliver is not None:
                self.deliver(schedule)
        if claimed:
            logger.info(f"Claimed {len(claimed)} due schedules")
        return claimed
