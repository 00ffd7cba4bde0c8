"""Twice-monthly refresh schedule that only ever enqueues runs."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time
from typing import Callable, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from directory.core.models import utcnow
from directory.jobs.queue import RefreshJob, RefreshRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleSlot:
    name: str
    day: int
    at: time = time(4, 0)
    full_crawl: bool = False


DEFAULT_SLOTS: Tuple[ScheduleSlot, ...] = (
    ScheduleSlot(name="monthly-1st", day=1),
    ScheduleSlot(name="monthly-15th", day=15),
)


def _add_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1)
    return moment.replace(month=moment.month + 1)


def next_fire(
    after: datetime,
    slots: Sequence[ScheduleSlot] = DEFAULT_SLOTS,
    tz: ZoneInfo = ZoneInfo("Africa/Lagos"),
) -> Tuple[ScheduleSlot, datetime]:
    """The first slot strictly after `after`, as a timezone-aware datetime in `tz`."""
    local = after.astimezone(tz)
    month_start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    for offset in range(2):
        base = month_start if offset == 0 else _add_month(month_start)
        fires = sorted(
            (
                (datetime.combine(base.date().replace(day=slot.day), slot.at, tzinfo=tz), slot)
                for slot in slots
            ),
            key=lambda item: item[0],
        )
        for fire_at, slot in fires:
            if fire_at > local:
                return slot, fire_at
    raise ValueError("No schedule slots configured")


class RefreshScheduler:
    """Daemon thread waking for each slot; the manual trigger shares the same enqueue path."""

    def __init__(
        self,
        enqueue: Callable[[RefreshRequest], RefreshJob],
        *,
        slots: Sequence[ScheduleSlot] = DEFAULT_SLOTS,
        timezone_name: str = "Africa/Lagos",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.enqueue = enqueue
        self.slots = tuple(slots)
        self.tz = ZoneInfo(timezone_name)
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def next_fire(self, after: Optional[datetime] = None) -> Tuple[ScheduleSlot, datetime]:
        return next_fire(after or self.clock(), self.slots, self.tz)

    def trigger(self, slot_name: str) -> RefreshJob:
        slot = next((slot for slot in self.slots if slot.name == slot_name), None)
        if slot is None:
            raise ValueError(f"Unknown schedule slot {slot_name!r}")
        logger.info("Scheduled refresh %s triggered", slot_name)
        return self.enqueue(RefreshRequest(full_crawl=slot.full_crawl, trigger=slot.name))

    def trigger_manual(self, request: RefreshRequest) -> RefreshJob:
        return self.enqueue(request)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            slot, fire_at = self.next_fire()
            delay = max(0.0, (fire_at - self.clock()).total_seconds())
            logger.info("Next scheduled refresh %s at %s", slot.name, fire_at.isoformat())
            if self._stop_event.wait(timeout=delay):
                break
            try:
                self.trigger(slot.name)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Failed to enqueue scheduled refresh %s: %s", slot.name, exc)
            # Step past the fire time so the same slot is not enqueued twice.
            self._stop_event.wait(timeout=1.0)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="refresh-scheduler", daemon=True)
        self._thread.start()
        logger.info("Refresh scheduler started (%s)", ", ".join(slot.name for slot in self.slots))

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Refresh scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until `stop()` is called or the timeout passes."""
        return self._stop_event.wait(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
