import threading
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from directory.jobs.queue import RefreshJob, RefreshRequest
from directory.jobs.scheduler import DEFAULT_SLOTS, RefreshScheduler, ScheduleSlot, next_fire

LAGOS = ZoneInfo("Africa/Lagos")


@pytest.mark.parametrize(
    "after, slot_name, expected",
    [
        (datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc), "monthly-1st", datetime(2026, 11, 1, 4, 0, tzinfo=LAGOS)),
        (datetime(2026, 10, 1, 2, 0, tzinfo=timezone.utc), "monthly-1st", datetime(2026, 10, 1, 4, 0, tzinfo=LAGOS)),
        (datetime(2026, 10, 1, 3, 0, tzinfo=timezone.utc), "monthly-15th", datetime(2026, 10, 15, 4, 0, tzinfo=LAGOS)),
        (datetime(2026, 12, 20, 0, 0, tzinfo=timezone.utc), "monthly-1st", datetime(2027, 1, 1, 4, 0, tzinfo=LAGOS)),
    ],
)
def test_next_fire(after, slot_name, expected):
    slot, fire_at = next_fire(after, DEFAULT_SLOTS, LAGOS)

    assert slot.name == slot_name
    assert fire_at == expected


def test_next_fire_requires_slots():
    with pytest.raises(ValueError):
        next_fire(datetime(2026, 10, 18, tzinfo=timezone.utc), (), LAGOS)


class RecordingQueue:
    def __init__(self):
        self.requests = []
        self.enqueued = threading.Event()

    def enqueue(self, request):
        self.requests.append(request)
        self.enqueued.set()
        return RefreshJob(run_id=f"run_{len(self.requests)}", request=request)


def test_trigger_uses_the_slot_settings():
    queue = RecordingQueue()
    slots = DEFAULT_SLOTS + (ScheduleSlot(name="quarterly-full", day=28, full_crawl=True),)
    scheduler = RefreshScheduler(queue.enqueue, slots=slots)

    scheduler.trigger("monthly-15th")
    scheduler.trigger("quarterly-full")

    assert [(request.trigger, request.full_crawl) for request in queue.requests] == [
        ("monthly-15th", False),
        ("quarterly-full", True),
    ]
    with pytest.raises(ValueError):
        scheduler.trigger("weekly")


def test_manual_trigger_shares_the_enqueue_path():
    queue = RecordingQueue()
    scheduler = RefreshScheduler(queue.enqueue)

    job = scheduler.trigger_manual(RefreshRequest(sources=["punch"], trigger="manual"))

    assert job.request.sources == ["punch"]
    assert queue.requests[0].trigger == "manual"


def test_loop_enqueues_when_a_slot_fires():
    queue = RecordingQueue()
    just_before = datetime(2026, 11, 1, 2, 59, 59, 900000, tzinfo=timezone.utc)
    scheduler = RefreshScheduler(queue.enqueue, clock=lambda: just_before)

    scheduler.start()
    try:
        assert queue.enqueued.wait(5)
    finally:
        scheduler.stop()

    assert queue.requests[0].trigger == "monthly-1st"
    assert scheduler.running is False


def test_start_and_stop():
    queue = RecordingQueue()
    scheduler = RefreshScheduler(queue.enqueue, clock=lambda: datetime(2026, 10, 18, tzinfo=timezone.utc))

    scheduler.start()
    assert scheduler.running is True
    scheduler.stop()

    assert scheduler.running is False
    assert scheduler.wait(timeout=0) is True
    assert queue.requests == []
