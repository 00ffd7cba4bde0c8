import threading

import pytest

from directory.core.models import RunRecord, RunState
from directory.core.store import MemoryStore
from directory.jobs.queue import RefreshQueue, RefreshRequest, estimate_duration_minutes


class FakeNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, **summary):
        self.calls.append(summary)


def finished_run(run_id, success=True):
    return RunRecord(run_id=run_id, trigger="manual", state=RunState.COMPLETED, success=success)


@pytest.fixture
def sleeps():
    return []


def make_queue(runner, sleeps, notifier=None, **kwargs):
    return RefreshQueue(
        runner,
        max_workers=1,
        max_attempts=3,
        backoff_seconds=10,
        notifier=notifier,
        sleep=sleeps.append,
        **kwargs,
    )


def test_backoff_doubles_each_attempt():
    queue = RefreshQueue(lambda *args: None, backoff_seconds=60)
    try:
        assert [queue.backoff_for(attempt) for attempt in (1, 2, 3)] == [60, 120, 240]
    finally:
        queue.shutdown()


def test_estimate_duration_minutes():
    assert estimate_duration_minutes(["maps", "punch"], False) == 16
    assert estimate_duration_minutes(["maps", "punch"], True) == 30
    assert estimate_duration_minutes([], False) == 8


def test_failed_attempts_are_retried_with_backoff(sleeps):
    attempts = []

    def runner(request, run_id, on_progress):
        attempts.append(run_id)
        if len(attempts) < 3:
            raise RuntimeError("database unavailable")
        on_progress(100)
        return finished_run(run_id)

    queue = make_queue(runner, sleeps)
    try:
        job = queue.enqueue(RefreshRequest(sources=["maps"]))
        queue.wait(job.run_id, timeout=5)

        assert job.state is RunState.COMPLETED
        assert job.attempts == 3
        assert job.error is None
        assert job.progress == 100
        assert sleeps == [10, 20]
        assert set(attempts) == {job.run_id}
    finally:
        queue.shutdown()


def test_exhausted_retries_fail_and_notify(sleeps):
    notifier = FakeNotifier()

    def runner(request, run_id, on_progress):
        raise RuntimeError("database unavailable")

    queue = make_queue(runner, sleeps, notifier=notifier)
    try:
        job = queue.enqueue(RefreshRequest(trigger="monthly-1st"))
        queue.wait(job.run_id, timeout=5)

        assert job.state is RunState.FAILED
        assert job.attempts == 3
        assert job.error == "database unavailable"
        assert len(notifier.calls) == 1
        assert notifier.calls[0]["success"] is False
        assert notifier.calls[0]["trigger"] == "monthly-1st"
        assert notifier.calls[0]["errors"] == ["database unavailable"]
    finally:
        queue.shutdown()


def test_exhausted_retries_are_written_to_the_run_log(sleeps):
    store = MemoryStore()

    def runner(request, run_id, on_progress):
        on_progress(40)
        raise RuntimeError("database unavailable")

    queue = make_queue(runner, sleeps, store=store)
    try:
        job = queue.enqueue(RefreshRequest(trigger="monthly-15th"))
        queue.wait(job.run_id, timeout=5)
    finally:
        queue.shutdown()

    record = store.get_run(job.run_id)
    assert record is not None
    assert record.state is RunState.FAILED
    assert record.success is False
    assert record.trigger == "monthly-15th"
    assert record.errors == ["database unavailable"]
    assert record.progress == 40
    assert record.completed_at >= record.started_at
    assert [run.run_id for run in store.list_runs()] == [job.run_id]
    assert job.result.run_id == job.run_id


def test_unsuccessful_run_is_not_retried(sleeps):
    def runner(request, run_id, on_progress):
        record = finished_run(run_id, success=False)
        record.errors.append("All sources failed")
        return record

    queue = make_queue(runner, sleeps)
    try:
        job = queue.enqueue(RefreshRequest())
        queue.wait(job.run_id, timeout=5)

        assert job.state is RunState.FAILED
        assert job.attempts == 1
        assert job.error == "All sources failed"
        assert sleeps == []
        assert job.to_dict()["result"]["success"] is False
    finally:
        queue.shutdown()


def test_only_queued_jobs_can_be_cancelled(sleeps):
    started = threading.Event()
    release = threading.Event()

    def runner(request, run_id, on_progress):
        started.set()
        release.wait(5)
        return finished_run(run_id)

    queue = make_queue(runner, sleeps)
    try:
        running = queue.enqueue(RefreshRequest())
        assert started.wait(5)
        waiting = queue.enqueue(RefreshRequest())

        assert queue.cancel(running.run_id) is False
        assert queue.cancel(waiting.run_id) is True
        assert waiting.state is RunState.CANCELLED
        assert queue.cancel("run_missing") is False

        release.set()
        queue.wait(running.run_id, timeout=5)
        assert running.state is RunState.COMPLETED
        assert queue.stats()["completed"] == 1
        assert queue.stats()["cancelled"] == 1
        assert [job.run_id for job in queue.list_jobs()] == [waiting.run_id, running.run_id]
    finally:
        release.set()
        queue.shutdown()
