import threading
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from neighborsync.workers.unified_scheduler import ScheduleType, UnifiedScheduler


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        return None


@pytest.fixture()
def inline_scheduler():
    scheduler = UnifiedScheduler()
    scheduler._executor = InlineExecutor()
    return scheduler


def test_once_job_runs_when_due(inline_scheduler):
    func = Mock(return_value="fired")
    run_at = datetime.now() + timedelta(seconds=5)
    inline_scheduler.schedule_once("sync.trigger", run_at, job_id="t1", func=func, args=("cmd",))

    assert inline_scheduler._process_due_jobs(now=run_at - timedelta(seconds=1)) == []
    func.assert_not_called()

    assert inline_scheduler._process_due_jobs(now=run_at) == ["t1"]
    func.assert_called_once_with("cmd")
    assert inline_scheduler.get_job("t1") is None
    assert inline_scheduler.get_history("t1")[0].result == "fired"


def test_removed_once_job_never_runs(inline_scheduler):
    func = Mock()
    run_at = datetime.now()
    inline_scheduler.schedule_once("sync.trigger", run_at, job_id="t1", func=func)

    assert inline_scheduler.remove_job("t1") is True
    assert inline_scheduler.remove_job("t1") is False
    assert inline_scheduler._process_due_jobs(now=run_at + timedelta(seconds=1)) == []
    func.assert_not_called()


def test_interval_job_advances_fixed_rate(inline_scheduler):
    func = Mock()
    job = inline_scheduler.schedule_interval(
        "schedule.tick", 30, job_id="tick", func=func, start_immediately=True
    )
    first_run = job.next_run

    inline_scheduler._process_due_jobs(now=first_run)

    func.assert_called_once_with()
    assert job.schedule_type == ScheduleType.INTERVAL
    assert job.next_run > first_run
    assert job.namespace == "schedule"
    assert inline_scheduler.get_job("tick") is job


def test_failed_job_recorded_and_reported(inline_scheduler):
    on_error = Mock()
    inline_scheduler.set_error_callback(on_error)
    run_at = datetime.now()
    inline_scheduler.schedule_once("sync.trigger", run_at, job_id="boom", func=Mock(side_effect=RuntimeError("x")))

    inline_scheduler._process_due_jobs(now=run_at)

    [result] = inline_scheduler.get_history("boom")
    assert result.success is False and result.error == "x"
    on_error.assert_called_once()


def test_rescheduling_same_job_id_replaces_it(inline_scheduler):
    first, second = Mock(), Mock()
    run_at = datetime.now()
    inline_scheduler.schedule_once("sync.trigger", run_at, job_id="t1", func=first)
    inline_scheduler.schedule_once("sync.trigger", run_at + timedelta(milliseconds=1), job_id="t1", func=second)

    inline_scheduler._process_due_jobs(now=run_at + timedelta(seconds=1))

    first.assert_not_called()
    second.assert_called_once_with()


def test_background_loop_fires_one_shot():
    scheduler = UnifiedScheduler(check_interval_seconds=0.05, max_workers=1)
    fired = threading.Event()
    scheduler.schedule_once(
        "sync.trigger", datetime.now() + timedelta(milliseconds=50), job_id="bg", func=fired.set
    )

    scheduler.start()
    try:
        assert fired.wait(2.0)
    finally:
        scheduler.stop()

    assert scheduler.is_running() is False
    assert scheduler.get_status()["total_jobs"] == 0
