"""
Centralized scheduling service for a member's client.

Runs the periodic schedule evaluation and the one-shot controller triggers
planned by the execution agent.

Design Principles:
- Single scheduler loop thread
- Bounded worker pool for job execution (prevents unbounded thread creation)
- The loop sleeps until the earliest due job (bounded by the check interval),
  so one-shot triggers fire with sub-second precision
- Explicit cancellation through ``remove_job``
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    """Types of schedules."""

    INTERVAL = "interval"  # Every N seconds
    ONCE = "once"  # One-time execution


@dataclass
class JobResult:
    """Result of a job execution."""

    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class ScheduledJob:
    """
    A scheduled job configuration.

    ``task_name`` is a label for logs and status; ``func`` is what runs.
    """

    job_id: str
    task_name: str
    namespace: str  # e.g. "sync", "schedule"
    schedule_type: ScheduleType
    enabled: bool = True

    func: Callable | None = None
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)

    interval_seconds: float | None = None  # For INTERVAL type
    run_at: datetime | None = None  # For ONCE type

    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "namespace": self.namespace,
            "schedule_type": self.schedule_type.value,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }


class UnifiedScheduler:
    """
    Scheduler for all background work of one client.

    Implementation note on the heap:
    - Entries are tuples: (run_at_ts, seq, job_id)
    - seq is a monotonic counter to keep ordering stable when timestamps match
    - Entries are never deleted in place; stale ones are skipped when popped:
        - job removed -> skip
        - job disabled -> skip
        - job.next_run changed -> skip
    """

    def __init__(
        self,
        check_interval_seconds: float = 1.0,
        max_history: int = 500,
        max_workers: int = 4,
    ):
        """
        Initialize the scheduler.

        Args:
            check_interval_seconds: Longest the loop sleeps between heap checks
            max_history: Maximum job execution history to keep
            max_workers: Maximum number of concurrent job executions
        """
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)
        self._max_workers = int(max_workers)

        self._jobs: dict[str, ScheduledJob] = {}

        self._job_heap: list[tuple[float, int, str]] = []
        self._heap_seq = 0

        self._history: list[JobResult] = []

        self._running = False
        self._thread: threading.Thread | None = None
        self._job_lock = threading.RLock()
        self._wakeup = threading.Event()

        self._executor: ThreadPoolExecutor | None = None

        self._on_job_error: Callable[[ScheduledJob, Exception], None] | None = None

    def _ensure_executor(self) -> None:
        """Ensure an executor is available (supports stop() -> start() restarts)."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="UnifiedSchedulerJob",
        )

    # ==================== Heap Helpers ====================

    def _push_heap(self, job: ScheduledJob) -> None:
        if not job.enabled or not job.next_run:
            return
        self._heap_seq += 1
        heapq.heappush(self._job_heap, (job.next_run.timestamp(), self._heap_seq, job.job_id))
        self._wakeup.set()

    # ==================== Job Scheduling ====================

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: float,
        *,
        job_id: str | None = None,
        namespace: str | None = None,
        func: Callable,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledJob:
        """Schedule a task to run at regular intervals (fixed rate)."""
        if job_id is None:
            job_id = f"{task_name}_{int(time.time())}"

        if namespace is None:
            namespace = task_name.split(".")[0] if "." in task_name else "default"

        now = datetime.now()
        next_run = now if start_immediately else (now + timedelta(seconds=float(interval_seconds)))

        job = ScheduledJob(
            job_id=job_id,
            task_name=task_name,
            namespace=namespace,
            schedule_type=ScheduleType.INTERVAL,
            enabled=enabled,
            func=func,
            args=args,
            kwargs=kwargs or {},
            interval_seconds=float(interval_seconds),
            next_run=next_run,
        )

        self._add_job(job)
        logger.info("Scheduled interval job: %s (every %ss)", job_id, interval_seconds)
        return job

    def schedule_once(
        self,
        task_name: str,
        run_at: datetime,
        *,
        job_id: str | None = None,
        namespace: str | None = None,
        func: Callable,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        """Schedule a task to run once at ``run_at`` (naive local time)."""
        if job_id is None:
            job_id = f"{task_name}_once_{int(run_at.timestamp() * 1000)}"

        if namespace is None:
            namespace = task_name.split(".")[0] if "." in task_name else "default"

        job = ScheduledJob(
            job_id=job_id,
            task_name=task_name,
            namespace=namespace,
            schedule_type=ScheduleType.ONCE,
            enabled=True,
            func=func,
            args=args,
            kwargs=kwargs or {},
            run_at=run_at,
            next_run=run_at,
        )

        self._add_job(job)
        logger.debug("Scheduled one-time job: %s (at %s)", job_id, run_at.isoformat())
        return job

    # ==================== Job Management ====================

    def _add_job(self, job: ScheduledJob) -> None:
        with self._job_lock:
            if job.job_id in self._jobs:
                logger.debug("Replacing existing job %s", job.job_id)
            self._jobs[job.job_id] = job
            self._push_heap(job)

    def remove_job(self, job_id: str) -> bool:
        """Remove a job; a pending one-shot never runs afterwards."""
        with self._job_lock:
            if job_id in self._jobs:
                del self._jobs[job_id]
                logger.debug("Removed job: %s", job_id)
                return True
        return False

    def get_job(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def get_jobs(self, namespace: str | None = None, enabled_only: bool = False) -> list[ScheduledJob]:
        """Get all jobs, optionally filtered."""
        with self._job_lock:
            jobs = list(self._jobs.values())

        if namespace:
            jobs = [j for j in jobs if j.namespace == namespace]

        if enabled_only:
            jobs = [j for j in jobs if j.enabled]

        return jobs

    # ==================== Scheduler Control ====================

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._ensure_executor()

        self._running = True
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="UnifiedScheduler",
        )
        self._thread.start()
        logger.info("UnifiedScheduler started (workers=%s)", self._max_workers)

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        """
        Stop the scheduler.

        Args:
            wait: Wait for scheduler thread and running jobs to finish
            timeout: Maximum wait time for the loop thread in seconds
        """
        if not self._running:
            return

        self._running = False
        self._wakeup.set()

        if wait and self._thread:
            self._thread.join(timeout=timeout)

        if self._executor:
            self._executor.shutdown(wait=wait)
            self._executor = None

        logger.info("UnifiedScheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def _seconds_until_next(self) -> float:
        with self._job_lock:
            if not self._job_heap:
                return self._check_interval
            delay = self._job_heap[0][0] - datetime.now().timestamp()
        return max(0.0, min(self._check_interval, delay))

    def _run_loop(self) -> None:
        logger.debug("Scheduler loop started")

        while self._running:
            try:
                self._process_due_jobs()
                self._wakeup.clear()
                self._wakeup.wait(self._seconds_until_next())
            except Exception as e:
                logger.error("Error in scheduler loop: %s", e, exc_info=True)
                time.sleep(1)

        logger.debug("Scheduler loop ended")

    # ==================== Core Scheduling Logic ====================

    def _process_due_jobs(self, now: datetime | None = None) -> list[str]:
        """Submit every due job; returns the submitted job ids."""
        now_ts = (now or datetime.now()).timestamp()
        submitted: list[str] = []

        with self._job_lock:
            while self._job_heap:
                run_at_ts, _seq, job_id = self._job_heap[0]

                if run_at_ts > now_ts:
                    break

                heapq.heappop(self._job_heap)

                job = self._jobs.get(job_id)
                if not job:
                    continue  # removed

                if not job.enabled or not job.next_run:
                    continue

                if abs(job.next_run.timestamp() - run_at_ts) > 1e-6:
                    continue  # stale

                scheduled_for = job.next_run

                # Advance before submitting so a slow run never misses the next slot
                self._schedule_next_run(job, reference_time=scheduled_for, scheduled_time=scheduled_for)
                self._push_heap(job)

                self._ensure_executor()
                self._executor.submit(self._execute_job, job, scheduled_for)
                submitted.append(job_id)

        return submitted

    def _execute_job(self, job: ScheduledJob, scheduled_for: datetime) -> None:
        """Run one job and record the outcome."""
        with self._job_lock:
            current = self._jobs.get(job.job_id)
            if current is job and job.schedule_type == ScheduleType.ONCE:
                del self._jobs[job.job_id]
            elif current is not job:
                return  # removed (cancelled) between scheduling and execution
            elif not job.enabled and job.schedule_type == ScheduleType.INTERVAL:
                return

        started_at = datetime.now()
        try:
            result = job.func(*job.args, **job.kwargs)
            completed_at = datetime.now()

            with self._job_lock:
                job.last_run = started_at
                job.run_count += 1
                job.success_count += 1
                job.last_error = None

            job_result = JobResult(
                job_id=job.job_id,
                success=True,
                started_at=started_at,
                completed_at=completed_at,
                result=result,
            )
            self._record_history(job_result)
            logger.debug(
                "Job %s completed in %.3fs (scheduled_for=%s)",
                job.job_id,
                job_result.duration_seconds,
                scheduled_for.isoformat(),
            )

        except Exception as e:
            completed_at = datetime.now()

            with self._job_lock:
                job.last_run = started_at
                job.run_count += 1
                job.failure_count += 1
                job.last_error = str(e)

            self._record_history(
                JobResult(
                    job_id=job.job_id,
                    success=False,
                    started_at=started_at,
                    completed_at=completed_at,
                    error=str(e),
                )
            )

            if self._on_job_error:
                try:
                    self._on_job_error(job, e)
                except Exception as cb_e:
                    logger.warning("Job error callback failed: %s", cb_e)

            logger.error("Job %s failed: %s", job.job_id, e, exc_info=True)

    def _schedule_next_run(
        self,
        job: ScheduledJob,
        *,
        reference_time: datetime,
        scheduled_time: datetime | None = None,
    ) -> None:
        """
        Set the next run time for a job.

        INTERVAL schedules advance from the scheduled time (fixed rate) and
        skip ahead instead of piling up missed runs.
        """
        if job.schedule_type == ScheduleType.INTERVAL:
            interval = float(job.interval_seconds or 60)
            base = scheduled_time or reference_time
            next_run = base + timedelta(seconds=interval)

            now = datetime.now()
            if next_run <= now:
                skips = int((now - next_run).total_seconds() // interval) + 1
                next_run = next_run + timedelta(seconds=skips * interval)

            job.next_run = next_run
            return

        if job.schedule_type == ScheduleType.ONCE:
            job.next_run = None

    def _record_history(self, result: JobResult) -> None:
        with self._job_lock:
            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history :]

    # ==================== Callbacks ====================

    def set_error_callback(self, on_error: Callable[[ScheduledJob, Exception], None] | None) -> None:
        self._on_job_error = on_error

    # ==================== Status & History ====================

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status."""
        with self._job_lock:
            enabled_jobs = [j for j in self._jobs.values() if j.enabled]
            pending = sum(1 for j in enabled_jobs if j.next_run is not None)

            return {
                "running": self._running,
                "total_jobs": len(self._jobs),
                "enabled_jobs": len(enabled_jobs),
                "namespaces": sorted({j.namespace for j in self._jobs.values()}),
                "pending_jobs": pending,
                "history_size": len(self._history),
                "recent_failures": sum(1 for r in self._history[-20:] if not r.success),
                "max_workers": self._max_workers,
            }

    def get_history(self, job_id: str | None = None, limit: int = 100) -> list[JobResult]:
        """Get job execution history, newest first."""
        with self._job_lock:
            results = list(self._history)

        if job_id:
            results = [r for r in results if r.job_id == job_id]

        return sorted(results, key=lambda r: r.started_at, reverse=True)[: int(limit)]
