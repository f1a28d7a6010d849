"""
Shared test fixtures for the neighborsync test suite.

Provides:
- An isolated state directory per test (fire markers and other JSON stores)
- In-memory shared store
- Fakes for the clock, the scheduler, the local controller and the event bus
- Member / group factories

Usage:
    def test_example(store, make_member):
        store.write_member_record(make_member("m1", 1))
"""

from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Any

import pytest

from neighborsync.domain.exceptions import ControllerUnreachableError
from neighborsync.domain.neighborhood import NeighborhoodGroup, NeighborhoodMember
from neighborsync.enums import ParticipationStatus
from neighborsync.infrastructure import InMemoryDocumentStore

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("neighborsync").setLevel(logging.WARNING)

GROUP_ID = "maple-street"
# 2026-12-24 18:00:00 UTC
BASE_MS = 1_798_135_200_000


# ============================== Fakes ======================================


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = BASE_MS):
        self.now = int(start_ms)

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += int(ms)
        return self.now


class FakeScheduler:
    """Records one-shot / interval jobs; tests run them explicitly."""

    def __init__(self):
        self.jobs: dict[str, SimpleNamespace] = {}
        self.removed: list[str] = []

    def schedule_once(self, task_name, run_at, *, job_id=None, namespace=None, func=None, args=(), kwargs=None):
        job = SimpleNamespace(
            task_name=task_name,
            run_at=run_at,
            job_id=job_id,
            namespace=namespace,
            func=func,
            args=args,
            kwargs=kwargs or {},
        )
        self.jobs[job_id] = job
        return job

    def schedule_interval(self, task_name, interval_seconds, *, job_id=None, namespace=None, func=None, **kwargs):
        job = SimpleNamespace(
            task_name=task_name,
            interval_seconds=interval_seconds,
            job_id=job_id,
            namespace=namespace,
            func=func,
            args=(),
            kwargs={},
            options=kwargs,
        )
        self.jobs[job_id] = job
        return job

    def remove_job(self, job_id: str) -> bool:
        self.removed.append(job_id)
        return self.jobs.pop(job_id, None) is not None

    def run(self, job_id: str) -> Any:
        job = self.jobs.pop(job_id)
        return job.func(*job.args, **job.kwargs)

    def run_all(self) -> list[Any]:
        return [self.run(job_id) for job_id in list(self.jobs)]


class FakeController:
    """Local controller that records payloads or fails on demand."""

    def __init__(self, host: str = "192.168.1.50", fail: bool = False):
        self.host = host
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    def apply_state(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        if self.fail:
            raise ControllerUnreachableError(f"{self.host} timed out", detail={"host": self.host})
        self.calls.append(payload)
        return {"success": True}


class FakeEventBus:
    """Synchronous stand-in for the EventBus singleton."""

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    def publish(self, event_name, data=None) -> None:
        name = getattr(event_name, "value", event_name)
        payload = data.model_dump(mode="json") if hasattr(data, "model_dump") else data
        self.events.append((name, payload))

    def subscribe(self, _event_name, _callback):
        return lambda: None

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ============================= Fixtures ====================================


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Keep JSON stores and logs inside the test's temporary directory."""
    monkeypatch.setenv("NEIGHBORSYNC_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("NEIGHBORSYNC_LOG_DIR", str(tmp_path / "logs"))
    return tmp_path


@pytest.fixture()
def store():
    return InMemoryDocumentStore()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def scheduler():
    return FakeScheduler()


@pytest.fixture()
def controller():
    return FakeController()


@pytest.fixture()
def event_bus():
    return FakeEventBus()


@pytest.fixture()
def group():
    return NeighborhoodGroup(group_id=GROUP_ID, name="Maple Street", latitude=40.0, longitude=-75.0)


@pytest.fixture()
def make_member():
    def _make(
        member_id: str,
        position: int,
        roofline: float | None = 10.0,
        *,
        paused: bool = False,
        opted_out: tuple[str, ...] = (),
        **kwargs: Any,
    ) -> NeighborhoodMember:
        return NeighborhoodMember(
            member_id=member_id,
            group_id=kwargs.pop("group_id", GROUP_ID),
            display_name=kwargs.pop("display_name", f"Home {member_id}"),
            position_index=position,
            roofline_meters=roofline,
            participation_status=ParticipationStatus.PAUSED if paused else ParticipationStatus.ACTIVE,
            opted_out_schedule_ids=frozenset(opted_out),
            **kwargs,
        )

    return _make


@pytest.fixture()
def street(make_member):
    """Three homes, 10 m of roofline each, positions 1..3."""
    return [make_member("m1", 1), make_member("m2", 2), make_member("m3", 3)]
