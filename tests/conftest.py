import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_PASSPHRASE", "test-pass")

from typing import Callable, List, Optional

import pytest

from fleet_core.app.db import create_session_factory
from fleet_core.app.schemas import Material
from fleet_core.app.services.gateway import PullResult, PullStatus, PushStatus, RemoteSnapshot
from fleet_core.app.services.local_store import LocalStore
from fleet_core.app.services.reconciliation import ReconciliationEngine, RequestPolicy
from fleet_core.app.services.scheduler import Cancellable, Scheduler


# ===========================================================================
# Fakes
# ===========================================================================

class _ManualHandle(Cancellable):
    def __init__(self, when: float, fn: Callable[[], None], interval: Optional[float] = None):
        self.when = when
        self.fn = fn
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Fake clock: nothing runs until the test says so."""

    def __init__(self):
        self.now = 0.0
        self.timers: List[_ManualHandle] = []
        self.tasks: List[Callable[[], None]] = []

    def call_later(self, delay_s, fn):
        handle = _ManualHandle(self.now + delay_s, fn)
        self.timers.append(handle)
        return handle

    def call_every(self, interval_s, fn):
        handle = _ManualHandle(self.now + interval_s, fn, interval_s)
        self.timers.append(handle)
        return handle

    def submit(self, fn):
        self.tasks.append(fn)

    def run_tasks(self):
        while self.tasks:
            self.tasks.pop(0)()

    def advance(self, seconds: float):
        target = self.now + seconds
        while True:
            due = [h for h in self.timers if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.now = handle.when
            if handle.interval:
                handle.when += handle.interval
            else:
                self.timers.remove(handle)
            handle.fn()
        self.now = target

    def run_push_and_cooldown(self, cooldown_s: float = 4.0):
        self.run_tasks()
        self.advance(cooldown_s)


class FakeGateway:
    """Records pushes and serves queued pull results."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.pushes = []
        self.pull_results: List[PullResult] = []
        self.pull_count = 0

    def push(self, materials, requests_, movements):
        self.pushes.append((list(materials), list(requests_), list(movements)))
        return PushStatus.SENT if self.configured else PushStatus.NOT_CONFIGURED

    def pull(self):
        self.pull_count += 1
        if not self.configured:
            return PullResult(PullStatus.NOT_CONFIGURED)
        if self.pull_results:
            return self.pull_results.pop(0)
        return PullResult(PullStatus.NO_DATA)

    def queue_snapshot(self, **collections):
        self.pull_results.append(PullResult(PullStatus.OK, RemoteSnapshot(**collections)))


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def session_factory():
    return create_session_factory("sqlite:///:memory:")


@pytest.fixture
def store(session_factory):
    return LocalStore(session_factory)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def gateway():
    return FakeGateway()


def material(code: str, stock: int = 0, name: Optional[str] = None) -> Material:
    return Material(id=code, code=code, name=name or f"Material {code}", stock=stock)


@pytest.fixture
def make_engine(store, gateway, scheduler):
    def _make(
        materials: Optional[List[Material]] = None,
        policy: RequestPolicy = RequestPolicy.RESERVE_ONLY,
        **kwargs
    ) -> ReconciliationEngine:
        store.save_materials(materials if materials is not None else [material("A1", 10)])
        return ReconciliationEngine(store, gateway, scheduler, policy=policy, **kwargs)
    return _make
