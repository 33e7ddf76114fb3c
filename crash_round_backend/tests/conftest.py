import os
import sys

import pytest

# Ensure the backend root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

# Settings are read at import time, so test config must be in place first.
# Long phases keep the lifespan-started scheduler from advancing mid-test.
os.environ.setdefault("CRASH_ADMIN_KEY", "test-admin-key")
os.environ.setdefault("CRASH_WAIT_MS", "60000")
os.environ.setdefault("CRASH_PAUSE_MS", "60000")
os.environ.setdefault("CRASH_HEARTBEAT_MS", "60000")
os.environ.setdefault("LEDGER_WEBHOOK_ENABLED", "0")

from fastapi.testclient import TestClient  # noqa: E402

from app import main  # noqa: E402
from app.game_logic import ReplayPoolGenerator  # noqa: E402
from app.history import HistoryRing  # noqa: E402
from app.outcome_queue import OutcomeQueue  # noqa: E402
from app.scheduler import RoundScheduler  # noqa: E402
from app.ws_manager import BroadcastHub  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakeClock:
    """Seconds-based clock the tests move by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.ms = start_ms

    def __call__(self) -> float:
        return self.ms / 1000

    def advance_ms(self, ms: int) -> None:
        self.ms += ms


class Recorder:
    """Stands in for the hub when a test only needs the published events."""

    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_scheduler(clock):
    def _make(pool=(1.50, 2.00, 3.00), hub=None, **options):
        queue = OutcomeQueue(ReplayPoolGenerator(pool), min_depth=10)
        options.setdefault("clock", clock)
        return RoundScheduler(queue, HistoryRing(20), hub if hub is not None else Recorder(), **options)
    return _make


@pytest.fixture()
def api_scheduler(monkeypatch, clock):
    sched = main.build_scheduler(clock=clock)
    sched.queue.set_generator(ReplayPoolGenerator([1.50, 2.00, 3.00]))
    monkeypatch.setattr(main, "scheduler", sched)
    return sched


@pytest.fixture()
def client(api_scheduler):
    # Not entered as a context manager: the lifespan (and its timers) stays off
    # and tests drive the scheduler's transitions directly.
    return TestClient(main.app)
