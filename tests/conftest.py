"""Shared helpers for ingestion tests."""
from datetime import datetime, timedelta, timezone
import itertools
import threading
import pytest
from telemetry_ingest.adapters.memory import InMemoryRecordStore
from telemetry_ingest.event_models import InboundEvent

BASE_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns BASE_TIME, then one second later on every call. Thread-safe."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)):
        self.start = start
        self.step = step
        self._ticks = itertools.count()
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            n = next(self._ticks)
        return self.start + n * self.step


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def build_event(**overrides) -> InboundEvent:
    fields = {
        "event_id": "E-1",
        "event_time": BASE_TIME - timedelta(hours=1),
        "machine_id": "M-1",
        "factory_id": "F-1",
        "line_id": "L-1",
        "duration_ms": 1200,
        "defect_count": 0,
    }
    fields.update(overrides)
    return InboundEvent(**fields)


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def clock():
    return TickingClock()
