"""Tests for defect statistics."""
from datetime import timedelta
import pytest
from telemetry_ingest.adapters.memory import InMemoryRecordStore
from telemetry_ingest.event_models import StoredRecord
from telemetry_ingest.services.stats import StatsService
from conftest import BASE_TIME, build_event

START = BASE_TIME - timedelta(hours=2)
END = BASE_TIME


async def seed(store, *events):
    for evt in events:
        await store.insert(StoredRecord.from_inbound(evt, BASE_TIME, payload_hash=evt.event_id))


@pytest.mark.asyncio
async def test_sentinel_counts_as_event_but_not_defect():
    store = InMemoryRecordStore()
    await seed(
        store,
        build_event(event_id="a", event_time=START, defect_count=3),
        build_event(event_id="b", event_time=START + timedelta(minutes=5), defect_count=-1),
    )

    stats = await StatsService(store).machine_stats("M-1", START, END)

    assert stats.events_count == 2
    assert stats.defects_count == 3


@pytest.mark.asyncio
async def test_window_is_half_open():
    """Test start is inclusive and end is exclusive."""
    store = InMemoryRecordStore()
    await seed(
        store,
        build_event(event_id="at-start", event_time=START, defect_count=1),
        build_event(event_id="at-end", event_time=END, defect_count=10),
        build_event(event_id="before", event_time=START - timedelta(microseconds=1), defect_count=10),
    )

    stats = await StatsService(store).machine_stats("M-1", START, END)

    assert stats.events_count == 1
    assert stats.defects_count == 1


@pytest.mark.asyncio
async def test_defect_rate_and_status():
    """Test the hourly rate and the Healthy/Warning threshold."""
    store = InMemoryRecordStore()
    await seed(
        store,
        build_event(event_id="a", event_time=START, defect_count=3),
        build_event(event_id="b", event_time=START + timedelta(hours=1), defect_count=0),
    )
    service = StatsService(store, healthy_defect_rate=2.0)

    healthy = await service.machine_stats("M-1", START, END)
    assert healthy.avg_defect_rate == pytest.approx(1.5)
    assert healthy.status == "Healthy"

    await seed(store, build_event(event_id="c", event_time=START, defect_count=1))
    warning = await service.machine_stats("M-1", START, END)
    assert warning.avg_defect_rate == pytest.approx(2.0)
    assert warning.status == "Warning"


@pytest.mark.asyncio
async def test_other_machines_excluded():
    store = InMemoryRecordStore()
    await seed(store, build_event(event_id="a", event_time=START, machine_id="M-2", defect_count=4))

    stats = await StatsService(store).machine_stats("M-1", START, END)
    assert stats.events_count == 0
    assert stats.defects_count == 0


@pytest.mark.asyncio
async def test_empty_window_has_zero_rate():
    stats = await StatsService(InMemoryRecordStore()).machine_stats("M-1", START, START)
    assert stats.avg_defect_rate == 0.0
    assert stats.status == "Healthy"


@pytest.mark.asyncio
async def test_inverted_window_rejected():
    with pytest.raises(ValueError):
        await StatsService(InMemoryRecordStore()).machine_stats("M-1", END, START)


@pytest.mark.asyncio
async def test_top_defect_lines_ranked_and_limited():
    store = InMemoryRecordStore()
    await seed(
        store,
        build_event(event_id="1", event_time=START, line_id="L-1", defect_count=1),
        build_event(event_id="2", event_time=START, line_id="L-1", defect_count=0),
        build_event(event_id="3", event_time=START, line_id="L-1", defect_count=-1),
        build_event(event_id="4", event_time=START, line_id="L-2", defect_count=6),
        build_event(event_id="5", event_time=START, line_id="L-3", defect_count=0),
        build_event(event_id="6", event_time=START, line_id="L-9", factory_id="F-2", defect_count=50),
        build_event(event_id="7", event_time=END, line_id="L-3", defect_count=50),
    )
    service = StatsService(store)

    lines = await service.top_defect_lines("F-1", START, END, limit=10)
    assert [(l.line_id, l.total_defects, l.event_count) for l in lines] == [
        ("L-2", 6, 1),
        ("L-1", 1, 3),
        ("L-3", 0, 1),
    ]
    assert lines[0].defects_percent == 600.0
    assert lines[1].defects_percent == 33.33

    top = await service.top_defect_lines("F-1", START, END, limit=2)
    assert [l.line_id for l in top] == ["L-2", "L-1"]


@pytest.mark.asyncio
async def test_top_defect_lines_default_limit():
    store = InMemoryRecordStore()
    await seed(store, *[
        build_event(event_id=str(i), event_time=START, line_id=f"L-{i:02d}", defect_count=i)
        for i in range(12)
    ])

    lines = await StatsService(store).top_defect_lines("F-1", START, END)
    assert len(lines) == 10
    assert lines[0].line_id == "L-11"
