"""Tests for record store adapters."""
from datetime import timedelta
import pytest
from unittest.mock import MagicMock, patch
import orjson
from redis.exceptions import ConnectionError as RedisConnectionError
from telemetry_ingest.adapters.base import InsertResult, RecordQuery, StoreUnavailableError
from telemetry_ingest.adapters.factory import create_store
from telemetry_ingest.adapters.memory import InMemoryRecordStore
from telemetry_ingest.adapters.redis_store import RedisRecordStore, to_micros
from telemetry_ingest.config import Settings
from telemetry_ingest.event_models import StoredRecord
from telemetry_ingest.ingest.hasher import fingerprint
from conftest import BASE_TIME, build_event


def make_record(received=BASE_TIME, **overrides) -> StoredRecord:
    evt = build_event(**overrides)
    return StoredRecord.from_inbound(evt, received, fingerprint(evt))


@pytest.mark.asyncio
async def test_memory_store_insert_and_find():
    """Test in-memory store round trip by business key."""
    store = InMemoryRecordStore()
    record = make_record()

    assert await store.insert(record) is InsertResult.OK
    assert await store.find("E-1") == record
    assert await store.find("missing") is None


@pytest.mark.asyncio
async def test_memory_store_rejects_duplicate_key():
    """Test the uniqueness constraint on event_id."""
    store = InMemoryRecordStore()
    await store.insert(make_record())

    result = await store.insert(make_record(defect_count=5))

    assert result is InsertResult.UNIQUE_KEY_VIOLATION
    assert (await store.find("E-1")).defect_count == 0
    assert len(store) == 1


@pytest.mark.asyncio
async def test_memory_store_conditional_update():
    """Test updates apply only against the expected receipt time."""
    store = InMemoryRecordStore()
    original = make_record()
    await store.insert(original)
    newer = original.superseded_by(build_event(defect_count=2), BASE_TIME + timedelta(seconds=5), "h2")

    assert await store.update(newer, BASE_TIME - timedelta(seconds=1)) is False
    assert await store.find("E-1") == original

    assert await store.update(newer, BASE_TIME) is True
    assert await store.find("E-1") == newer


@pytest.mark.asyncio
async def test_memory_store_update_missing_key():
    store = InMemoryRecordStore()
    assert await store.update(make_record(), BASE_TIME) is False


@pytest.mark.asyncio
async def test_memory_store_health_check():
    assert await InMemoryRecordStore().health_check() is True


def test_query_rejects_inverted_window():
    with pytest.raises(ValueError):
        RecordQuery(start=BASE_TIME, end=BASE_TIME - timedelta(seconds=1))


def _redis_store():
    mock_redis = MagicMock()
    insert_script = MagicMock(return_value=1)
    update_script = MagicMock(return_value=1)
    mock_redis.register_script.side_effect = [insert_script, update_script]
    store = RedisRecordStore(redis_url="redis://localhost:6379", key_prefix="test")
    return store, mock_redis, insert_script, update_script


@pytest.mark.asyncio
async def test_redis_store_insert_with_mock():
    """Test Redis insert runs the atomic insert script."""
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, insert_script, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        record = make_record()

        assert await store.insert(record) is InsertResult.OK

        kwargs = insert_script.call_args.kwargs
        assert kwargs["keys"] == ["test:event:E-1", "test:events:by_time"]
        data, received_us, _score, event_id = kwargs["args"]
        assert StoredRecord.model_validate(orjson.loads(data)) == record
        assert received_us == to_micros(BASE_TIME)
        assert event_id == "E-1"


@pytest.mark.asyncio
async def test_redis_store_insert_collision():
    """Test an existing key maps to a uniqueness violation."""
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, insert_script, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        insert_script.return_value = 0

        assert await store.insert(make_record()) is InsertResult.UNIQUE_KEY_VIOLATION


@pytest.mark.asyncio
async def test_redis_store_update_passes_expected_receipt():
    """Test the update script is keyed on the last-seen receipt time."""
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, _, update_script = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        record = make_record(received=BASE_TIME + timedelta(seconds=3))

        assert await store.update(record, BASE_TIME) is True
        args = update_script.call_args.kwargs["args"]
        assert args[0] == to_micros(BASE_TIME)
        assert args[2] == to_micros(BASE_TIME + timedelta(seconds=3))

        update_script.return_value = 0
        assert await store.update(record, BASE_TIME) is False


@pytest.mark.asyncio
async def test_redis_store_find_with_mock():
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, _, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        record = make_record()
        mock_redis.hget.return_value = orjson.dumps(record.model_dump(mode="json"))

        assert await store.find("E-1") == record
        mock_redis.hget.assert_called_once_with("test:event:E-1", "data")

        mock_redis.hget.return_value = None
        assert await store.find("E-2") is None


@pytest.mark.asyncio
async def test_redis_store_errors_become_store_unavailable():
    """Test Redis failures surface as StoreUnavailableError."""
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, insert_script, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.hget.side_effect = RedisConnectionError("Connection refused")
        insert_script.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(StoreUnavailableError):
            await store.find("E-1")
        with pytest.raises(StoreUnavailableError):
            await store.insert(make_record())


@pytest.mark.asyncio
async def test_redis_store_queries_apply_exact_window():
    """Test range queries keep the half-open window and filters exact."""
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, _, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis

        start = BASE_TIME - timedelta(hours=2)
        end = BASE_TIME
        rows = [
            make_record(event_id="a", event_time=start, defect_count=2),
            make_record(event_id="b", event_time=end, defect_count=5),
            make_record(event_id="c", event_time=start + timedelta(minutes=1), defect_count=-1),
            make_record(event_id="d", event_time=start + timedelta(minutes=2), machine_id="M-2", defect_count=9),
        ]
        mock_redis.zrangebyscore.return_value = [r.event_id.encode() for r in rows]
        mock_redis.pipeline.return_value.execute.return_value = [
            orjson.dumps(r.model_dump(mode="json")) for r in rows
        ]

        query = RecordQuery(machine_id="M-1", start=start, end=end)
        assert await store.count_events(query) == 2
        assert await store.sum_defects(query) == 2

        totals = await store.line_totals(RecordQuery(factory_id="F-1", start=start, end=end))
        assert [(t.line_id, t.total_defects, t.event_count) for t in totals] == [("L-1", 11, 3)]


@pytest.mark.asyncio
async def test_redis_store_empty_range():
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, _, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.zrangebyscore.return_value = []

        query = RecordQuery(start=BASE_TIME - timedelta(hours=1), end=BASE_TIME)
        assert await store.count_events(query) == 0
        mock_redis.pipeline.assert_not_called()


@pytest.mark.asyncio
async def test_redis_store_health_check():
    with patch("telemetry_ingest.adapters.redis_store.Redis") as mock_redis_class:
        store, mock_redis, _, _ = _redis_store()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.ping.return_value = True
        assert await store.health_check() is True

        mock_redis.ping.side_effect = Exception("Connection refused")
        assert await store.health_check() is False


def test_store_selection_defaults_to_memory():
    assert isinstance(create_store(Settings(STORE_ADAPTER="memory")), InMemoryRecordStore)


def test_store_selection_falls_back_without_redis_url():
    store = create_store(Settings(STORE_ADAPTER="redis", REDIS_URL=None))
    assert isinstance(store, InMemoryRecordStore)


def test_store_selection_redis():
    store = create_store(Settings(STORE_ADAPTER="redis", REDIS_URL="redis://cache:6379/0"))
    assert isinstance(store, RedisRecordStore)
    assert store.redis_url == "redis://cache:6379/0"
