"""Redis record store adapter."""
from datetime import datetime, timedelta, timezone
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError
from .base import (
    InsertResult,
    LineTotals,
    RecordQuery,
    RecordStore,
    StoreUnavailableError,
    defect_value,
    group_by_line,
)
from ..event_models import StoredRecord
from ..config import get_settings

log = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# KEYS: record hash, time index. ARGV: data, received_us, score, event_id
INSERT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
redis.call('HSET', KEYS[1], 'data', ARGV[1], 'received_us', ARGV[2])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
return 1
"""

# KEYS: record hash, time index. ARGV: expected_us, data, received_us, score, event_id
UPDATE_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'received_us')
if current ~= ARGV[1] then
  return 0
end
redis.call('HSET', KEYS[1], 'data', ARGV[2], 'received_us', ARGV[3])
redis.call('ZADD', KEYS[2], ARGV[4], ARGV[5])
return 1
"""


def to_micros(value: datetime) -> int:
    """Exact epoch microseconds for a timezone-aware datetime."""
    return (value - _EPOCH) // timedelta(microseconds=1)


def to_score(value: datetime) -> float:
    return to_micros(value) / 1000.0


class RedisRecordStore(RecordStore):
    """Redis implementation of the record store.

    Each record is a hash holding the serialized record and its receipt
    time in epoch microseconds. Insert and conditional update run as Lua
    scripts so the existence check and the write are atomic on the server.
    A sorted set indexes event ids by event_time (milliseconds) for range
    queries.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str | None = None,
        client: Redis | None = None,
    ):
        """
        Initialize Redis record store.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            key_prefix: Namespace for keys (defaults to settings.REDIS_KEY_PREFIX)
            client: Pre-built client speaking the redis-py API; must not decode responses
        """
        settings = get_settings()
        self.redis_url = redis_url or str(settings.REDIS_URL)
        self.key_prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self._client: Redis | None = client
        self._insert_script = None
        self._update_script = None
        self._index_key = f"{self.key_prefix}:events:by_time"

    def _get_client(self) -> Redis:
        """Get or create Redis client and register the write scripts on it."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # We'll handle encoding ourselves
                socket_connect_timeout=5,
                socket_timeout=5
            )
        if self._insert_script is None:
            self._insert_script = self._client.register_script(INSERT_SCRIPT)
            self._update_script = self._client.register_script(UPDATE_SCRIPT)
        return self._client

    def _record_key(self, event_id: str) -> str:
        return f"{self.key_prefix}:event:{event_id}"

    @staticmethod
    def _encode(record: StoredRecord) -> bytes:
        return orjson.dumps(record.model_dump(mode="json"))

    @staticmethod
    def _decode(data: bytes) -> StoredRecord:
        return StoredRecord.model_validate(orjson.loads(data))

    async def find(self, event_id: str) -> StoredRecord | None:
        try:
            data = self._get_client().hget(self._record_key(event_id), "data")
        except RedisError as e:
            log.error("redis.find_failed", error=str(e), event_id=event_id)
            raise StoreUnavailableError(str(e)) from e

        if data is None:
            return None
        return self._decode(data)

    async def insert(self, record: StoredRecord) -> InsertResult:
        self._get_client()
        try:
            created = self._insert_script(
                keys=[self._record_key(record.event_id), self._index_key],
                args=[
                    self._encode(record),
                    to_micros(record.received_time),
                    to_score(record.event_time),
                    record.event_id,
                ],
            )
        except RedisError as e:
            log.error("redis.insert_failed", error=str(e), event_id=record.event_id)
            raise StoreUnavailableError(str(e)) from e

        if int(created) == 0:
            return InsertResult.UNIQUE_KEY_VIOLATION
        return InsertResult.OK

    async def update(self, record: StoredRecord, expected_received_time: datetime) -> bool:
        self._get_client()
        try:
            applied = self._update_script(
                keys=[self._record_key(record.event_id), self._index_key],
                args=[
                    to_micros(expected_received_time),
                    self._encode(record),
                    to_micros(record.received_time),
                    to_score(record.event_time),
                    record.event_id,
                ],
            )
        except RedisError as e:
            log.error("redis.update_failed", error=str(e), event_id=record.event_id)
            raise StoreUnavailableError(str(e)) from e

        return int(applied) == 1

    def _scan(self, query: RecordQuery) -> list[StoredRecord]:
        """
        Load the records whose event_time falls in the query window.

        The index range is widened by a millisecond on both sides and the
        exact half-open bound is applied in Python, so float scores never
        decide membership.
        """
        try:
            client = self._get_client()
            event_ids = client.zrangebyscore(
                self._index_key,
                to_score(query.start) - 1,
                to_score(query.end) + 1,
            )
            if not event_ids:
                return []

            pipe = client.pipeline(transaction=False)
            for event_id in event_ids:
                if isinstance(event_id, bytes):
                    event_id = event_id.decode()
                pipe.hget(self._record_key(event_id), "data")
            rows = pipe.execute()
        except RedisError as e:
            log.error("redis.query_failed", error=str(e))
            raise StoreUnavailableError(str(e)) from e

        records = [self._decode(data) for data in rows if data is not None]
        return [r for r in records if query.matches(r)]

    async def count_events(self, query: RecordQuery) -> int:
        return len(self._scan(query))

    async def sum_defects(self, query: RecordQuery) -> int:
        return sum(defect_value(r) for r in self._scan(query))

    async def line_totals(self, query: RecordQuery) -> list[LineTotals]:
        return group_by_line(self._scan(query))

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            client = self._get_client()
            return client.ping()
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._insert_script = None
            self._update_script = None
