"""In-memory record store adapter."""
from datetime import datetime
import threading
import structlog
from .base import (
    InsertResult,
    LineTotals,
    RecordQuery,
    RecordStore,
    defect_value,
    group_by_line,
)
from ..event_models import StoredRecord

log = structlog.get_logger()


class InMemoryRecordStore(RecordStore):
    """In-memory implementation of the record store.

    Records are frozen models swapped under a lock, so readers always see
    either the old or the new version of a row. The lock is a threading
    lock so one store can be shared by several worker threads.
    """

    def __init__(self):
        self._records: dict[str, StoredRecord] = {}
        self._lock = threading.Lock()

    async def find(self, event_id: str) -> StoredRecord | None:
        with self._lock:
            return self._records.get(event_id)

    async def insert(self, record: StoredRecord) -> InsertResult:
        with self._lock:
            if record.event_id in self._records:
                return InsertResult.UNIQUE_KEY_VIOLATION
            self._records[record.event_id] = record

        log.debug("record.inserted", event_id=record.event_id, adapter="memory")
        return InsertResult.OK

    async def update(self, record: StoredRecord, expected_received_time: datetime) -> bool:
        with self._lock:
            current = self._records.get(record.event_id)
            if current is None or current.received_time != expected_received_time:
                return False
            self._records[record.event_id] = record

        log.debug("record.updated", event_id=record.event_id, adapter="memory")
        return True

    def _snapshot(self, query: RecordQuery) -> list[StoredRecord]:
        with self._lock:
            records = list(self._records.values())
        return [r for r in records if query.matches(r)]

    async def count_events(self, query: RecordQuery) -> int:
        return len(self._snapshot(query))

    async def sum_defects(self, query: RecordQuery) -> int:
        return sum(defect_value(r) for r in self._snapshot(query))

    async def line_totals(self, query: RecordQuery) -> list[LineTotals]:
        return group_by_line(self._snapshot(query))

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
