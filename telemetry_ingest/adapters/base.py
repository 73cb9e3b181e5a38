"""Base adapter interface for record store backends."""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from ..event_models import StoredRecord, ensure_utc


class StoreError(Exception):
    """Base class for record store faults."""


class StoreUnavailableError(StoreError):
    """The backend could not be reached or failed mid-operation."""


class InsertResult(str, Enum):
    OK = "ok"
    UNIQUE_KEY_VIOLATION = "unique_key_violation"


class RecordQuery(BaseModel):
    """Filter over stored records; the time window is half-open [start, end) on event_time."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    machine_id: str | None = None
    factory_id: str | None = None
    line_id: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "RecordQuery":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    def matches(self, record: StoredRecord) -> bool:
        if not self.start <= record.event_time < self.end:
            return False
        if self.machine_id is not None and record.machine_id != self.machine_id:
            return False
        if self.factory_id is not None and record.factory_id != self.factory_id:
            return False
        if self.line_id is not None and record.line_id != self.line_id:
            return False
        return True


class LineTotals(BaseModel):
    line_id: str
    total_defects: int
    event_count: int


def defect_value(record: StoredRecord) -> int:
    """Defect count contribution to sums; the -1 sentinel contributes nothing."""
    return 0 if record.defect_count == -1 else record.defect_count


def group_by_line(records) -> list[LineTotals]:
    """Group records by line, ordered by descending defect total then line id."""
    totals: dict[str, list[int]] = {}
    for record in records:
        entry = totals.setdefault(record.line_id, [0, 0])
        entry[0] += defect_value(record)
        entry[1] += 1

    rows = [
        LineTotals(line_id=line_id, total_defects=defects, event_count=count)
        for line_id, (defects, count) in totals.items()
    ]
    rows.sort(key=lambda r: (-r.total_defects, r.line_id))
    return rows


class RecordStore(ABC):
    """Abstract interface for record store implementations.

    Implementations must enforce uniqueness of event_id on insert and
    perform updates as atomic compare-and-swap on received_time.
    """

    @abstractmethod
    async def find(self, event_id: str) -> StoredRecord | None:
        """
        Look up the record for a business key.

        Args:
            event_id: Business key

        Returns:
            The stored record, or None if the key has never been admitted
        """
        pass

    @abstractmethod
    async def insert(self, record: StoredRecord) -> InsertResult:
        """
        Create a record for a new business key.

        Args:
            record: Record to create

        Returns:
            InsertResult.OK, or InsertResult.UNIQUE_KEY_VIOLATION if a record
            for the same event_id already exists
        """
        pass

    @abstractmethod
    async def update(self, record: StoredRecord, expected_received_time: datetime) -> bool:
        """
        Replace the record for record.event_id if it has not moved on.

        Args:
            record: New record state
            expected_received_time: received_time of the record the caller resolved against

        Returns:
            True if applied, False if the stored received_time no longer matches
        """
        pass

    @abstractmethod
    async def count_events(self, query: RecordQuery) -> int:
        """Count records matching the query."""
        pass

    @abstractmethod
    async def sum_defects(self, query: RecordQuery) -> int:
        """Sum defect counts of matching records, skipping the -1 sentinel."""
        pass

    @abstractmethod
    async def line_totals(self, query: RecordQuery) -> list[LineTotals]:
        """Per-line defect sums and event counts, highest defect sum first."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass
