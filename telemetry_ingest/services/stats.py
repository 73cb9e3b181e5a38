"""Read-side aggregates over stored records."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from ..adapters.base import RecordQuery, RecordStore
from ..config import get_settings

HEALTHY = "Healthy"
WARNING = "Warning"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MachineStats(_CamelModel):
    machine_id: str
    start: datetime
    end: datetime
    events_count: int
    defects_count: int
    avg_defect_rate: float
    status: str


class LineDefectStats(_CamelModel):
    line_id: str
    total_defects: int
    event_count: int
    defects_percent: float


class StatsService:
    """Defect statistics for machines and production lines."""

    def __init__(self, store: RecordStore, healthy_defect_rate: float | None = None):
        self.store = store
        if healthy_defect_rate is None:
            healthy_defect_rate = get_settings().HEALTHY_DEFECT_RATE
        self.healthy_defect_rate = healthy_defect_rate

    async def machine_stats(self, machine_id: str, start: datetime, end: datetime) -> MachineStats:
        """
        Event count, defect total and hourly defect rate for one machine.

        Args:
            machine_id: Machine to report on
            start: Inclusive window start (event_time)
            end: Exclusive window end (event_time)

        Returns:
            MachineStats; status is Healthy while the rate stays under the threshold

        Raises:
            ValueError: If start is after end
        """
        query = RecordQuery(machine_id=machine_id, start=start, end=end)
        events = await self.store.count_events(query)
        defects = await self.store.sum_defects(query)

        hours = (query.end - query.start).total_seconds() / 3600.0
        rate = defects / hours if hours > 0 else 0.0

        return MachineStats(
            machine_id=machine_id,
            start=query.start,
            end=query.end,
            events_count=events,
            defects_count=defects,
            avg_defect_rate=rate,
            status=HEALTHY if rate < self.healthy_defect_rate else WARNING,
        )

    async def top_defect_lines(
        self,
        factory_id: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> list[LineDefectStats]:
        """Lines of a factory ranked by defect total, with defects per 100 events."""
        if limit is None:
            limit = get_settings().TOP_LINES_DEFAULT_LIMIT
        if limit < 0:
            raise ValueError("limit must not be negative")

        query = RecordQuery(factory_id=factory_id, start=start, end=end)
        rows = await self.store.line_totals(query)

        stats = []
        for row in rows[:limit]:
            percent = 0.0 if row.event_count == 0 else row.total_defects * 100.0 / row.event_count
            stats.append(
                LineDefectStats(
                    line_id=row.line_id,
                    total_defects=row.total_defects,
                    event_count=row.event_count,
                    defects_percent=round(percent, 2),
                )
            )
        return stats
