from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from ..event_models import InboundEvent
from ..services.ingestion import BatchResult, IngestionService
from ..services.stats import LineDefectStats, MachineStats, StatsService

router = APIRouter(prefix="/v1")


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats_service


@router.post("/events/batch", response_model=BatchResult)
async def ingest_batch(
    events: list[InboundEvent],
    service: IngestionService = Depends(get_ingestion_service),
):
    return await service.ingest(events)


@router.get("/stats", response_model=MachineStats)
async def machine_stats(
    machine_id: str = Query(..., alias="machineId"),
    start: datetime = Query(...),
    end: datetime = Query(...),
    stats: StatsService = Depends(get_stats_service),
):
    try:
        return await stats.machine_stats(machine_id, start, end)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))


@router.get("/stats/top-defect-lines", response_model=list[LineDefectStats])
async def top_defect_lines(
    factory_id: str = Query(..., alias="factoryId"),
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    limit: int | None = Query(None, ge=0),
    stats: StatsService = Depends(get_stats_service),
):
    try:
        return await stats.top_defect_lines(factory_id, start, end, limit)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
