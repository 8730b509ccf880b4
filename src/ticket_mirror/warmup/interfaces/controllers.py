"""
Warmup Controllers (API Routes)
===============================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ticket_mirror.dependencies import get_mirror_service
from ticket_mirror.services import TicketMirrorService
from ticket_mirror.warmup.application import (
    DrainResponse,
    QueryWarmupRequest,
    WarmupEnqueueResponse,
    WarmupRequest,
    WarmupStatsResponse,
)

router = APIRouter(prefix="/warmup", tags=["Warmup"])


@router.post("", response_model=WarmupEnqueueResponse, summary="Queue a ticket for warmup")
async def enqueue(
    request: WarmupRequest,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    queued = await mirror.warmup_enqueue(request.ticket_id, request.table, request.priority)
    return WarmupEnqueueResponse(
        ticket_id=request.ticket_id,
        table=request.table,
        priority=request.priority,
        queued=queued,
    )


@router.post("/query", summary="Queue tickets matching a ServiceNow query")
async def enqueue_from_query(
    request: QueryWarmupRequest,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    queued = await mirror.warmup_from_query(request.table, request.query, request.priority)
    return {"table": request.table, "priority": request.priority, "queued": queued}


@router.post("/drain", response_model=DrainResponse, summary="Drain the warmup queue now")
async def drain(
    timeout: Optional[float] = Query(default=None, gt=0, description="Stop starting new chunks after this many seconds"),
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    return DrainResponse.from_result(await mirror.drain_warmup(timeout=timeout))


@router.get("/stats", response_model=WarmupStatsResponse, summary="Queue and hit/miss counters")
async def stats(mirror: TicketMirrorService = Depends(get_mirror_service)):
    return WarmupStatsResponse(**await mirror.warmup.stats())
