"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA summaries and compliance metrics.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ticket_mirror.dependencies import get_mirror_service
from ticket_mirror.services import TicketMirrorService
from ticket_mirror.sla.application import (
    SLAMetricsResponse,
    SLARecordResponse,
    SLASummaryResponse,
)

router = APIRouter(prefix="/sla", tags=["SLA Compliance"])


@router.get(
    "/tickets/{ticket_id}",
    response_model=SLASummaryResponse,
    summary="SLA summary of a stored ticket",
)
async def get_sla_summary(
    ticket_id: str,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    """
    Summary over the ticket's ServiceNow SLA rows, or over a measurement
    simulated from the policy table when ServiceNow reported none.
    """
    summary = await mirror.get_sla_summary(ticket_id)
    return SLASummaryResponse.from_summary(ticket_id, summary)


@router.get(
    "/metrics",
    response_model=SLAMetricsResponse,
    summary="Compliance metrics for a creation date range",
)
async def get_sla_metrics(
    start: Optional[datetime] = Query(default=None, description="Created at or after"),
    end: Optional[datetime] = Query(default=None, description="Created at or before"),
    table: Optional[str] = Query(default=None),
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    metrics = await mirror.get_sla_metrics(start, end, table)
    return SLAMetricsResponse(**metrics.to_dict())


@router.get(
    "/near-breach",
    response_model=List[SLARecordResponse],
    summary="Open tickets close to breaching",
)
async def tickets_near_breach(
    hours: float = Query(default=2.0, gt=0, description="Business hours left"),
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    records = await mirror.tickets_near_breach(hours)
    return [SLARecordResponse.from_record(record) for record in records]


@router.post("/check", summary="Run the periodic SLA check now")
async def run_sla_check(mirror: TicketMirrorService = Depends(get_mirror_service)):
    result = await mirror.check_slas()
    return vars(result)
