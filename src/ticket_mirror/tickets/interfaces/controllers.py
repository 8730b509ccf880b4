"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for mirrored tickets.

Controllers are thin - they delegate to the ``TicketMirrorService`` facade.
Application errors are mapped to HTTP statuses by the shared handlers.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ticket_mirror.dependencies import get_mirror_service
from ticket_mirror.services import TicketMirrorService
from ticket_mirror.tickets.application import (
    AuditEntryResponse,
    QueryResponse,
    SyncResultResponse,
    SyncTableRequest,
    TicketQuery,
    TicketResponse,
)
from ticket_mirror.tickets.application.services import validate_table

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.get(
    "/{table}",
    response_model=QueryResponse,
    summary="List tickets, local store first",
)
async def query_tickets(
    table: str,
    group: str = Query(default="all", description="Assignment group name or 'all'"),
    state: str = Query(default="all", description="State class, e.g. 'active'"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=1000),
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    """
    One page of tickets.

    `source` tells whether the page came from the local store or was
    fetched from ServiceNow (and cached) because the local page was empty.
    """
    result = await mirror.query_tickets(
        table, TicketQuery(group=group, state=state, page=page, limit=limit)
    )
    return QueryResponse(
        data=[record.to_document() for record in result.data],
        total=result.total,
        has_more=result.has_more,
        source=result.source,
    )


@router.get(
    "/{table}/{ticket_id}",
    response_model=TicketResponse,
    summary="Get one ticket",
)
async def get_ticket(
    table: str,
    ticket_id: str,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    record = await mirror.get_ticket(table, ticket_id)
    return TicketResponse(ticket=record.to_document(), version=record.version)


@router.post(
    "/{table}/{ticket_id}/sync",
    summary="Reconcile one ticket with ServiceNow",
)
async def sync_ticket(
    table: str,
    ticket_id: str,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    changed = await mirror.sync_ticket(table, ticket_id)
    return {"ticket_id": ticket_id, "table": table, "changed": changed}


@router.get(
    "/{table}/{ticket_id}/audit",
    response_model=List[AuditEntryResponse],
    summary="Audit trail of a ticket, newest first",
)
async def get_audit_history(
    table: str,
    ticket_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    validate_table(table)
    entries = await mirror.get_audit_history(ticket_id, limit=limit)
    return [AuditEntryResponse(**vars(entry)) for entry in entries]


@router.post(
    "/{table}/sync",
    response_model=SyncResultResponse,
    summary="Pull a whole table from ServiceNow",
)
async def sync_table(
    table: str,
    request: SyncTableRequest,
    mirror: TicketMirrorService = Depends(get_mirror_service),
):
    result = await mirror.sync_table(
        table,
        incremental=request.incremental,
        delta_hours=request.delta_hours,
        max_records=request.max_records,
    )
    return SyncResultResponse(
        table=result.table,
        incremental=result.incremental,
        processed=result.processed,
        created=result.created,
        updated=result.updated,
        unchanged=result.unchanged,
        errors=result.errors,
        duration_ms=result.duration_ms,
        error_details=result.error_details,
    )
