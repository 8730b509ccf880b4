"""
Tickets Application Layer
=========================

Use cases for the ticket mirror:
- Ports: ILocalStore, IRemoteSource
- Services: TicketWriter, HybridResolver, TicketSyncService
- DTOs: query parameters, results and API response models
"""

from ticket_mirror.tickets.application.interfaces import (
    ILocalStore,
    IRemoteSource,
    RemotePage,
)
from ticket_mirror.tickets.application.dto import (
    TicketQuery,
    SyncTableRequest,
    QueryResult,
    WriteOutcome,
    SyncResult,
    TicketResponse,
    QueryResponse,
    AuditEntryResponse,
    SyncResultResponse,
)
from ticket_mirror.tickets.application.services import (
    TicketWriter,
    HybridResolver,
    TicketSyncService,
    build_local_filter,
    build_remote_query,
)

__all__ = [
    # Ports
    "ILocalStore",
    "IRemoteSource",
    "RemotePage",
    # DTOs
    "TicketQuery",
    "SyncTableRequest",
    "QueryResult",
    "WriteOutcome",
    "SyncResult",
    "TicketResponse",
    "QueryResponse",
    "AuditEntryResponse",
    "SyncResultResponse",
    # Services
    "TicketWriter",
    "HybridResolver",
    "TicketSyncService",
    "build_local_filter",
    "build_remote_query",
]
