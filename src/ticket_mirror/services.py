"""
Ticket Mirror Facade
====================

The one entry point HTTP routes, jobs and the change feed talk to.
Wires nothing itself: every collaborator is passed in by the composition
root (see ``ticket_mirror.main``).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ticket_mirror.config import WarmupPriority
from ticket_mirror.sla.application.services import SLAService
from ticket_mirror.sla.domain import SLACheckResult, SLAMetrics, SLARecord, SLASummary
from ticket_mirror.tickets.application.dto import QueryResult, SyncResult, TicketQuery
from ticket_mirror.tickets.application.interfaces import ILocalStore
from ticket_mirror.tickets.application.services import (
    HybridResolver,
    TicketSyncService,
    validate_table,
)
from ticket_mirror.tickets.domain import AuditEntry, TicketRecord
from ticket_mirror.warmup.application.services import WarmupScheduler
from ticket_mirror.warmup.domain import DrainResult


class TicketMirrorService:
    """Facade over resolver, SLA tracking, warmup queue and table sync."""

    def __init__(
        self,
        store: ILocalStore,
        resolver: HybridResolver,
        sla_service: SLAService,
        warmup: WarmupScheduler,
        sync_service: TicketSyncService,
        remote_timeout_seconds: Optional[float] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.sla_service = sla_service
        self.warmup = warmup
        self.sync_service = sync_service
        self._remote_timeout_seconds = remote_timeout_seconds

    # ========== Tickets ==========

    async def get_ticket(self, table: str, ticket_id: str) -> TicketRecord:
        return await self.resolver.get_by_id(table, ticket_id, timeout=self._remote_timeout_seconds)

    async def query_tickets(self, table: str, query: Optional[TicketQuery] = None) -> QueryResult:
        return await self.resolver.query(
            table, query or TicketQuery(), timeout=self._remote_timeout_seconds
        )

    async def sync_ticket(self, table: str, ticket_id: str) -> bool:
        """True iff the local copy changed."""
        return await self.resolver.sync_ticket(table, ticket_id, timeout=self._remote_timeout_seconds)

    async def get_audit_history(self, ticket_id: str, limit: int = 100) -> List[AuditEntry]:
        return await self.store.get_audit_history(ticket_id, limit=limit)

    async def sync_table(
        self,
        table: str,
        incremental: bool = True,
        delta_hours: Optional[int] = None,
        max_records: Optional[int] = None,
    ) -> SyncResult:
        return await self.sync_service.sync_table(
            table, incremental=incremental, delta_hours=delta_hours, max_records=max_records
        )

    # ========== SLA ==========

    async def get_sla_summary(self, ticket_id: str) -> SLASummary:
        return await self.sla_service.get_summary(ticket_id)

    async def get_sla_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        table: Optional[str] = None,
    ) -> SLAMetrics:
        if table is not None:
            validate_table(table)
        return await self.sla_service.get_metrics(start, end, table)

    async def tickets_near_breach(self, hours_threshold: float = 2.0) -> List[SLARecord]:
        return await self.sla_service.tickets_near_breach(hours_threshold)

    async def check_slas(self) -> SLACheckResult:
        return await self.sla_service.check_all()

    # ========== Warmup ==========

    async def warmup_enqueue(
        self,
        ticket_id: str,
        table: str,
        priority: str = WarmupPriority.MEDIUM,
    ) -> bool:
        return await self.warmup.enqueue(ticket_id, table, priority)

    async def warmup_from_query(self, table: str, query: str, priority: str = WarmupPriority.HIGH) -> int:
        return await self.warmup.warmup_from_query(table, query, priority)

    async def drain_warmup(self, timeout: Optional[float] = None) -> DrainResult:
        return await self.warmup.drain(timeout=timeout)

    async def stats(self) -> Dict[str, Any]:
        return {
            "warmup": await self.warmup.stats(),
            "sync": self.sync_service.statistics(),
        }
