"""
SLA Application Services
=========================

Application services orchestrate SLA tracking and coordinate between
domain logic and repositories.

Following SOLID principles:
- Single Responsibility: SLAService tracks, summarizes and aggregates SLAs
- Dependency Inversion: Depends on repository/provider abstractions
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ticket_mirror.core.exceptions import ApplicationException, TicketNotFoundException
from ticket_mirror.shared.infrastructure.logging import get_logger
from ticket_mirror.sla.application.interfaces import (
    ISLAPolicyProvider,
    ISLARecordRepository,
    ISLATracker,
)
from ticket_mirror.sla.domain import (
    SLACalculator,
    SLACheckResult,
    SLAMetrics,
    SLARecord,
    SLASummary,
)
from ticket_mirror.tickets.application.interfaces import ILocalStore
from ticket_mirror.tickets.domain import Ticket, TicketRecord

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SLAService(ISLATracker):
    """
    Service for SLA tracking and compliance reporting.

    Keeps one ``SLARecord`` per ticket, refreshed after every write and by
    the periodic check.
    """

    def __init__(
        self,
        record_repository: ISLARecordRepository,
        policy_provider: ISLAPolicyProvider,
        store: ILocalStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._records = record_repository
        self._policy_provider = policy_provider
        self._store = store
        self._clock = clock

    async def track(self, ticket: Ticket, now: Optional[datetime] = None) -> SLARecord:
        """
        Create or refresh the SLA record of ``ticket``.

        A resolved record is returned untouched. Unknown priorities are
        tracked against the moderate (P3) policy.
        """
        now = now or self._clock()
        record = await self._records.get(ticket.id)
        if record is not None and record.is_resolved:
            return record

        policy = self._policy_provider.get_policy()
        calendar = policy.calendar()

        if record is None:
            target, fallback = policy.target_or_default(ticket.priority)
            if fallback:
                logger.warning(
                    "No SLA policy for priority, using moderate policy",
                    extra={"ticket_id": ticket.id, "priority": ticket.priority}
                )
            record = SLARecord(
                ticket_id=ticket.id,
                table=ticket.ticket_type,
                number=ticket.number,
                priority=ticket.priority,
                ticket_created_at=ticket.created_at,
                target_hours=target.target_hours,
                escalation_hours=target.escalation_hours,
            )

        end = min(ticket.resolved_at or now, now)
        business_hours = SLACalculator.business_hours_between(calendar, ticket.created_at, end)
        calendar_hours = SLACalculator.calendar_hours_between(ticket.created_at, end)

        was_breached = record.breached
        if record.refresh(
            business_hours,
            calendar_hours,
            now,
            resolved=ticket.is_resolved,
            resolved_at=ticket.resolved_at,
        ):
            if record.breached and not was_breached:
                logger.warning(
                    "SLA breached",
                    extra={
                        "ticket_id": ticket.id,
                        "number": ticket.number,
                        "elapsed_hours": record.business_hours_elapsed,
                        "target_hours": record.target_hours,
                    }
                )
            if record.is_resolved:
                logger.info(
                    "SLA resolved",
                    extra={
                        "ticket_id": ticket.id,
                        "resolution_time_hours": record.resolution_time_hours,
                        "target_hours": record.target_hours,
                        "breached": record.breached,
                    }
                )

        await self._records.save(record)
        return record

    async def get_summary(self, ticket_id: str) -> SLASummary:
        """
        SLA summary of a locally stored ticket.

        Uses ServiceNow's SLA rows when the ticket has any, the policy
        table otherwise.

        Raises:
            TicketNotFoundException: ticket is not in the local store
        """
        document = await self._store.find_one({"id": ticket_id})
        if document is None:
            raise TicketNotFoundException("ticket", ticket_id)
        return self.summarize(TicketRecord.from_document(document))

    def summarize(self, record: TicketRecord) -> SLASummary:
        if record.slas:
            return SLACalculator.attach(record.ticket, record.slas)
        return SLACalculator.compute(
            record.ticket, self._policy_provider.get_policy(), now=self._clock()
        )

    async def get_metrics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        table: Optional[str] = None,
    ) -> SLAMetrics:
        """Compliance metrics for tickets created in ``[start, end]``."""
        records = await self._records.list(created_from=start, created_to=end, table=table)
        return SLACalculator.metrics(records)

    async def tickets_near_breach(self, hours_threshold: float = 2.0) -> List[SLARecord]:
        """Unbreached open records with at most ``hours_threshold`` business hours left."""
        records = await self._records.list_unresolved()
        near = [
            r for r in records
            if not r.breached and r.remaining_hours <= hours_threshold
        ]
        return sorted(near, key=lambda r: r.remaining_hours)

    async def check_all(self) -> SLACheckResult:
        """
        Periodic SLA check.

        Refreshes every unresolved record and starts tracking active local
        tickets that have none yet. Per-ticket failures are counted.
        """
        now = self._clock()
        result = SLACheckResult()

        unresolved = {r.ticket_id: r for r in await self._records.list_unresolved()}
        documents: Dict[str, dict] = {
            doc["id"]: doc for doc in await self._store.find({"active": True})
        }
        for ticket_id in unresolved:
            if ticket_id not in documents:
                document = await self._store.find_one({"id": ticket_id})
                if document is not None:
                    documents[ticket_id] = document

        for ticket_id, document in documents.items():
            previous = unresolved.get(ticket_id)
            try:
                record = await self.track(Ticket.from_document(document), now=now)
            except ApplicationException as e:
                result.errors += 1
                logger.warning(
                    "SLA check failed for ticket",
                    extra={"ticket_id": ticket_id, "error": str(e)}
                )
                continue

            result.checked += 1
            if record.breached and (previous is None or not previous.breached):
                result.newly_breached += 1
            if record.is_resolved and previous is not None:
                result.newly_resolved += 1
            if record.escalated and (previous is None or not previous.escalated):
                result.escalated += 1

        logger.info(
            "SLA check completed",
            extra={
                "checked": result.checked,
                "newly_breached": result.newly_breached,
                "newly_resolved": result.newly_resolved,
                "escalated": result.escalated,
                "errors": result.errors,
            }
        )
        return result
