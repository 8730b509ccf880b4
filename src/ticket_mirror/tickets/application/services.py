"""
Ticket Application Services
===========================

Application services orchestrate the local-first read path and the
hash-guarded write path.

- TicketWriter: reconcile -> upsert -> audit -> SLA tracking
- HybridResolver: local store first, ServiceNow fallback, cache the result
- TicketSyncService: paginated full/incremental pulls of whole tables
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ticket_mirror.config import (
    STATE_CLASSES,
    VALID_TABLES,
    ResultSource,
    SyncSource,
)
from ticket_mirror.core.exceptions import (
    ApplicationException,
    AuditWriteException,
    ExternalServiceException,
    InvalidTableException,
    RepositoryException,
    TicketNotFoundException,
    UpstreamUnavailableException,
    ValidationException,
    WriteConflictException,
)
from ticket_mirror.shared.infrastructure.logging import get_context_logger, get_logger
from ticket_mirror.sla.application.interfaces import ISLAPolicyProvider, ISLATracker
from ticket_mirror.sla.domain import SLACalculator
from ticket_mirror.tickets.application.dto import (
    QueryResult,
    SyncResult,
    TicketQuery,
    WriteOutcome,
)
from ticket_mirror.tickets.application.interfaces import ILocalStore, IRemoteSource
from ticket_mirror.tickets.domain import (
    AuditEntry,
    ChangeDetector,
    RecordNormalizer,
    SLAMeasurement,
    Ticket,
    TicketRecord,
)

logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_table(table: str) -> None:
    if table not in VALID_TABLES:
        raise InvalidTableException(table)


def validate_state_class(state: str) -> Optional[List[int]]:
    if state not in STATE_CLASSES:
        raise ValidationException(
            f"Unknown state class '{state}'",
            {"state": state, "allowed": sorted(STATE_CLASSES)}
        )
    return STATE_CLASSES[state]


def build_local_filter(table: str, query: TicketQuery) -> Dict[str, Any]:
    """Translate a logical query into a local-store filter."""
    states = validate_state_class(query.state)
    local_filter: Dict[str, Any] = {"ticket_type": table}
    if states is not None:
        local_filter["state"] = states[0] if len(states) == 1 else {"$in": states}
    if query.group != "all":
        local_filter["assignment_group"] = query.group
    return local_filter


def build_remote_query(query: TicketQuery) -> str:
    """Translate a logical query into an encoded ServiceNow ``sysparm_query``."""
    states = validate_state_class(query.state)
    parts: List[str] = []
    if states is not None:
        if len(states) == 1:
            parts.append(f"state={states[0]}")
        else:
            parts.append("stateIN" + ",".join(str(s) for s in states))
    if query.group != "all":
        parts.append(f"assignment_group.name={query.group}")
    parts.append("ORDERBYDESCsys_updated_on")
    return "^".join(parts)


class TicketWriter:
    """
    The single write path into the local store.

    A ticket is only written when its content hash or SLA hash differs
    from the stored one. Each write bumps the version by one, appends one
    audit entry per changed field and refreshes SLA tracking.
    """

    MAX_CONFLICT_ATTEMPTS = 3

    def __init__(
        self,
        store: ILocalStore,
        policy_provider: ISLAPolicyProvider,
        sla_tracker: Optional[ISLATracker] = None,
        clock: Clock = _utcnow,
    ):
        self._store = store
        self._policy_provider = policy_provider
        self._sla_tracker = sla_tracker
        self._clock = clock

    def build_summary(self, ticket: Ticket, measurements: List[SLAMeasurement]) -> dict:
        """SLA summary stored with the document."""
        if measurements:
            return SLACalculator.attach(ticket, measurements).to_dict()
        return SLACalculator.compute(
            ticket, self._policy_provider.get_policy(), now=self._clock()
        ).to_dict()

    async def write(
        self,
        ticket: Ticket,
        measurements: Optional[List[SLAMeasurement]] = None,
        source: str = SyncSource.REMOTE,
    ) -> WriteOutcome:
        """
        Reconcile ``ticket`` with the stored copy and write it if it changed.

        ``measurements=None`` means SLAs were not fetched: the stored set is
        kept. An empty list means the ticket has no SLAs.

        Write conflicts from concurrent syncs of the same ticket are resolved
        by re-reading and comparing hashes again; they never reach the caller.
        """
        existing: Optional[TicketRecord] = None

        for attempt in range(1, self.MAX_CONFLICT_ATTEMPTS + 1):
            now = self._clock()
            existing_doc = await self._store.find_one({"id": ticket.id})
            existing = TicketRecord.from_document(existing_doc) if existing_doc else None

            slas = measurements
            if slas is None:
                slas = existing.slas if existing else []

            result = ChangeDetector.reconcile(
                existing.sync if existing else None, ticket, slas, now=now, source=source
            )
            if not result.should_write:
                logger.debug(
                    "Ticket unchanged, skipping write",
                    extra={"ticket_id": ticket.id, "version": existing.version}
                )
                return WriteOutcome(written=False, record=existing)

            record = TicketRecord(
                ticket=ticket,
                slas=sorted(slas, key=lambda m: m.id),
                sla_summary=self.build_summary(ticket, slas),
                sync=result.sync_record,
            )
            document = record.to_document()

            write_filter: Dict[str, Any] = {"id": ticket.id}
            if existing is not None and existing.sync is not None:
                write_filter["_version"] = existing.sync.version

            try:
                await self._store.replace_one(write_filter, document, upsert=True)
            except WriteConflictException:
                logger.info(
                    "Write conflict, re-reading stored ticket",
                    extra={"ticket_id": ticket.id, "attempt": attempt}
                )
                continue

            logger.info(
                "Ticket written",
                extra={
                    "ticket_id": ticket.id,
                    "number": ticket.number,
                    "table": ticket.ticket_type,
                    "version": result.sync_record.version,
                }
            )
            await self._append_audit(existing_doc, document, result.sync_record.version, now)
            await self._track_sla(ticket, now)
            return WriteOutcome(written=True, record=record, created=existing is None)

        logger.warning(
            "Giving up on ticket after repeated write conflicts",
            extra={"ticket_id": ticket.id, "attempts": self.MAX_CONFLICT_ATTEMPTS}
        )
        return WriteOutcome(written=False, record=existing)

    async def _append_audit(
        self,
        previous: Optional[Dict[str, Any]],
        current: Dict[str, Any],
        version: int,
        now: datetime,
    ) -> None:
        changes = ChangeDetector.diff(previous, current)
        if not changes:
            return
        entries = [
            AuditEntry(
                ticket_id=current["id"],
                field=change.field,
                old_value=change.old_value,
                new_value=change.new_value,
                change_type=change.change_type,
                changed_at=now,
                sync_version=version,
            )
            for change in changes
        ]
        try:
            await self._store.append_audit(entries)
        except AuditWriteException as e:
            logger.warning(
                "Audit trail write failed",
                extra={"ticket_id": current["id"], "version": version, "error": str(e)}
            )

    async def _track_sla(self, ticket: Ticket, now: datetime) -> None:
        if self._sla_tracker is None:
            return
        try:
            await self._sla_tracker.track(ticket, now=now)
        except ApplicationException as e:
            logger.warning(
                "SLA tracking failed after write",
                extra={"ticket_id": ticket.id, "error": str(e)}
            )


class HybridResolver:
    """
    Local-first ticket resolution with ServiceNow fallback.

    Every remote answer is pushed through the write path, so a repeated
    lookup is served from the local store ("self-healing cache").
    """

    def __init__(
        self,
        store: ILocalStore,
        remote: IRemoteSource,
        writer: TicketWriter,
        retry_after_seconds: int = 30,
    ):
        self._store = store
        self._remote = remote
        self._writer = writer
        self._retry_after_seconds = retry_after_seconds

    async def get_by_id(
        self,
        table: str,
        ticket_id: str,
        timeout: Optional[float] = None,
    ) -> TicketRecord:
        """
        Resolve one ticket.

        Raises:
            InvalidTableException: unknown table
            TicketNotFoundException: neither store has the ticket
            UpstreamUnavailableException: local miss and ServiceNow failed
        """
        validate_table(table)

        try:
            document = await self._store.find_one({"id": ticket_id, "ticket_type": table})
        except RepositoryException as e:
            logger.warning(
                "Local store lookup failed, falling back to ServiceNow",
                extra={"table": table, "ticket_id": ticket_id, "error": str(e)}
            )
            document = None

        if document is not None:
            return TicketRecord.from_document(document)

        raw = await self._remote_call(
            lambda: self._remote.fetch_by_id(table, ticket_id), timeout, table=table
        )
        if raw is None:
            raise TicketNotFoundException(table, ticket_id)

        ticket = RecordNormalizer.normalize(raw, table)
        slas = await self._fetch_slas(ticket.id, timeout)
        return await self._persist(ticket, slas)

    async def query(
        self,
        table: str,
        query: TicketQuery,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """
        One page of tickets, local store first.

        Never raises for "no results". A ServiceNow failure after an empty
        local page degrades to that empty page.

        Raises:
            InvalidTableException / ValidationException: malformed input
            UpstreamUnavailableException: both stores unavailable
        """
        validate_table(table)
        local_filter = build_local_filter(table, query)
        remote_query = build_remote_query(query)

        local_error: Optional[RepositoryException] = None
        try:
            documents = await self._store.find(
                local_filter, sort=[("updated_at", -1)], skip=query.skip, limit=query.limit
            )
            if documents:
                total = await self._store.count_documents(local_filter)
                return QueryResult(
                    data=[TicketRecord.from_document(d) for d in documents],
                    total=total,
                    has_more=query.skip + len(documents) < total,
                    source=ResultSource.LOCAL,
                )
        except RepositoryException as e:
            local_error = e
            logger.warning(
                "Local store query failed, falling back to ServiceNow",
                extra={"table": table, "error": str(e)}
            )

        try:
            page = await self._remote_call(
                lambda: self._remote.fetch_by_filter(table, remote_query, query.limit, query.skip),
                timeout,
                table=table,
            )
        except UpstreamUnavailableException:
            if local_error is not None:
                raise
            logger.warning(
                "ServiceNow query failed, returning empty local result",
                extra={"table": table, "query": remote_query}
            )
            return QueryResult(data=[], total=0, has_more=False, source=ResultSource.LOCAL)

        records: List[TicketRecord] = []
        for raw in page.records:
            try:
                ticket = RecordNormalizer.normalize(raw, table)
                records.append(await self._persist(ticket, None))
            except ApplicationException as e:
                logger.warning(
                    "Skipping remote record",
                    extra={
                        "table": table,
                        "sys_id": raw.get("sys_id") if isinstance(raw, dict) else None,
                        "error": str(e),
                    }
                )

        total = max(page.total, query.skip + len(page.records))
        return QueryResult(
            data=records,
            total=total,
            has_more=query.skip + len(page.records) < total,
            source=ResultSource.REMOTE,
        )

    async def sync_ticket(
        self,
        table: str,
        ticket_id: str,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Force reconciliation of one ticket with ServiceNow.

        Returns True iff the local store changed.
        """
        validate_table(table)
        raw = await self._remote_call(
            lambda: self._remote.fetch_by_id(table, ticket_id), timeout, table=table
        )
        if raw is None:
            raise TicketNotFoundException(table, ticket_id)

        ticket = RecordNormalizer.normalize(raw, table)
        slas = await self._fetch_slas(ticket.id, timeout)
        outcome = await asyncio.shield(self._writer.write(ticket, slas))
        return outcome.written

    async def _persist(
        self,
        ticket: Ticket,
        slas: Optional[List[SLAMeasurement]],
    ) -> TicketRecord:
        # Shielded so a cancelled caller never leaves a half-written ticket.
        try:
            outcome = await asyncio.shield(self._writer.write(ticket, slas))
        except RepositoryException as e:
            logger.error(
                "Could not cache ticket, returning unsaved copy",
                extra={"ticket_id": ticket.id, "error": str(e)}
            )
            measurements = slas or []
            return TicketRecord(
                ticket=ticket,
                slas=measurements,
                sla_summary=self._writer.build_summary(ticket, measurements),
            )
        return outcome.record

    async def _fetch_slas(
        self,
        ticket_id: str,
        timeout: Optional[float],
    ) -> Optional[List[SLAMeasurement]]:
        """SLA rows for a ticket; None when they could not be fetched."""
        try:
            rows = await self._remote_call(
                lambda: self._remote.fetch_slas(ticket_id), timeout, table="task_sla"
            )
            return [RecordNormalizer.normalize_sla(row) for row in rows]
        except (UpstreamUnavailableException, ValidationException) as e:
            logger.warning(
                "SLA fetch failed, keeping stored SLAs",
                extra={"ticket_id": ticket_id, "error": str(e)}
            )
            return None

    async def _remote_call(
        self,
        call: Callable[[], Awaitable[T]],
        timeout: Optional[float],
        table: str,
    ) -> T:
        try:
            if timeout is None:
                return await call()
            return await asyncio.wait_for(call(), timeout)
        except UpstreamUnavailableException:
            raise
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailableException(
                f"Request timed out after {timeout}s",
                retry_after_seconds=self._retry_after_seconds,
                details={"table": table},
            ) from e
        except ExternalServiceException as e:
            raise UpstreamUnavailableException(
                e.message,
                retry_after_seconds=self._retry_after_seconds,
                details={"table": table, **e.details},
            ) from e


class TicketSyncService:
    """
    Bulk mirror of whole tables through the write path.

    Incremental syncs pull records updated within the last ``delta_hours``;
    full syncs pull everything. Keeps per-table results for health checks.
    """

    MAX_ERROR_DETAILS = 50

    def __init__(
        self,
        remote: IRemoteSource,
        writer: TicketWriter,
        page_size: int = 100,
        delta_hours: int = 1,
        clock: Clock = _utcnow,
    ):
        self._remote = remote
        self._writer = writer
        self._page_size = page_size
        self._delta_hours = delta_hours
        self._clock = clock
        self._last_results: Dict[str, SyncResult] = {}
        self._total_syncs = 0
        self._total_processed = 0
        self._total_errors = 0

    def build_query(self, incremental: bool, delta_hours: Optional[int] = None) -> str:
        if not incremental:
            return "ORDERBYsys_updated_on"
        since = self._clock() - timedelta(hours=delta_hours or self._delta_hours)
        return f"sys_updated_on>={since.strftime('%Y-%m-%d %H:%M:%S')}^ORDERBYsys_updated_on"

    async def sync_table(
        self,
        table: str,
        incremental: bool = True,
        delta_hours: Optional[int] = None,
        max_records: Optional[int] = None,
    ) -> SyncResult:
        """
        Pull one table page by page and write every record.

        Record-level failures are counted, never raised. A ServiceNow
        failure stops the sync and is recorded as an error.
        """
        validate_table(table)
        query = self.build_query(incremental, delta_hours)
        result = SyncResult(table=table, incremental=incremental, started_at=self._clock())
        start = time.perf_counter()
        offset = 0
        table_logger = get_context_logger(__name__, table=table, incremental=incremental)

        table_logger.info("Table sync started", extra={"query": query})

        while True:
            limit = self._page_size
            if max_records is not None:
                limit = min(limit, max_records - offset)
                if limit <= 0:
                    break
            try:
                page = await self._remote.fetch_by_filter(table, query, limit, offset)
            except ExternalServiceException as e:
                self._record_error(result, None, e)
                break

            for raw in page.records:
                sys_id = raw.get("sys_id") if isinstance(raw, dict) else None
                try:
                    ticket = RecordNormalizer.normalize(raw, table)
                    outcome = await self._writer.write(ticket)
                except ApplicationException as e:
                    self._record_error(result, sys_id, e)
                    continue
                result.processed += 1
                if not outcome.written:
                    result.unchanged += 1
                elif outcome.created:
                    result.created += 1
                else:
                    result.updated += 1

            offset += len(page.records)
            if not page.records or len(page.records) < limit or offset >= page.total:
                break

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        self._last_results[table] = result
        self._total_syncs += 1
        self._total_processed += result.processed
        self._total_errors += result.errors

        table_logger.info(
            "Table sync completed",
            extra={
                "processed": result.processed,
                "created_count": result.created,
                "updated": result.updated,
                "unchanged": result.unchanged,
                "errors": result.errors,
                "duration_ms": result.duration_ms,
            }
        )
        return result

    async def sync_tables(self, tables: List[str], incremental: bool = True) -> List[SyncResult]:
        """Sync several tables one after another."""
        return [await self.sync_table(table, incremental=incremental) for table in tables]

    def _record_error(self, result: SyncResult, sys_id: Optional[str], error: Exception) -> None:
        result.errors += 1
        if len(result.error_details) < self.MAX_ERROR_DETAILS:
            result.error_details.append({
                "sys_id": sys_id,
                "error": str(error),
                "type": type(error).__name__,
            })
        logger.warning(
            "Sync record failed",
            extra={"table": result.table, "sys_id": sys_id, "error": str(error)}
        )

    def health_status(self) -> str:
        """
        "error" when the latest syncs hit more than 10 errors or failed over
        half their records, "degraded" above 5 errors or 20%, else "healthy".
        """
        errors = sum(r.errors for r in self._last_results.values())
        attempted = sum(r.processed + r.errors for r in self._last_results.values())
        failure_rate = errors / attempted if attempted else 0.0

        if errors > 10 or failure_rate > 0.5:
            return "error"
        if errors > 5 or failure_rate > 0.2:
            return "degraded"
        return "healthy"

    def statistics(self) -> Dict[str, Any]:
        return {
            "total_syncs": self._total_syncs,
            "total_processed": self._total_processed,
            "total_errors": self._total_errors,
            "health": self.health_status(),
            "tables": {
                table: {
                    "processed": r.processed,
                    "created": r.created,
                    "updated": r.updated,
                    "unchanged": r.unchanged,
                    "errors": r.errors,
                    "duration_ms": r.duration_ms,
                    "started_at": r.started_at.isoformat() if r.started_at else None,
                }
                for table, r in self._last_results.items()
            },
        }
