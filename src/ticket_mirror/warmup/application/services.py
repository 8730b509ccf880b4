"""
Warmup Application Services
===========================

Proactive cache warmup: a bounded, priority-ordered queue of tickets that
are pulled through the hybrid resolver before anyone asks for them.

- Strict tier order critical > high > medium > low, FIFO within a tier
- Per-tier batch size and concurrency
- Items enqueued while a drain runs wait for the next drain
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ticket_mirror.config import (
    VALID_CHANGE_ACTIONS,
    WARMUP_PRIORITY_ORDER,
    WARMUP_TIERS,
    ChangeAction,
    WarmupPriority,
)
from ticket_mirror.core.exceptions import ApplicationException, ValidationException
from ticket_mirror.shared.infrastructure.logging import get_logger
from ticket_mirror.tickets.application.interfaces import IRemoteSource
from ticket_mirror.tickets.application.services import HybridResolver, validate_table
from ticket_mirror.tickets.domain.normalizer import field_value
from ticket_mirror.warmup.domain import DrainResult, WarmupStats, WarmupTask

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_priority(priority: str) -> None:
    if priority not in WARMUP_PRIORITY_ORDER:
        raise ValidationException(
            f"Unknown warmup priority '{priority}'",
            {"priority": priority, "allowed": WARMUP_PRIORITY_ORDER}
        )


class WarmupScheduler:
    """
    Priority queue in front of ``HybridResolver.get_by_id``.

    The queue is the only shared mutable state and is guarded by an
    ``asyncio.Lock``. ``drain`` is a no-op while another drain runs.
    """

    def __init__(
        self,
        resolver: HybridResolver,
        remote: Optional[IRemoteSource] = None,
        chunk_delay_seconds: float = 0.1,
        tiers: Optional[Dict[str, Tuple[int, int]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._resolver = resolver
        self._remote = remote
        self._chunk_delay_seconds = chunk_delay_seconds
        self._tiers = tiers or WARMUP_TIERS
        self._clock = clock
        self._queue: Dict[Tuple[str, str], WarmupTask] = {}
        self._lock = asyncio.Lock()
        self._draining = False
        self._stats = WarmupStats()

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def enqueue(
        self,
        ticket_id: str,
        table: str,
        priority: str = WarmupPriority.MEDIUM,
    ) -> bool:
        """
        Queue a ticket for warmup.

        Returns False when (ticket_id, table) is already queued. A duplicate
        with a higher priority moves the queued task up to that tier.

        Raises:
            InvalidTableException: unknown table
            ValidationException: unknown priority or empty id
        """
        validate_table(table)
        validate_priority(priority)
        if not ticket_id:
            raise ValidationException("ticket_id is required")

        task = WarmupTask(ticket_id=ticket_id, table=table, priority=priority, enqueued_at=self._clock())

        async with self._lock:
            existing = self._queue.get(task.key)
            if existing is not None:
                self._stats.deduplicated += 1
                if task.rank < existing.rank:
                    existing.priority = priority
                return False
            self._queue[task.key] = task
            self._stats.enqueued += 1

        logger.debug(
            "Ticket queued for warmup",
            extra={"ticket_id": ticket_id, "table": table, "priority": priority}
        )
        return True

    async def drain(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> DrainResult:
        """
        Process the queued tickets.

        Each tier contributes at most its ``batch_size`` tickets per drain,
        processed in chunks of ``concurrency`` with a short pause between
        chunks. The cancel event and timeout are checked before every
        chunk: running chunks finish, the rest goes back to the queue.
        """
        if self._draining:
            logger.debug("Warmup drain already running, skipping")
            return DrainResult(skipped=True)

        self._draining = True
        result = DrainResult()
        chunks: List[List[WarmupTask]] = []
        leftover: List[WarmupTask] = []
        next_chunk = 0

        try:
            async with self._lock:
                pending = list(self._queue.values())
                self._queue.clear()

            if not pending:
                return result

            chunks, leftover = self._plan(pending)
            deadline = None
            if timeout is not None:
                deadline = asyncio.get_running_loop().time() + timeout

            while next_chunk < len(chunks):
                if next_chunk > 0 and self._chunk_delay_seconds:
                    await asyncio.sleep(self._chunk_delay_seconds)
                if self._should_stop(cancel_event, deadline):
                    result.cancelled = True
                    logger.info(
                        "Warmup drain stopped early",
                        extra={"remaining_chunks": len(chunks) - next_chunk}
                    )
                    break

                chunk = chunks[next_chunk]
                next_chunk += 1
                outcomes = await asyncio.gather(*(self._warm(task) for task in chunk))

                for task, hit in zip(chunk, outcomes):
                    result.processed += 1
                    result.order.append(task.key)
                    if hit:
                        result.hits += 1
                    else:
                        result.misses += 1
        finally:
            unstarted = leftover + [task for chunk in chunks[next_chunk:] for task in chunk]
            if unstarted:
                result.requeued = await self._requeue(unstarted)
            self._stats.drains += 1
            self._draining = False

        logger.info(
            "Warmup drain completed",
            extra={
                "processed": result.processed,
                "hits": result.hits,
                "misses": result.misses,
                "requeued": result.requeued,
                "cancelled": result.cancelled,
            }
        )
        return result

    def _plan(self, pending: List[WarmupTask]) -> Tuple[List[List[WarmupTask]], List[WarmupTask]]:
        """Split the snapshot into ordered chunks and tasks left for later."""
        chunks: List[List[WarmupTask]] = []
        leftover: List[WarmupTask] = []

        for priority in WARMUP_PRIORITY_ORDER:
            batch_size, concurrency = self._tiers[priority]
            tier = sorted(
                (task for task in pending if task.priority == priority),
                key=lambda task: task.enqueued_at,
            )
            batch, rest = tier[:batch_size], tier[batch_size:]
            leftover.extend(rest)
            for start in range(0, len(batch), concurrency):
                chunks.append(batch[start:start + concurrency])

        return chunks, leftover

    @staticmethod
    def _should_stop(cancel_event: Optional[asyncio.Event], deadline: Optional[float]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and asyncio.get_running_loop().time() >= deadline

    async def _requeue(self, tasks: List[WarmupTask]) -> int:
        async with self._lock:
            for task in tasks:
                existing = self._queue.get(task.key)
                if existing is None or task.outranks(existing):
                    self._queue[task.key] = task
        self._stats.requeued += len(tasks)
        return len(tasks)

    async def _warm(self, task: WarmupTask) -> bool:
        # A single bad ticket is a miss, never the end of the drain.
        # CancelledError is not an Exception and still propagates.
        try:
            await self._resolver.get_by_id(task.table, task.ticket_id)
        except Exception as e:
            self._stats.misses += 1
            logger.warning(
                "Warmup failed",
                extra={
                    "ticket_id": task.ticket_id,
                    "table": task.table,
                    "priority": task.priority,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=not isinstance(e, ApplicationException),
            )
            return False
        self._stats.hits += 1
        return True

    @staticmethod
    def priority_from_change(change: Mapping[str, Any]) -> str:
        """
        Warmup tier for a change notification.

        P1 tickets are critical, state changes high, new tickets medium,
        everything else low.
        """
        if str(change.get("priority") or "").strip() == "1":
            return WarmupPriority.CRITICAL
        if change.get("state") is not None:
            return WarmupPriority.HIGH
        if change.get("action") == ChangeAction.CREATED:
            return WarmupPriority.MEDIUM
        return WarmupPriority.LOW

    async def handle_change(self, change: Mapping[str, Any]) -> bool:
        """
        Queue the ticket named by a change notification.

        Raises:
            ValidationException: malformed notification
        """
        ticket_id = change.get("ticket_id")
        table = change.get("table")
        action = change.get("action")
        if not ticket_id or not table:
            raise ValidationException("Change notification needs ticket_id and table", dict(change))
        if action not in VALID_CHANGE_ACTIONS:
            raise ValidationException(
                f"Unknown change action '{action}'",
                {"action": action, "allowed": VALID_CHANGE_ACTIONS}
            )
        return await self.enqueue(ticket_id, table, self.priority_from_change(change))

    async def warmup_from_query(
        self,
        table: str,
        query: str,
        priority: str = WarmupPriority.HIGH,
    ) -> int:
        """
        Queue up to the tier's batch size of tickets matching a ServiceNow
        query, e.g. ``priority=1^state!=7``. Returns the number queued.
        """
        if self._remote is None:
            raise ValidationException("Query warmup needs a remote source")
        validate_table(table)
        validate_priority(priority)

        batch_size, _ = self._tiers[priority]
        page = await self._remote.fetch_by_filter(table, query, batch_size, 0)

        queued = 0
        for raw in page.records[:batch_size]:
            sys_id = field_value(raw, "sys_id")
            if sys_id and await self.enqueue(str(sys_id), table, priority):
                queued += 1

        logger.info(
            "Query warmup queued tickets",
            extra={"table": table, "query": query, "priority": priority, "queued": queued}
        )
        return queued

    async def queue_snapshot(self) -> List[WarmupTask]:
        """Queued tasks in the order the next drain would take them."""
        async with self._lock:
            pending = list(self._queue.values())
        return sorted(pending, key=lambda task: (task.rank, task.enqueued_at))

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            by_tier = {priority: 0 for priority in WARMUP_PRIORITY_ORDER}
            for task in self._queue.values():
                by_tier[task.priority] += 1
        return {
            **self._stats.to_dict(),
            "queue_size": sum(by_tier.values()),
            "queue_by_priority": by_tier,
            "draining": self._draining,
        }
