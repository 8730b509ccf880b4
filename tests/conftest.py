"""Shared fixtures and in-memory fakes for the ports."""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from ticket_mirror.core.exceptions import (
    AuditWriteException,
    UpstreamUnavailableException,
    WriteConflictException,
)
from ticket_mirror.sla.application.interfaces import ISLAPolicyProvider, ISLARecordRepository
from ticket_mirror.sla.application.services import SLAService
from ticket_mirror.sla.domain import SLAPolicy
from ticket_mirror.tickets.application.interfaces import ILocalStore, IRemoteSource, RemotePage
from ticket_mirror.tickets.application.services import HybridResolver, TicketWriter
from ticket_mirror.tickets.domain import Ticket

# Monday
NOW = datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc)


def raw_record(
    sys_id: str,
    number: str = "INC0000001",
    state: str = "2",
    priority: str = "1",
    group: str = "Network",
    created: str = "2024-01-08 09:00:00",
    updated: str = "2024-01-08 10:00:00",
    **fields: Any,
) -> Dict[str, Any]:
    """ServiceNow-shaped record as returned with sysparm_display_value=all."""
    record = {
        "sys_id": {"value": sys_id, "display_value": sys_id},
        "number": {"value": number, "display_value": number},
        "state": {"value": state, "display_value": "In Progress"},
        "priority": {"value": priority, "display_value": f"{priority} - Critical"},
        "assignment_group": {"value": f"grp-{group.lower()}", "display_value": group},
        "short_description": {"value": "Router down", "display_value": "Router down"},
        "sys_created_on": {"value": created, "display_value": created},
        "sys_updated_on": {"value": updated, "display_value": updated},
        "active": {"value": "true", "display_value": "true"},
        "urgency": {"value": "1", "display_value": "1 - High"},
        "impact": {"value": "2", "display_value": "2 - Medium"},
    }
    record.update(fields)
    return record


def raw_sla(sys_id: str, percentage: str = "50.0", breached: str = "false", stage: str = "in_progress"):
    return {
        "sys_id": sys_id,
        "sla": {"value": "contract-1", "display_value": "Resolution P1"},
        "stage": stage,
        "business_percentage": percentage,
        "has_breached": breached,
        "start_time": "2024-01-08 09:00:00",
        "end_time": "",
    }


def make_ticket(
    ticket_id: str = "t1",
    priority: Optional[int] = 1,
    state: int = 2,
    created_at: datetime = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc),
    updated_at: Optional[datetime] = None,
    active: bool = True,
    **extra: Any,
) -> Ticket:
    return Ticket(
        id=ticket_id,
        number=f"INC{ticket_id.upper()}",
        ticket_type="incident",
        short_description="Router down",
        state=state,
        priority=priority,
        assignment_group="Network",
        created_at=created_at,
        updated_at=updated_at or created_at,
        active=active,
        extra=dict(extra),
    )


def _compare(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$in":
        return value in operand
    if operator == "$nin":
        return value not in operand
    if operator == "$ne":
        return value != operand
    if value is None:
        return False
    if operator == "$gt":
        return value > operand
    if operator == "$gte":
        return value >= operand
    if operator == "$lt":
        return value < operand
    if operator == "$lte":
        return value <= operand
    raise ValueError(operator)


def matches(document: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for field, criterion in filter.items():
        value = document.get(field)
        if isinstance(criterion, dict):
            if not all(_compare(value, op, operand) for op, operand in criterion.items()):
                return False
        elif value != criterion:
            return False
    return True


class InMemoryTicketStore(ILocalStore):
    """Dictionary-backed document store with the same conflict semantics."""

    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.audit: List[Any] = []
        self.fail_audit = False
        self.conflicts_to_raise = 0
        self.replace_calls = 0

    async def find_one(self, filter):
        for document in self.documents.values():
            if matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def find(self, filter, sort=None, skip=0, limit=None):
        found = sorted(
            (d for d in self.documents.values() if matches(d, filter)), key=lambda d: d["id"]
        )
        for field, direction in reversed(list(sort or [])):
            found.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=direction < 0)
        found = found[skip:]
        if limit is not None:
            found = found[:limit]
        return copy.deepcopy(found)

    async def replace_one(self, filter, document, upsert=False):
        self.replace_calls += 1
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            raise WriteConflictException(document["id"])
        for key, existing in self.documents.items():
            if matches(existing, filter):
                self.documents[key] = copy.deepcopy(document)
                return True
        if not upsert:
            return False
        if document["id"] in self.documents:
            raise WriteConflictException(document["id"])
        self.documents[document["id"]] = copy.deepcopy(document)
        return True

    async def count_documents(self, filter):
        return sum(1 for d in self.documents.values() if matches(d, filter))

    async def append_audit(self, entries):
        if self.fail_audit:
            raise AuditWriteException("audit table unavailable")
        self.audit.extend(entries)

    async def get_audit_history(self, ticket_id, limit=100):
        entries = [e for e in self.audit if e.ticket_id == ticket_id]
        entries.sort(key=lambda e: -e.sync_version)
        return entries[:limit]


class FakeRemoteSource(IRemoteSource):
    """ServiceNow stand-in with call counters and a failure switch."""

    def __init__(self):
        self.records: Dict[str, List[Dict[str, Any]]] = {}
        self.slas: Dict[str, List[Dict[str, Any]]] = {}
        self.fail = False
        self.delay = 0.0
        self.fetch_by_id_calls = 0
        self.fetch_by_filter_calls = 0
        self.last_query: Optional[str] = None

    def add(self, table: str, record: Dict[str, Any]) -> None:
        self.records.setdefault(table, []).append(record)

    async def _maybe_fail(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamUnavailableException("connection refused", retry_after_seconds=45)

    async def fetch_by_id(self, table, ticket_id):
        self.fetch_by_id_calls += 1
        await self._maybe_fail()
        for record in self.records.get(table, []):
            sys_id = record["sys_id"]
            if (sys_id["value"] if isinstance(sys_id, dict) else sys_id) == ticket_id:
                return copy.deepcopy(record)
        return None

    async def fetch_by_filter(self, table, query, limit, offset=0):
        self.fetch_by_filter_calls += 1
        self.last_query = query
        await self._maybe_fail()
        records = self.records.get(table, [])
        return RemotePage(records=copy.deepcopy(records[offset:offset + limit]), total=len(records))

    async def fetch_slas(self, ticket_id):
        await self._maybe_fail()
        return copy.deepcopy(self.slas.get(ticket_id, []))


class StaticPolicyProvider(ISLAPolicyProvider):
    def __init__(self, policy: Optional[SLAPolicy] = None):
        self.policy = policy or SLAPolicy()

    def get_policy(self):
        return self.policy


class InMemorySLARecordRepository(ISLARecordRepository):
    def __init__(self):
        self.records = {}

    async def get(self, ticket_id):
        record = self.records.get(ticket_id)
        return copy.deepcopy(record) if record else None

    async def save(self, record):
        self.records[record.ticket_id] = copy.deepcopy(record)

    async def list_unresolved(self):
        return [copy.deepcopy(r) for r in self.records.values() if not r.is_resolved]

    async def list(self, created_from=None, created_to=None, table=None):
        return [
            copy.deepcopy(r) for r in self.records.values()
            if (created_from is None or r.ticket_created_at >= created_from)
            and (created_to is None or r.ticket_created_at <= created_to)
            and (table is None or r.table == table)
        ]


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def remote():
    return FakeRemoteSource()


@pytest.fixture
def policy_provider():
    return StaticPolicyProvider()


@pytest.fixture
def sla_repository():
    return InMemorySLARecordRepository()


@pytest.fixture
def sla_service(sla_repository, policy_provider, store, clock):
    return SLAService(sla_repository, policy_provider, store, clock=clock)


@pytest.fixture
def writer(store, policy_provider, sla_service, clock):
    return TicketWriter(store, policy_provider, sla_tracker=sla_service, clock=clock)


@pytest.fixture
def resolver(store, remote, writer):
    return HybridResolver(store, remote, writer, retry_after_seconds=30)
