"""
Ticket Domain Entities
======================

Pure Python domain entities for mirrored ServiceNow tickets.

A ticket is stored locally as one flat JSON document: the canonical ticket
fields, the SLA measurements attached to it, a derived SLA summary and the
sync bookkeeping fields (prefixed with ``_``).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ticket_mirror.config import RESOLVED_STATES, SyncSource


# Document keys that are bookkeeping, never ticket content.
BOOKKEEPING_FIELDS = frozenset({
    "_content_hash", "_sla_hash", "_version", "_synced_at", "_source",
})
DERIVED_FIELDS = frozenset({"sla_summary"})

_BASE_FIELDS = (
    "id", "number", "ticket_type", "short_description", "description",
    "state", "priority", "assignment_group", "assigned_to", "caller",
    "created_at", "updated_at", "active",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp written by ``to_document``; naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Ticket:
    """
    Canonical ticket shape shared by incidents, change tasks and
    service-catalog tasks.

    ``extra`` holds the type-specific fields (``urgency`` for incidents,
    ``change_request`` for change tasks, ``request_item`` for catalog
    tasks, ...). Its values are JSON-safe.
    """

    id: str
    number: str
    ticket_type: str
    short_description: str
    state: int
    priority: Optional[int]
    assignment_group: str
    created_at: datetime
    updated_at: datetime
    active: bool = True
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    caller: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        """Resolved/closed tickets stop the SLA clock."""
        return self.state in RESOLVED_STATES or not self.active

    @property
    def resolved_at(self) -> Optional[datetime]:
        """Best known resolution instant, if the ticket is resolved."""
        if not self.is_resolved:
            return None
        for key in ("resolved_at", "closed_at"):
            value = self.extra.get(key)
            if value:
                return parse_iso(value)
        return self.updated_at

    def to_document(self) -> Dict[str, Any]:
        """Flat JSON-safe representation used for hashing and storage."""
        document = dict(self.extra)
        document.update({
            "id": self.id,
            "number": self.number,
            "ticket_type": self.ticket_type,
            "short_description": self.short_description,
            "description": self.description,
            "state": self.state,
            "priority": self.priority,
            "assignment_group": self.assignment_group,
            "assigned_to": self.assigned_to,
            "caller": self.caller,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "active": self.active,
        })
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Ticket":
        extra = {
            key: value for key, value in document.items()
            if key not in _BASE_FIELDS
            and not key.startswith("_")
            and key not in DERIVED_FIELDS
            and key != "slas"
        }
        return cls(
            id=document["id"],
            number=document.get("number", ""),
            ticket_type=document["ticket_type"],
            short_description=document.get("short_description", ""),
            description=document.get("description"),
            state=int(document.get("state", 1)),
            priority=document.get("priority"),
            assignment_group=document.get("assignment_group", ""),
            assigned_to=document.get("assigned_to"),
            caller=document.get("caller"),
            created_at=parse_iso(document.get("created_at")),
            updated_at=parse_iso(document.get("updated_at")),
            active=bool(document.get("active", True)),
            extra=extra,
        )


@dataclass(frozen=True)
class SLAMeasurement:
    """
    One SLA definition attached to a ticket (a ServiceNow ``task_sla`` row).

    The set attached to a ticket is replaced wholesale on each sync.
    """

    id: str
    sla_name: str
    stage: str
    business_percentage: float
    has_breached: bool
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.stage != "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sla_name": self.sla_name,
            "stage": self.stage,
            "business_percentage": self.business_percentage,
            "has_breached": self.has_breached,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SLAMeasurement":
        return cls(
            id=data["id"],
            sla_name=data.get("sla_name", "Unknown SLA"),
            stage=data.get("stage", "unknown"),
            business_percentage=float(data.get("business_percentage", 0.0)),
            has_breached=bool(data.get("has_breached", False)),
            start_time=parse_iso(data.get("start_time")),
            end_time=parse_iso(data.get("end_time")),
        )


@dataclass(frozen=True)
class SyncRecord:
    """Sync bookkeeping stored alongside each ticket document."""

    content_hash: str
    sla_hash: str
    version: int
    synced_at: datetime
    source: str = SyncSource.REMOTE

    def to_fields(self) -> Dict[str, Any]:
        return {
            "_content_hash": self.content_hash,
            "_sla_hash": self.sla_hash,
            "_version": self.version,
            "_synced_at": _iso(self.synced_at),
            "_source": self.source,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> Optional["SyncRecord"]:
        if "_version" not in document:
            return None
        return cls(
            content_hash=document.get("_content_hash", ""),
            sla_hash=document.get("_sla_hash", ""),
            version=int(document["_version"]),
            synced_at=parse_iso(document.get("_synced_at")),
            source=document.get("_source", SyncSource.REMOTE),
        )


@dataclass(frozen=True)
class FieldChange:
    """One field-level difference between two ticket snapshots."""

    field: str
    old_value: Any
    new_value: Any
    change_type: str


@dataclass(frozen=True)
class AuditEntry:
    """Append-only audit trail row, one per changed field."""

    ticket_id: str
    field: str
    old_value: Any
    new_value: Any
    change_type: str
    changed_at: datetime
    sync_version: int


@dataclass
class TicketRecord:
    """
    A ticket as held by the local store: canonical fields, attached SLA
    measurements, the derived SLA summary and its sync bookkeeping.
    """

    ticket: Ticket
    slas: List[SLAMeasurement] = field(default_factory=list)
    sla_summary: Optional[Dict[str, Any]] = None
    sync: Optional[SyncRecord] = None

    @property
    def version(self) -> int:
        return self.sync.version if self.sync else 0

    def to_document(self) -> Dict[str, Any]:
        document = self.ticket.to_document()
        document["slas"] = [m.to_dict() for m in self.slas]
        document["sla_summary"] = self.sla_summary
        if self.sync is not None:
            document.update(self.sync.to_fields())
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "TicketRecord":
        return cls(
            ticket=Ticket.from_document(document),
            slas=[SLAMeasurement.from_dict(m) for m in document.get("slas") or []],
            sla_summary=document.get("sla_summary"),
            sync=SyncRecord.from_document(document),
        )
