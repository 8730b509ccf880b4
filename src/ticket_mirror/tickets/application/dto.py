"""
Ticket Application DTOs
=======================

Query parameters, service results and API response models for the
tickets module.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ticket_mirror.tickets.domain import TicketRecord


# ========== Request DTOs ==========

class TicketQuery(BaseModel):
    """Logical list-view filter, independent of either store's syntax."""
    group: str = Field(default="all", description="Assignment group name or 'all'")
    state: str = Field(default="all", description="State class, e.g. 'active', 'resolved'")
    page: int = Field(default=1, ge=1, description="1-based page number")
    limit: int = Field(default=50, ge=1, le=1000, description="Page size")

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class SyncTableRequest(BaseModel):
    """Manual table sync trigger."""
    incremental: bool = Field(default=True, description="Only records updated in the delta window")
    delta_hours: Optional[int] = Field(default=None, ge=1, description="Override the configured window")
    max_records: Optional[int] = Field(default=None, ge=1, description="Stop after this many records")


# ========== Service Results ==========

@dataclass
class QueryResult:
    """One page of tickets and where it came from."""
    data: List[TicketRecord]
    total: int
    has_more: bool
    source: str


@dataclass
class WriteOutcome:
    """Result of pushing one ticket through the write path."""
    written: bool
    record: Optional[TicketRecord]
    created: bool = False


@dataclass
class SyncResult:
    """Outcome of one table sync."""
    table: str
    incremental: bool
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    duration_ms: int = 0
    started_at: Optional[datetime] = None
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def failure_rate(self) -> float:
        attempted = self.processed + self.errors
        return self.errors / attempted if attempted else 0.0


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """A mirrored ticket document."""
    ticket: Dict[str, Any] = Field(..., description="Canonical ticket document")
    version: int = Field(..., description="Sync version (0 if never stored)")


class QueryResponse(BaseModel):
    """Paged ticket list."""
    data: List[Dict[str, Any]]
    total: int
    has_more: bool
    source: Literal["local", "remote"]


class AuditEntryResponse(BaseModel):
    """One audit trail row."""
    ticket_id: str
    field: str
    old_value: Any = None
    new_value: Any = None
    change_type: Literal["create", "update", "delete"]
    changed_at: datetime
    sync_version: int


class SyncResultResponse(BaseModel):
    """Outcome of a table sync."""
    table: str
    incremental: bool
    processed: int
    created: int
    updated: int
    unchanged: int
    errors: int
    duration_ms: int
    error_details: List[Dict[str, Any]] = Field(default_factory=list)
