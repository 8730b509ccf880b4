"""
Tickets Domain Layer
====================

Domain layer for the ticket mirror.

Contains:
- Entities: Ticket, SLAMeasurement, SyncRecord, AuditEntry, TicketRecord
- Domain Services: RecordNormalizer (ServiceNow -> canonical shape),
  ChangeDetector (content/SLA hashing and field diffs)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from ticket_mirror.tickets.domain.entities import (
    Ticket,
    SLAMeasurement,
    SyncRecord,
    FieldChange,
    AuditEntry,
    TicketRecord,
)
from ticket_mirror.tickets.domain.normalizer import RecordNormalizer
from ticket_mirror.tickets.domain.change_detector import ChangeDetector, ReconcileResult

__all__ = [
    # Entities
    "Ticket",
    "SLAMeasurement",
    "SyncRecord",
    "FieldChange",
    "AuditEntry",
    "TicketRecord",
    # Domain Services
    "RecordNormalizer",
    "ChangeDetector",
    "ReconcileResult",
]
