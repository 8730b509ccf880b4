"""
Tickets Infrastructure Layer
============================

Infrastructure implementations for the ticket mirror:
- Models: SQLAlchemy ORM models (documents, audit trail)
- Repositories: Local document store
- External: ServiceNow Table API client
"""

from ticket_mirror.tickets.infrastructure.models import TicketDocumentModel, TicketAuditModel
from ticket_mirror.tickets.infrastructure.repositories import SQLAlchemyTicketStore
from ticket_mirror.tickets.infrastructure.external import (
    CircuitBreaker,
    ServiceNowClient,
    ServiceNowRemoteSource,
)

__all__ = [
    "TicketDocumentModel",
    "TicketAuditModel",
    "SQLAlchemyTicketStore",
    "CircuitBreaker",
    "ServiceNowClient",
    "ServiceNowRemoteSource",
]
