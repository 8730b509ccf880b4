"""
SLA Infrastructure Layer
========================

Contains:
- Models: SQLAlchemy ORM model for SLA records
- Repositories: SQLAlchemy SLA record repository
- External: YAML policy manager with hot reload
"""

from ticket_mirror.sla.infrastructure.models import SLARecordModel
from ticket_mirror.sla.infrastructure.repositories import SQLAlchemySLARecordRepository
from ticket_mirror.sla.infrastructure.external import SLAPolicyManager, PolicyFileHandler

__all__ = [
    "SLARecordModel",
    "SQLAlchemySLARecordRepository",
    "SLAPolicyManager",
    "PolicyFileHandler",
]
