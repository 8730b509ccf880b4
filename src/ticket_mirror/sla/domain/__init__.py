"""
SLA Domain Layer
================

Domain layer for SLA compliance tracking.

Contains:
- Entities: SLARecord (tracked lifecycle), SLAMetrics, PriorityMetrics
- Value Objects: SLAPolicy, BusinessCalendar, SLASummary
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from ticket_mirror.sla.domain.entities import (
    SLARecord,
    SLAMetrics,
    PriorityMetrics,
    SLACheckResult,
)
from ticket_mirror.sla.domain.value_objects import (
    SLACalculator,
    SLAPolicy,
    SLASummary,
    PriorityTarget,
    BusinessCalendar,
    BusinessHoursConfig,
)

__all__ = [
    # Entities
    "SLARecord",
    "SLAMetrics",
    "PriorityMetrics",
    "SLACheckResult",
    # Value Objects & Services
    "SLACalculator",
    "SLAPolicy",
    "SLASummary",
    "PriorityTarget",
    "BusinessCalendar",
    "BusinessHoursConfig",
]
