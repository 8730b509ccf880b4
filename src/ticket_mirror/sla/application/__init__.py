"""
SLA Application Layer
=====================

Application services, ports and DTOs for SLA tracking.
"""

from ticket_mirror.sla.application.interfaces import (
    ISLARecordRepository,
    ISLAPolicyProvider,
    ISLATracker,
)
from ticket_mirror.sla.application.services import SLAService
from ticket_mirror.sla.application.dto import (
    SLAMeasurementResponse,
    SLASummaryResponse,
    SLAMetricsResponse,
    PriorityMetricsResponse,
    SLARecordResponse,
)

__all__ = [
    # Interfaces
    "ISLARecordRepository",
    "ISLAPolicyProvider",
    "ISLATracker",
    # Services
    "SLAService",
    # DTOs
    "SLAMeasurementResponse",
    "SLASummaryResponse",
    "SLAMetricsResponse",
    "PriorityMetricsResponse",
    "SLARecordResponse",
]
