"""
SLA Application DTOs
=====================

Pydantic response models for the SLA API.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from ticket_mirror.sla.domain import SLARecord, SLASummary


class SLAMeasurementResponse(BaseModel):
    """One SLA measurement."""
    id: str
    sla_name: str
    stage: str
    business_percentage: float
    has_breached: bool
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class SLASummaryResponse(BaseModel):
    """Derived SLA summary of a ticket."""
    ticket_id: str
    total_slas: int
    active_slas: int
    breached_slas: int
    breach_percentage: float = Field(..., description="Breached / total * 100")
    worst_sla: Optional[SLAMeasurementResponse] = None

    @classmethod
    def from_summary(cls, ticket_id: str, summary: SLASummary) -> "SLASummaryResponse":
        return cls(
            ticket_id=ticket_id,
            worst_sla=(
                SLAMeasurementResponse(**summary.worst_sla.to_dict())
                if summary.worst_sla else None
            ),
            **{k: v for k, v in summary.to_dict().items() if k != "worst_sla"},
        )


class PriorityMetricsResponse(BaseModel):
    total: int
    breached: int
    resolved_within_sla: int
    avg_resolution_hours: float
    breach_percentage: float


class SLAMetricsResponse(BaseModel):
    """Compliance metrics over a date range."""
    total: int
    breached: int
    resolved_within_sla: int
    avg_resolution_hours: float
    breach_percentage: float
    by_priority: Dict[str, PriorityMetricsResponse] = Field(default_factory=dict)


class SLARecordResponse(BaseModel):
    """Tracked SLA state of one ticket."""
    ticket_id: str
    table: str
    number: str
    priority: Optional[int] = None
    status: str
    breached: bool
    escalated: bool
    target_hours: float
    business_hours_elapsed: float
    remaining_hours: float
    breach_time: Optional[datetime] = None
    resolution_time_hours: Optional[float] = None

    @classmethod
    def from_record(cls, record: SLARecord) -> "SLARecordResponse":
        return cls(
            ticket_id=record.ticket_id,
            table=record.table,
            number=record.number,
            priority=record.priority,
            status=record.status,
            breached=record.breached,
            escalated=record.escalated,
            target_hours=record.target_hours,
            business_hours_elapsed=record.business_hours_elapsed,
            remaining_hours=record.remaining_hours,
            breach_time=record.breach_time,
            resolution_time_hours=record.resolution_time_hours,
        )
