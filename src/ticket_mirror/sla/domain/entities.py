"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

An ``SLARecord`` follows one ticket's resolution SLA through its life:
active -> breached (one-way) -> resolved (frozen, never rechecked).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from ticket_mirror.config import SLAStatus


@dataclass
class SLARecord:
    """
    Tracked SLA state for one ticket.

    ``breached`` never reverts once set, and a resolved record is never
    recomputed.
    """

    ticket_id: str
    table: str
    number: str
    priority: Optional[int]
    ticket_created_at: datetime
    target_hours: float
    escalation_hours: Optional[float] = None
    status: str = SLAStatus.ACTIVE
    breached: bool = False
    escalated: bool = False
    business_hours_elapsed: float = 0.0
    calendar_hours_elapsed: float = 0.0
    breach_time: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_time_hours: Optional[float] = None
    last_checked_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.status == SLAStatus.RESOLVED

    @property
    def remaining_hours(self) -> float:
        return max(0.0, self.target_hours - self.business_hours_elapsed)

    def refresh(
        self,
        business_hours: float,
        calendar_hours: float,
        now: datetime,
        resolved: bool = False,
        resolved_at: Optional[datetime] = None,
    ) -> bool:
        """
        Apply a new elapsed-time measurement.

        Returns True when the record changed state (breach, escalation or
        resolution). Elapsed time never moves backwards.
        """
        if self.is_resolved:
            return False

        transitioned = False
        self.business_hours_elapsed = max(self.business_hours_elapsed, business_hours)
        self.calendar_hours_elapsed = max(self.calendar_hours_elapsed, calendar_hours)
        self.last_checked_at = now

        if not self.breached and self.business_hours_elapsed > self.target_hours:
            self.breached = True
            self.breach_time = now
            self.status = SLAStatus.BREACHED
            transitioned = True

        if (
            not self.escalated
            and self.escalation_hours is not None
            and self.business_hours_elapsed >= self.escalation_hours
        ):
            self.escalated = True
            transitioned = True

        if resolved:
            self.status = SLAStatus.RESOLVED
            self.resolved_at = resolved_at or now
            self.resolution_time_hours = self.business_hours_elapsed
            transitioned = True

        return transitioned


@dataclass
class PriorityMetrics:
    """Compliance figures for one set of SLA records."""
    total: int
    breached: int
    resolved_within_sla: int
    avg_resolution_hours: float
    breach_percentage: float


@dataclass
class SLAMetrics(PriorityMetrics):
    """Overall figures plus the same figures per priority bucket."""
    by_priority: Dict[str, PriorityMetrics] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "breached": self.breached,
            "resolved_within_sla": self.resolved_within_sla,
            "avg_resolution_hours": self.avg_resolution_hours,
            "breach_percentage": self.breach_percentage,
            "by_priority": {
                priority: vars(bucket) for priority, bucket in self.by_priority.items()
            },
        }


@dataclass
class SLACheckResult:
    """Outcome of one periodic SLA check."""
    checked: int = 0
    newly_breached: int = 0
    newly_resolved: int = 0
    escalated: int = 0
    errors: int = 0
