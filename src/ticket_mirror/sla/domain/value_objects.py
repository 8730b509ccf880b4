"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from ticket_mirror.core.exceptions import PolicyMissingException
from ticket_mirror.sla.domain.entities import PriorityMetrics, SLAMetrics, SLARecord
from ticket_mirror.tickets.domain.entities import SLAMeasurement, Ticket

DEFAULT_PRIORITY = "3"

# priority -> (target business hours, escalation business hours)
DEFAULT_TARGETS: Dict[str, Tuple[float, Optional[float]]] = {
    "1": (4, 2),
    "2": (8, 4),
    "3": (24, 12),
    "4": (72, 48),
    "5": (168, 120),
}

_HOUR = timedelta(hours=1)
_WEEK = timedelta(days=7)


@dataclass(frozen=True)
class BusinessCalendar:
    """
    Working window used for SLA accounting.

    ``business_days`` uses Python weekday numbers (Monday=0). The window
    ``[start_hour, end_hour)`` is interpreted in ``timezone``.
    """

    start_hour: int = 8
    end_hour: int = 18
    business_days: Tuple[int, ...] = (0, 1, 2, 3, 4)
    timezone: str = "UTC"

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def hours_per_week(self) -> int:
        return len(set(self.business_days)) * max(0, self.end_hour - self.start_hour)

    def is_business_hour(self, moment: datetime) -> bool:
        local = moment.astimezone(self.zone)
        return local.weekday() in self.business_days and self.start_hour <= local.hour < self.end_hour


@dataclass(frozen=True)
class SLASummary:
    """
    Derived SLA view of a ticket.

    ``breach_percentage`` is the share of breached measurements
    (breached / total * 100), not the time consumed.
    """

    total_slas: int
    active_slas: int
    breached_slas: int
    breach_percentage: float
    worst_sla: Optional[SLAMeasurement] = None
    measurements: List[SLAMeasurement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_slas": self.total_slas,
            "active_slas": self.active_slas,
            "breached_slas": self.breached_slas,
            "breach_percentage": self.breach_percentage,
            "worst_sla": self.worst_sla.to_dict() if self.worst_sla else None,
        }


class PriorityTarget(BaseModel):
    """Business-hour targets for one priority."""
    target_hours: float = Field(gt=0, description="Business hours until breach")
    escalation_hours: Optional[float] = Field(
        default=None, gt=0, description="Business hours until escalation"
    )


class BusinessHoursConfig(BaseModel):
    """Working window section of the policy file."""
    start_hour: int = Field(default=8, ge=0, le=23)
    end_hour: int = Field(default=18, ge=1, le=24)
    days: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        description="Python weekday numbers, Monday=0"
    )

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessHoursConfig":
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        if any(day < 0 or day > 6 for day in self.days):
            raise ValueError("days must be weekday numbers 0-6")
        return self


class SLAPolicy(BaseModel):
    """
    SLA policy loaded from YAML.

    Maps ticket priority ("1".."5") to target business hours, plus the
    business calendar the targets are measured in.
    """
    priorities: Dict[str, PriorityTarget] = Field(
        default_factory=dict,
        description="Targets keyed by ServiceNow priority"
    )
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    timezone: str = Field(default="UTC", description="IANA zone for the business window")
    check_interval_minutes: int = Field(default=15, ge=1)

    @field_validator("priorities", mode="before")
    @classmethod
    def fill_default_priorities(cls, v: Optional[dict]) -> dict:
        """A policy file may override only some priorities."""
        v = {str(key): value for key, value in (v or {}).items()}
        for priority, (target, escalation) in DEFAULT_TARGETS.items():
            v.setdefault(priority, {"target_hours": target, "escalation_hours": escalation})
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    def target_for(self, priority: Optional[int]) -> PriorityTarget:
        """
        Raises:
            PolicyMissingException: no target for ``priority``
        """
        key = str(priority) if priority is not None else "unset"
        target = self.priorities.get(key)
        if target is None:
            raise PolicyMissingException(key)
        return target

    def target_or_default(self, priority: Optional[int]) -> Tuple[PriorityTarget, bool]:
        """Target for ``priority``, falling back to the moderate policy.

        Returns the target and whether the fallback was used.
        """
        try:
            return self.target_for(priority), False
        except PolicyMissingException:
            return self.priorities[DEFAULT_PRIORITY], True

    def calendar(self) -> BusinessCalendar:
        return BusinessCalendar(
            start_hour=self.business_hours.start_hour,
            end_hour=self.business_hours.end_hour,
            business_days=tuple(sorted(set(self.business_hours.days))),
            timezone=self.timezone,
        )


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA arithmetic in one place.
    """

    @staticmethod
    def business_hours_between(
        calendar: BusinessCalendar,
        start: datetime,
        end: datetime
    ) -> int:
        """
        Count business hours between ``start`` and ``end``.

        Steps one hour at a time from ``start`` while the step is before
        ``end``, counting a step when its local weekday is a business day
        and its local hour is inside ``[start_hour, end_hour)``.

        Whole weeks without a UTC offset change are counted in one step;
        every hour-of-week occurs exactly once in such a week, so the
        result equals plain iteration.

        Example:
            Mon 09:00 -> Mon 13:00, window 08-18 Mon-Fri: 4
            Fri 17:00 -> Mon 09:00: 2 (Fri 17-18, Mon 08-09)
        """
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)

        zone = calendar.zone
        weekly = calendar.hours_per_week
        current = start.astimezone(timezone.utc)
        end = end.astimezone(timezone.utc)
        hours = 0

        while current + _WEEK <= end:
            week_end = current + _WEEK
            if current.astimezone(zone).utcoffset() == week_end.astimezone(zone).utcoffset():
                hours += weekly
                current = week_end
                continue
            # DST transition inside this week
            while current < week_end:
                if calendar.is_business_hour(current):
                    hours += 1
                current += _HOUR

        while current < end:
            if calendar.is_business_hour(current):
                hours += 1
            current += _HOUR

        return hours

    @staticmethod
    def calendar_hours_between(start: datetime, end: datetime) -> float:
        return max(0.0, (end - start).total_seconds() / 3600)

    @staticmethod
    def is_breached(elapsed_hours: float, target_hours: float) -> bool:
        """Breach is strict: exactly on target is still compliant."""
        return elapsed_hours > target_hours

    @staticmethod
    def consumed_percentage(elapsed_hours: float, target_hours: float) -> float:
        if target_hours <= 0:
            return 0.0
        return round(elapsed_hours / target_hours * 100, 2)

    @staticmethod
    def summarize(measurements: Iterable[SLAMeasurement]) -> SLASummary:
        """
        Derive the summary from explicit SLA measurements.

        The worst SLA is the breached measurement with the highest
        business percentage or, when none breached, the active one
        closest to breach.
        """
        measurements = sorted(measurements, key=lambda m: m.id)
        total = len(measurements)
        breached = [m for m in measurements if m.has_breached]
        active = [m for m in measurements if m.is_active]

        candidates = breached or active
        worst = max(candidates, key=lambda m: m.business_percentage) if candidates else None

        return SLASummary(
            total_slas=total,
            active_slas=len(active),
            breached_slas=len(breached),
            breach_percentage=(len(breached) / total * 100) if total else 0.0,
            worst_sla=worst,
            measurements=measurements,
        )

    @staticmethod
    def simulate(
        ticket: Ticket,
        policy: SLAPolicy,
        now: datetime,
        calendar: Optional[BusinessCalendar] = None
    ) -> SLAMeasurement:
        """
        Policy-driven measurement for a ticket without ServiceNow SLA rows.

        The clock stops at resolution for resolved tickets.
        """
        calendar = calendar or policy.calendar()
        target, _ = policy.target_or_default(ticket.priority)
        end = ticket.resolved_at or now
        elapsed = SLACalculator.business_hours_between(calendar, ticket.created_at, end)
        return SLAMeasurement(
            id=f"{ticket.id}:policy",
            sla_name=f"P{ticket.priority or DEFAULT_PRIORITY} resolution ({target.target_hours:g}h)",
            stage="completed" if ticket.is_resolved else "in_progress",
            business_percentage=SLACalculator.consumed_percentage(elapsed, target.target_hours),
            has_breached=SLACalculator.is_breached(elapsed, target.target_hours),
            start_time=ticket.created_at,
            end_time=end if ticket.is_resolved else None,
        )

    @staticmethod
    def compute(
        ticket: Ticket,
        policy: SLAPolicy,
        now: Optional[datetime] = None,
        calendar: Optional[BusinessCalendar] = None
    ) -> SLASummary:
        """Summary from the policy table alone."""
        now = now or datetime.now(timezone.utc)
        return SLACalculator.summarize([SLACalculator.simulate(ticket, policy, now, calendar)])

    @staticmethod
    def attach(ticket: Ticket, measurements: Iterable[SLAMeasurement]) -> SLASummary:
        """Summary from the measurements ServiceNow supplied for ``ticket``."""
        return SLACalculator.summarize(measurements)

    @staticmethod
    def aggregate(records: List[SLARecord]) -> PriorityMetrics:
        """Compliance figures over one set of records."""
        total = len(records)
        breached = sum(1 for r in records if r.breached)
        resolved = [r for r in records if r.is_resolved]
        resolution_hours = [
            r.resolution_time_hours for r in resolved if r.resolution_time_hours is not None
        ]
        return PriorityMetrics(
            total=total,
            breached=breached,
            resolved_within_sla=sum(1 for r in resolved if not r.breached),
            avg_resolution_hours=(
                round(sum(resolution_hours) / len(resolution_hours), 2)
                if resolution_hours else 0.0
            ),
            breach_percentage=round(breached / total * 100, 2) if total else 0.0,
        )

    @staticmethod
    def metrics(records: Iterable[SLARecord]) -> SLAMetrics:
        """Aggregate compliance over ``records``, overall and per priority."""
        records = list(records)

        buckets: Dict[str, List[SLARecord]] = {}
        for record in records:
            key = str(record.priority) if record.priority is not None else "unset"
            buckets.setdefault(key, []).append(record)

        overall = SLACalculator.aggregate(records)
        return SLAMetrics(
            **vars(overall),
            by_priority={
                key: SLACalculator.aggregate(bucket) for key, bucket in sorted(buckets.items())
            },
        )
