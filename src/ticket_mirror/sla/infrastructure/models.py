"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM model for tracked SLA records.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ticket_mirror.config import SLAStatus
from ticket_mirror.infrastructure.database import Base


class SLARecordModel(Base):
    """
    Database model for SLARecord entity.

    Maps to the 'sla_records' table, one row per ticket.
    """
    __tablename__ = "sla_records"

    ticket_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    table_name: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(40), nullable=False)
    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ticket_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Policy snapshot taken when tracking started
    target_hours: Mapped[float] = mapped_column(Float, nullable=False)
    escalation_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SLAStatus.ACTIVE, index=True)
    breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_hours_elapsed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    calendar_hours_elapsed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    breach_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_time_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
