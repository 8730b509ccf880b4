"""
Ticket Infrastructure Models
============================

SQLAlchemy ORM models for the local ticket store.

Each ticket is kept as a JSON document. The fields the resolver filters
and sorts on are projected into indexed columns next to it.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ticket_mirror.infrastructure.database import Base


class TicketDocumentModel(Base):
    """
    Database model for a mirrored ticket document.

    Maps to the 'ticket_documents' table.
    """
    __tablename__ = "ticket_documents"

    # ServiceNow sys_id
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Filter/sort projections of the document
    ticket_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    state: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assignment_group: Mapped[str] = mapped_column(String(255), nullable=False, default="", index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Full canonical document, bookkeeping fields included
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Sync bookkeeping
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    sla_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="remote")


class TicketAuditModel(Base):
    """
    Append-only audit trail, one row per changed field.

    Maps to the 'ticket_audit' table.
    """
    __tablename__ = "ticket_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    field: Mapped[str] = mapped_column(String(128), nullable=False)
    old_value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    change_type: Mapped[str] = mapped_column(String(10), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sync_version: Mapped[int] = mapped_column(Integer, nullable=False)
