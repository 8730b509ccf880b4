"""
SLA Infrastructure Repositories
=================================

Concrete implementation of the SLA record repository using SQLAlchemy.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError

from ticket_mirror.config import SLAStatus
from ticket_mirror.core.exceptions import RepositoryException
from ticket_mirror.infrastructure.database import Database
from ticket_mirror.sla.application.interfaces import ISLARecordRepository
from ticket_mirror.sla.domain import SLARecord
from ticket_mirror.sla.infrastructure.models import SLARecordModel


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_entity(model: SLARecordModel) -> SLARecord:
    return SLARecord(
        ticket_id=model.ticket_id,
        table=model.table_name,
        number=model.number,
        priority=model.priority,
        ticket_created_at=_aware(model.ticket_created_at),
        target_hours=model.target_hours,
        escalation_hours=model.escalation_hours,
        status=model.status,
        breached=model.breached,
        escalated=model.escalated,
        business_hours_elapsed=model.business_hours_elapsed,
        calendar_hours_elapsed=model.calendar_hours_elapsed,
        breach_time=_aware(model.breach_time),
        resolved_at=_aware(model.resolved_at),
        resolution_time_hours=model.resolution_time_hours,
        last_checked_at=_aware(model.last_checked_at),
    )


class SQLAlchemySLARecordRepository(ISLARecordRepository):
    """
    SQLAlchemy implementation of SLA record repository.

    Each call runs in its own session.
    """

    def __init__(self, database: Database):
        self._database = database

    async def get(self, ticket_id: str) -> Optional[SLARecord]:
        try:
            async with self._database.session() as session:
                model = await session.get(SLARecordModel, ticket_id)
                return _to_entity(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException("SLA record lookup failed", {"error": str(e)}) from e

    async def save(self, record: SLARecord) -> None:
        try:
            async with self._database.session() as session:
                await session.merge(SLARecordModel(
                    ticket_id=record.ticket_id,
                    table_name=record.table,
                    number=record.number,
                    priority=record.priority,
                    ticket_created_at=record.ticket_created_at,
                    target_hours=record.target_hours,
                    escalation_hours=record.escalation_hours,
                    status=record.status,
                    breached=record.breached,
                    escalated=record.escalated,
                    business_hours_elapsed=record.business_hours_elapsed,
                    calendar_hours_elapsed=record.calendar_hours_elapsed,
                    breach_time=record.breach_time,
                    resolved_at=record.resolved_at,
                    resolution_time_hours=record.resolution_time_hours,
                    last_checked_at=record.last_checked_at,
                ))
        except SQLAlchemyError as e:
            raise RepositoryException(
                "SLA record write failed", {"ticket_id": record.ticket_id, "error": str(e)}
            ) from e

    async def list_unresolved(self) -> List[SLARecord]:
        stmt = select(SLARecordModel).where(SLARecordModel.status != SLAStatus.RESOLVED)
        return await self._fetch(stmt)

    async def list(
        self,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        table: Optional[str] = None,
    ) -> List[SLARecord]:
        conditions = []
        if created_from is not None:
            conditions.append(SLARecordModel.ticket_created_at >= created_from)
        if created_to is not None:
            conditions.append(SLARecordModel.ticket_created_at <= created_to)
        if table is not None:
            conditions.append(SLARecordModel.table_name == table)

        stmt = select(SLARecordModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        return await self._fetch(stmt.order_by(SLARecordModel.ticket_created_at.asc()))

    async def _fetch(self, stmt) -> List[SLARecord]:
        try:
            async with self._database.session() as session:
                result = await session.execute(stmt)
                return [_to_entity(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException("SLA record query failed", {"error": str(e)}) from e
