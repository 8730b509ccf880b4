"""
Ticket Infrastructure Repositories
==================================

SQLAlchemy implementation of the local document store.

Documents are stored whole in a JSON column; Mongo-style filters are
translated into SQL conditions over the projected columns. Each operation
runs in its own session so the store can be shared by concurrent tasks.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ticket_mirror.core.exceptions import (
    AuditWriteException,
    RepositoryException,
    ValidationException,
    WriteConflictException,
)
from ticket_mirror.infrastructure.database import Database
from ticket_mirror.shared.infrastructure.logging import get_logger, log_latency
from ticket_mirror.tickets.application.interfaces import ILocalStore, SortSpec
from ticket_mirror.tickets.domain import AuditEntry
from ticket_mirror.tickets.domain.entities import parse_iso
from ticket_mirror.tickets.infrastructure.models import TicketAuditModel, TicketDocumentModel

logger = get_logger(__name__)

# Document field -> column it is projected into
FIELD_COLUMNS = {
    "id": TicketDocumentModel.id,
    "ticket_type": TicketDocumentModel.ticket_type,
    "number": TicketDocumentModel.number,
    "state": TicketDocumentModel.state,
    "priority": TicketDocumentModel.priority,
    "assignment_group": TicketDocumentModel.assignment_group,
    "active": TicketDocumentModel.active,
    "created_at": TicketDocumentModel.created_at,
    "updated_at": TicketDocumentModel.updated_at,
    "_content_hash": TicketDocumentModel.content_hash,
    "_sla_hash": TicketDocumentModel.sla_hash,
    "_version": TicketDocumentModel.version,
    "_synced_at": TicketDocumentModel.synced_at,
    "_source": TicketDocumentModel.source,
}

_DATETIME_FIELDS = {"created_at", "updated_at", "_synced_at"}

_OPERATORS = {
    "$in": lambda column, value: column.in_(list(value)),
    "$nin": lambda column, value: column.not_in(list(value)),
    "$ne": lambda column, value: column != value,
    "$gt": lambda column, value: column > value,
    "$gte": lambda column, value: column >= value,
    "$lt": lambda column, value: column < value,
    "$lte": lambda column, value: column <= value,
}


def _coerce(field: str, value: Any) -> Any:
    if field in _DATETIME_FIELDS and value is not None:
        if isinstance(value, (list, tuple)):
            return [_coerce(field, v) for v in value]
        return parse_iso(value).astimezone(timezone.utc)
    return value


def translate_filter(filter: Dict[str, Any]) -> list:
    """
    Mongo-style filter -> list of SQLAlchemy conditions.

    Raises:
        ValidationException: unknown field or operator
    """
    conditions = []
    for field, criterion in filter.items():
        column = FIELD_COLUMNS.get(field)
        if column is None:
            raise ValidationException(f"Cannot filter on field '{field}'", {"field": field})

        if isinstance(criterion, dict):
            for operator, value in criterion.items():
                build = _OPERATORS.get(operator)
                if build is None:
                    raise ValidationException(
                        f"Unsupported filter operator '{operator}'", {"field": field}
                    )
                conditions.append(build(column, _coerce(field, value)))
        elif criterion is None:
            conditions.append(column.is_(None))
        else:
            conditions.append(column == _coerce(field, criterion))
    return conditions


def _columns_for(document: Dict[str, Any]) -> Dict[str, Any]:
    """Projected column values for a full ticket document."""
    return {
        "id": document["id"],
        "ticket_type": document["ticket_type"],
        "number": document.get("number") or "",
        "state": int(document.get("state", 1)),
        "priority": document.get("priority"),
        "assignment_group": document.get("assignment_group") or "",
        "active": bool(document.get("active", True)),
        "created_at": parse_iso(document["created_at"]),
        "updated_at": parse_iso(document["updated_at"]),
        "document": document,
        "content_hash": document.get("_content_hash", ""),
        "sla_hash": document.get("_sla_hash", ""),
        "version": int(document.get("_version", 1)),
        "synced_at": parse_iso(document.get("_synced_at")) or datetime.now(timezone.utc),
        "source": document.get("_source", "remote"),
    }


class SQLAlchemyTicketStore(ILocalStore):
    """
    SQLAlchemy implementation of the local ticket store.

    Handles persistence of ticket documents and their audit trail.
    """

    def __init__(self, database: Database):
        self._database = database

    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        documents = await self.find(filter, limit=1)
        return documents[0] if documents else None

    async def find(
        self,
        filter: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(TicketDocumentModel.document)
        conditions = translate_filter(filter)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        for field, direction in sort or []:
            column = FIELD_COLUMNS.get(field)
            if column is None:
                raise ValidationException(f"Cannot sort on field '{field}'", {"field": field})
            stmt = stmt.order_by(column.desc() if direction < 0 else column.asc())
        # Stable pagination
        stmt = stmt.order_by(TicketDocumentModel.id.asc())

        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            with log_latency(logger, "local_find", filter_fields=sorted(filter)):
                async with self._database.session() as session:
                    result = await session.execute(stmt)
                    return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryException("Local store query failed", {"error": str(e)}) from e

    async def replace_one(
        self,
        filter: Dict[str, Any],
        document: Dict[str, Any],
        upsert: bool = False,
    ) -> bool:
        values = _columns_for(document)
        conditions = translate_filter(filter)

        try:
            async with self._database.session() as session:
                stmt = update(TicketDocumentModel).values(**values)
                if conditions:
                    stmt = stmt.where(and_(*conditions))
                result = await session.execute(stmt)
                if result.rowcount:
                    return True
                if not upsert:
                    return False
                await session.execute(insert(TicketDocumentModel).values(**values))
                return True
        except IntegrityError as e:
            raise WriteConflictException(
                document["id"], {"filter": {k: str(v) for k, v in filter.items()}}
            ) from e
        except SQLAlchemyError as e:
            raise RepositoryException(
                "Local store write failed", {"ticket_id": document["id"], "error": str(e)}
            ) from e

    async def count_documents(self, filter: Dict[str, Any]) -> int:
        stmt = select(func.count()).select_from(TicketDocumentModel)
        conditions = translate_filter(filter)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        try:
            async with self._database.session() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise RepositoryException("Local store count failed", {"error": str(e)}) from e

    async def append_audit(self, entries: List[AuditEntry]) -> None:
        if not entries:
            return
        try:
            async with self._database.session() as session:
                session.add_all([
                    TicketAuditModel(
                        ticket_id=entry.ticket_id,
                        field=entry.field,
                        old_value=entry.old_value,
                        new_value=entry.new_value,
                        change_type=entry.change_type,
                        changed_at=entry.changed_at,
                        sync_version=entry.sync_version,
                    )
                    for entry in entries
                ])
        except SQLAlchemyError as e:
            raise AuditWriteException(
                "Audit trail write failed",
                {"ticket_id": entries[0].ticket_id, "error": str(e)}
            ) from e

    async def get_audit_history(self, ticket_id: str, limit: int = 100) -> List[AuditEntry]:
        stmt = (
            select(TicketAuditModel)
            .where(TicketAuditModel.ticket_id == ticket_id)
            .order_by(TicketAuditModel.sync_version.desc(), TicketAuditModel.id.asc())
            .limit(limit)
        )
        try:
            async with self._database.session() as session:
                result = await session.execute(stmt)
                models = result.scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryException("Audit history query failed", {"error": str(e)}) from e

        return [
            AuditEntry(
                ticket_id=model.ticket_id,
                field=model.field,
                old_value=model.old_value,
                new_value=model.new_value,
                change_type=model.change_type,
                changed_at=parse_iso(model.changed_at),
                sync_version=model.sync_version,
            )
            for model in models
        ]
