"""
Ticket Ports
============

Abstract contracts for the two stores the resolver works against
(Dependency Inversion). Infrastructure provides the implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ticket_mirror.tickets.domain import AuditEntry

# Mongo-style sort keys: [("updated_at", -1), ("number", 1)]
SortSpec = Sequence[Tuple[str, int]]


class ILocalStore(ABC):
    """
    Local document collection of mirrored tickets.

    Filters are Mongo-style dictionaries: ``{"field": value}`` for equality
    plus the ``$in``, ``$ne``, ``$gte`` and ``$lte`` operators.
    """

    @abstractmethod
    async def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """First document matching ``filter``."""

    @abstractmethod
    async def find(
        self,
        filter: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Documents matching ``filter``."""

    @abstractmethod
    async def replace_one(
        self,
        filter: Dict[str, Any],
        document: Dict[str, Any],
        upsert: bool = False,
    ) -> bool:
        """
        Replace the document matching ``filter``; insert when none matches
        and ``upsert`` is set. Returns True when a document was written.

        Raises:
            WriteConflictException: the insert collided with an existing id
        """

    @abstractmethod
    async def count_documents(self, filter: Dict[str, Any]) -> int:
        """Number of documents matching ``filter``."""

    @abstractmethod
    async def append_audit(self, entries: List[AuditEntry]) -> None:
        """
        Append audit entries.

        Raises:
            AuditWriteException: entries could not be stored
        """

    @abstractmethod
    async def get_audit_history(self, ticket_id: str, limit: int = 100) -> List[AuditEntry]:
        """Audit entries for a ticket, newest first."""


@dataclass
class RemotePage:
    """One page of raw ServiceNow records."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0


class IRemoteSource(ABC):
    """ServiceNow Table API, seen as a fetch primitive."""

    @abstractmethod
    async def fetch_by_id(self, table: str, ticket_id: str) -> Optional[Dict[str, Any]]:
        """Raw record, or None when ServiceNow has no such record."""

    @abstractmethod
    async def fetch_by_filter(
        self,
        table: str,
        query: str,
        limit: int,
        offset: int = 0,
    ) -> RemotePage:
        """Records matching an encoded ``sysparm_query``."""

    @abstractmethod
    async def fetch_slas(self, ticket_id: str) -> List[Dict[str, Any]]:
        """Raw ``task_sla`` rows attached to a ticket."""
