"""
SLA Ports
=========

Repository and provider interfaces for SLA tracking (Dependency Inversion).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ticket_mirror.sla.domain import SLAPolicy, SLARecord
from ticket_mirror.tickets.domain import Ticket


class ISLARecordRepository(ABC):
    """Interface for SLA record data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[SLARecord]:
        """Record for a ticket, if tracked."""

    @abstractmethod
    async def save(self, record: SLARecord) -> None:
        """Insert or replace a record."""

    @abstractmethod
    async def list_unresolved(self) -> List[SLARecord]:
        """Records still active or breached."""

    @abstractmethod
    async def list(
        self,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        table: Optional[str] = None,
    ) -> List[SLARecord]:
        """Records whose ticket was created in the range, optionally for one table."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Current SLA policy."""


class ISLATracker(ABC):
    """Receives tickets after they were written to the local store."""

    @abstractmethod
    async def track(self, ticket: Ticket, now: Optional[datetime] = None) -> SLARecord:
        """Create or refresh the SLA record of ``ticket``."""
