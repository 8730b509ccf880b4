"""
Core Exceptions
================

Error hierarchy shared by every module of the mirror.

Services raise these; the HTTP layer maps them to status codes in one
place (``ticket_mirror.shared.api.middleware``). Each error carries a
human readable ``message`` and a ``details`` dict safe to return to
clients.
"""

from typing import Optional


class ApplicationException(Exception):
    """Root of all errors the mirror raises on purpose."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A business rule could not be applied."""


class RepositoryException(ApplicationException):
    """The local store failed to read or write."""


class ValidationException(ApplicationException):
    """Caller input is malformed."""


class ResourceNotFoundException(ApplicationException):
    """Lookup found nothing."""

    def __init__(self, kind: str, identifier: str, details: Optional[dict] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found", details)


class ExternalServiceException(ApplicationException):
    """A remote dependency answered with an error."""

    def __init__(self, service_name: str, message: str, details: Optional[dict] = None):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class TicketNotFoundException(ResourceNotFoundException):
    """Neither the local store nor the remote system holds the ticket."""

    def __init__(self, table: str, ticket_id: str):
        self.table = table
        self.ticket_id = ticket_id
        super().__init__(table, ticket_id, {"table": table, "ticket_id": ticket_id})


class UpstreamUnavailableException(ExternalServiceException):
    """Remote fetch failed and the local store could not answer."""

    def __init__(
        self,
        message: str,
        retry_after_seconds: int = 30,
        details: Optional[dict] = None
    ):
        self.retry_after_seconds = retry_after_seconds
        super().__init__("ServiceNow", message, details)


class InvalidTableException(ValidationException):
    """Unknown remote table name."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unknown table '{table}'", {"table": table})


class WriteConflictException(RepositoryException):
    """Concurrent upsert lost a race on the same ticket id."""

    def __init__(self, ticket_id: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(f"Write conflict for ticket {ticket_id}", details)


class AuditWriteException(RepositoryException):
    """Audit trail could not be appended."""


class PolicyMissingException(DomainException):
    """No SLA policy is configured for a priority."""

    def __init__(self, priority: str):
        self.priority = priority
        super().__init__(
            f"No SLA policy for priority {priority}",
            {"priority": priority}
        )
