"""
Core Module
============

Framework-free building blocks shared by the tickets, SLA and warmup
modules. Currently only the exception hierarchy.
"""

from ticket_mirror.core.exceptions import (
    ApplicationException,
    AuditWriteException,
    DomainException,
    ExternalServiceException,
    InvalidTableException,
    PolicyMissingException,
    RepositoryException,
    ResourceNotFoundException,
    TicketNotFoundException,
    UpstreamUnavailableException,
    ValidationException,
    WriteConflictException,
)

__all__ = [
    "ApplicationException",
    "AuditWriteException",
    "DomainException",
    "ExternalServiceException",
    "InvalidTableException",
    "PolicyMissingException",
    "RepositoryException",
    "ResourceNotFoundException",
    "TicketNotFoundException",
    "UpstreamUnavailableException",
    "ValidationException",
    "WriteConflictException",
]
