"""
Warmup Application Layer
========================

- Services: WarmupScheduler
- DTOs: enqueue/drain requests and responses
"""

from ticket_mirror.warmup.application.dto import (
    WarmupRequest,
    QueryWarmupRequest,
    WarmupEnqueueResponse,
    DrainResponse,
    WarmupStatsResponse,
)
from ticket_mirror.warmup.application.services import WarmupScheduler, validate_priority

__all__ = [
    "WarmupScheduler",
    "validate_priority",
    "WarmupRequest",
    "QueryWarmupRequest",
    "WarmupEnqueueResponse",
    "DrainResponse",
    "WarmupStatsResponse",
]
