"""
Warmup Domain Layer
===================

Queue items, drain results and counters for proactive cache warmup.
"""

from ticket_mirror.warmup.domain.entities import (
    WarmupTask,
    WarmupStats,
    DrainResult,
    priority_rank,
)

__all__ = [
    "WarmupTask",
    "WarmupStats",
    "DrainResult",
    "priority_rank",
]
