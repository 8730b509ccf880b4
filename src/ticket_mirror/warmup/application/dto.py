"""
Warmup Application DTOs
=======================
"""

from typing import Dict, Literal

from pydantic import BaseModel, Field

from ticket_mirror.warmup.domain import DrainResult


class WarmupRequest(BaseModel):
    """Manual warmup enqueue."""
    ticket_id: str = Field(..., min_length=1)
    table: str = Field(..., min_length=1)
    priority: Literal["critical", "high", "medium", "low"] = "medium"


class QueryWarmupRequest(BaseModel):
    """Queue the tickets matching an encoded ServiceNow query."""
    table: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, description="e.g. priority=1^state!=7")
    priority: Literal["critical", "high", "medium", "low"] = "high"


class WarmupEnqueueResponse(BaseModel):
    ticket_id: str
    table: str
    priority: str
    queued: bool = Field(..., description="False when the ticket was already queued")


class DrainResponse(BaseModel):
    processed: int
    hits: int
    misses: int
    requeued: int
    cancelled: bool
    skipped: bool

    @classmethod
    def from_result(cls, result: DrainResult) -> "DrainResponse":
        return cls(
            processed=result.processed,
            hits=result.hits,
            misses=result.misses,
            requeued=result.requeued,
            cancelled=result.cancelled,
            skipped=result.skipped,
        )


class WarmupStatsResponse(BaseModel):
    enqueued: int
    deduplicated: int
    hits: int
    misses: int
    preloaded: int
    hit_ratio: float
    miss_ratio: float
    drains: int
    requeued: int
    queue_size: int
    queue_by_priority: Dict[str, int]
    draining: bool
