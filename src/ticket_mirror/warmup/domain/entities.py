"""
Warmup Domain Entities
======================

In-memory queue items and counters for proactive cache warmup.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Tuple

from ticket_mirror.config import WARMUP_PRIORITY_ORDER


def priority_rank(priority: str) -> int:
    """0 for critical, growing towards low."""
    return WARMUP_PRIORITY_ORDER.index(priority)


@dataclass
class WarmupTask:
    """
    One ticket waiting to be pulled into the local store.

    Lives only in the scheduler's queue, never persisted.
    """
    ticket_id: str
    table: str
    priority: str
    enqueued_at: datetime

    @property
    def key(self) -> Tuple[str, str]:
        return (self.ticket_id, self.table)

    @property
    def rank(self) -> int:
        return priority_rank(self.priority)

    def outranks(self, other: "WarmupTask") -> bool:
        """Higher tier wins; within a tier the older task wins."""
        if self.rank != other.rank:
            return self.rank < other.rank
        return self.enqueued_at < other.enqueued_at


@dataclass
class WarmupStats:
    """Running counters since process start."""
    enqueued: int = 0
    deduplicated: int = 0
    hits: int = 0
    misses: int = 0
    drains: int = 0
    requeued: int = 0

    @property
    def preloaded(self) -> int:
        return self.hits

    @property
    def hit_ratio(self) -> float:
        attempts = self.hits + self.misses
        return round(self.hits / attempts, 4) if attempts else 0.0

    @property
    def miss_ratio(self) -> float:
        attempts = self.hits + self.misses
        return round(self.misses / attempts, 4) if attempts else 0.0

    def to_dict(self) -> dict:
        return {
            "enqueued": self.enqueued,
            "deduplicated": self.deduplicated,
            "hits": self.hits,
            "misses": self.misses,
            "preloaded": self.preloaded,
            "hit_ratio": self.hit_ratio,
            "miss_ratio": self.miss_ratio,
            "drains": self.drains,
            "requeued": self.requeued,
        }


@dataclass
class DrainResult:
    """Outcome of one queue drain."""
    processed: int = 0
    hits: int = 0
    misses: int = 0
    requeued: int = 0
    cancelled: bool = False
    skipped: bool = False
    order: List[Tuple[str, str]] = field(default_factory=list)
