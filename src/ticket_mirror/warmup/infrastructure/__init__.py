"""
Warmup Infrastructure Layer
===========================

Contains:
- RedisChangeFeed: Redis Streams consumer feeding the warmup queue
"""

from ticket_mirror.warmup.infrastructure.change_feed import RedisChangeFeed

__all__ = ["RedisChangeFeed"]
