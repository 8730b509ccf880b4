"""
Warmup Module
=============

Bounded context for proactive cache warmup: priority queue, change-feed
consumer and the periodic jobs that drive it.
"""
