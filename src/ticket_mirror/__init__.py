"""
Ticket Mirror
=============

Hybrid ServiceNow ticket cache with SLA compliance tracking.

Bounded contexts:
- tickets: local-first resolution, change detection, audit trail, table sync
- sla: business-hours SLA tracking and compliance metrics
- warmup: priority-ordered proactive cache population
"""

__version__ = "1.0.0"
