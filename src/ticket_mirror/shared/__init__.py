"""
Shared Kernel
=============

Plumbing reused by the tickets, sla and warmup packages: logging,
the job scheduler and HTTP middleware. Keep ticket and SLA rules out
of here.
"""
