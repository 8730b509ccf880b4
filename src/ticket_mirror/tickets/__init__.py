"""
Tickets Module
==============

Bounded context for mirroring ServiceNow tickets into the local store:
local-first resolution, hash-based change detection, audit trail and
table sync.
"""
