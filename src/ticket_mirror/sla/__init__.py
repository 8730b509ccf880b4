"""
SLA Module
==========

Bounded context for SLA compliance: business-hours accounting, breach
tracking, policy hot reload and compliance metrics.
"""
