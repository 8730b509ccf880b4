"""
Warmup Interfaces Layer
=======================
"""

from ticket_mirror.warmup.interfaces.controllers import router as warmup_router

__all__ = ["warmup_router"]
