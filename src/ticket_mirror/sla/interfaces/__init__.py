"""HTTP routes for SLA summaries, metrics and checks."""

from ticket_mirror.sla.interfaces.controllers import router as sla_router

__all__ = ["sla_router"]
