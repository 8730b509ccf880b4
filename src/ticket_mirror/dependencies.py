"""
FastAPI Dependencies
====================

Route dependencies resolving the services built by the app lifespan.
"""

from fastapi import Request

from ticket_mirror.services import TicketMirrorService


def get_mirror_service(request: Request) -> TicketMirrorService:
    """The facade stored on ``app.state`` by the composition root."""
    return request.app.state.mirror
