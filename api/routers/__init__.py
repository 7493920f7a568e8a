"""API routers for oddsedge."""

from . import arbs, ev, health, ingest, jobs, me, sse

__all__ = [
    "arbs",
    "ev",
    "health",
    "ingest",
    "jobs",
    "me",
    "sse",
]
