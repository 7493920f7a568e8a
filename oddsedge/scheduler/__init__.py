"""
Job scheduling module.

Provides APScheduler-based background job orchestration for:
- Detection ticks
- Odds polling at configurable intervals
- Stale quote sweeping
- Feed health monitoring

Example:
    >>> from oddsedge.scheduler import SchedulerOrchestrator
    >>>
    >>> scheduler = SchedulerOrchestrator(settings, engine, store, feeds=[odds_client])
    >>> scheduler.start()
    >>>
    >>> # Check job status
    >>> status = scheduler.get_job_status()
    >>>
    >>> # Manual trigger
    >>> scheduler.trigger_job("poll_odds")
    >>>
    >>> # Shutdown
    >>> scheduler.stop()
"""

from .orchestrator import SchedulerOrchestrator
from .jobs import (
    run_tick,
    poll_odds,
    sweep_quotes,
    health_check,
)

__all__ = [
    "SchedulerOrchestrator",
    "run_tick",
    "poll_odds",
    "sweep_quotes",
    "health_check",
]
