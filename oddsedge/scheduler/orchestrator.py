"""
APScheduler orchestrator for the detection loop and its feeders.

Jobs:
- tick: rebuild the opportunity snapshot every ``tick.interval_seconds``
- poll_odds: pull every polling feed (only when feeds are configured)
- health_check: probe feeds every 5 minutes (only when feeds are configured)
- sweep_quotes: drop stale quotes every minute
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import jobs

logger = logging.getLogger(__name__)


@dataclass
class JobRun:
    """Bookkeeping for one registered job."""

    last_run: Optional[datetime] = None
    last_status: str = "pending"
    last_error: Optional[str] = None
    run_count: int = 0

    def record(self, error: Optional[BaseException] = None) -> None:
        self.last_run = datetime.now(timezone.utc)
        self.run_count += 1
        self.last_status = "error" if error else "success"
        self.last_error = str(error) if error else None


class SchedulerOrchestrator:
    """
    Owns the AsyncIOScheduler and the job table.

    Every job runs with ``max_instances=1`` so a slow tick is skipped
    rather than stacked.

    Example:
        >>> scheduler = SchedulerOrchestrator(settings, engine, store, feeds=[odds_client])
        >>> scheduler.start()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        settings: Any,
        engine: Any,
        store: Any,
        feeds: Optional[list[Any]] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.store = store
        self.feeds = feeds or []

        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
        )
        self.scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        self._runs: dict[str, JobRun] = {}
        self._is_running = False

    def _job_table(self) -> list[tuple[str, str, Callable[[], Awaitable[Any]], IntervalTrigger, bool]]:
        """(id, name, coroutine function, trigger, run immediately)."""
        table = [
            (
                "tick",
                "Detection Tick",
                partial(jobs.run_tick, self.engine),
                IntervalTrigger(seconds=self.settings.tick.interval_seconds),
                True,
            ),
            (
                "sweep_quotes",
                "Sweep Stale Quotes",
                partial(jobs.sweep_quotes, self.store),
                IntervalTrigger(minutes=1),
                False,
            ),
        ]
        if self.feeds:
            table += [
                (
                    "poll_odds",
                    "Poll Odds Feeds",
                    partial(jobs.poll_odds, self.feeds, self.store),
                    IntervalTrigger(seconds=self.settings.odds_api.poll_interval_seconds),
                    True,
                ),
                (
                    "health_check",
                    "Feed Health Check",
                    partial(jobs.health_check, self.feeds),
                    IntervalTrigger(minutes=5),
                    False,
                ),
            ]
        return table

    def start(self) -> None:
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        now = datetime.now(timezone.utc)
        for job_id, name, func, trigger, immediate in self._job_table():
            extra = {"next_run_time": now} if immediate else {}
            self.scheduler.add_job(func, trigger=trigger, id=job_id, name=name, replace_existing=True, **extra)
            self._runs[job_id] = JobRun()

        self.scheduler.start()
        self._is_running = True
        logger.info(f"Scheduler started with jobs: {', '.join(sorted(self._runs))}")

    def stop(self) -> None:
        """Shut down without waiting for running jobs."""
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Scheduler stopped")

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        run = self._runs.get(event.job_id)
        if run is not None:
            run.record(event.exception)
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {event.exception}")

    def get_job_status(self) -> dict[str, dict]:
        status = {}
        for job in self.scheduler.get_jobs():
            run = self._runs.get(job.id, JobRun())
            status[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time,
                "last_run": run.last_run,
                "last_status": run.last_status,
                "last_error": run.last_error,
                "run_count": run.run_count,
            }
        return status

    def trigger_job(self, job_id: str) -> bool:
        """Run a job now. Returns False for an unknown job id."""
        if self.scheduler.get_job(job_id) is None:
            return False
        self.scheduler.modify_job(job_id, next_run_time=datetime.now(timezone.utc))
        logger.info(f"Triggered job: {job_id}")
        return True

    def pause(self) -> None:
        """Pause all jobs. The tick stops, so streams go quiet."""
        if not self._is_running:
            logger.warning("Scheduler not running")
            return
        self.scheduler.pause()
        logger.info("Scheduler paused")

    def resume(self) -> None:
        if not self._is_running:
            logger.warning("Scheduler not running")
            return
        self.scheduler.resume()
        logger.info("Scheduler resumed")

    @property
    def is_running(self) -> bool:
        return self._is_running
