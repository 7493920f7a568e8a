"""Scheduler job control endpoints."""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.routers.deps import get_app_state
from api.routers.ingest import require_ingest_key
from api.state import AppState

router = APIRouter(dependencies=[Depends(require_ingest_key)])


class JobStatus(BaseModel):
    """Status of a scheduled job."""

    job_id: str
    name: str
    last_status: str
    run_count: int = 0
    last_run: Optional[str] = None
    next_run: Optional[str] = None
    error: Optional[str] = None


class JobsStatusResponse(BaseModel):
    """Response for all jobs status."""

    scheduler_running: bool
    jobs: list[JobStatus]


def _scheduler(app_state: AppState):
    if not app_state.scheduler:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return app_state.scheduler


@router.get("/jobs/status", response_model=JobsStatusResponse)
def get_jobs_status(app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """
    Get status of all scheduled jobs.

    Returns last run time, next run time, and status for each job.
    """
    scheduler = _scheduler(app_state)

    jobs = []
    for job_id, status in scheduler.get_job_status().items():
        jobs.append(
            JobStatus(
                job_id=job_id,
                name=status.get("name", job_id),
                last_status=status.get("last_status", "pending"),
                run_count=status.get("run_count", 0),
                last_run=status["last_run"].isoformat() if status.get("last_run") else None,
                next_run=status["next_run"].isoformat() if status.get("next_run") else None,
                error=status.get("last_error"),
            )
        )

    return {
        "scheduler_running": scheduler.is_running,
        "jobs": jobs,
    }


@router.post("/jobs/{job_id}/trigger")
def trigger_job(job_id: str, app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """
    Manually trigger a job to run immediately.

    Args:
        job_id: ID of the job to trigger (tick, poll_odds, sweep_quotes, health_check)
    """
    scheduler = _scheduler(app_state)

    if not scheduler.trigger_job(job_id):
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")
    return {
        "success": True,
        "job_id": job_id,
        "triggered_at": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/jobs/pause")
def pause_scheduler(app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """
    Pause all scheduled jobs.

    Jobs will not run until resumed.
    """
    _scheduler(app_state).pause()
    return {
        "success": True,
        "paused_at": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/jobs/resume")
def resume_scheduler(app_state: AppState = Depends(get_app_state)) -> dict[str, Any]:
    """Resume scheduled jobs after pausing."""
    _scheduler(app_state).resume()
    return {
        "success": True,
        "resumed_at": datetime.now(timezone.utc).isoformat(),
    }
