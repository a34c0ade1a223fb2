"""
Scheduler Monitoring Router

Provides endpoints to monitor scheduled job health and status.
"""

from typing import Dict

from fastapi import APIRouter, Depends

from foodswap.dependencies import get_current_user
from foodswap.scheduler import ALL_JOBS

router = APIRouter()


@router.get("/scheduler/status", dependencies=[Depends(get_current_user)])
async def get_scheduler_status() -> Dict:
    """
    Get the status of all scheduled jobs.

    Returns job execution metrics including:
    - Execution count
    - Failure count
    - Last execution time
    - Last error (if any)
    - Last sweep result
    """
    job_statuses = [job.status() for job in ALL_JOBS]

    unhealthy_jobs = [j for j in job_statuses if j["health"] == "unhealthy"]
    overall_health = "unhealthy" if unhealthy_jobs else "healthy"

    return {
        "overall_health": overall_health,
        "jobs": job_statuses,
        "unhealthy_jobs": len(unhealthy_jobs),
        "total_jobs": len(job_statuses),
    }


@router.post("/scheduler/reset-metrics", dependencies=[Depends(get_current_user)])
async def reset_scheduler_metrics() -> Dict:
    """Reset scheduler metrics (execution counts, failure counts)."""
    for job in ALL_JOBS:
        job.reset_metrics()

    return {
        "status": "success",
        "message": "Scheduler metrics reset successfully",
    }
