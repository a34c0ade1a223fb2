"""
Scheduler Package

Periodic swap maintenance jobs with monitoring and error handling.
"""

from foodswap.scheduler.jobs import (
    ALL_JOBS,
    chat_reaper_job,
    reconciliation_job,
)

__all__ = [
    "ALL_JOBS",
    "chat_reaper_job",
    "reconciliation_job",
]
