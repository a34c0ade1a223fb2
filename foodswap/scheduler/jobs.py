"""
Scheduled Jobs for the FoodSwap Backend

Job implementations with:
- Error handling and logging
- Job status tracking
- Alerting on repeated failures
"""

import logging
from typing import Any, Dict, Optional

from foodswap.database import get_redis, get_store
from foodswap.services.chat_service import ChatService
from foodswap.services.expiry_reaper import ExpiryReaper
from foodswap.services.food_service import FoodService
from foodswap.services.identity import SYSTEM_USER, StaticIdentity
from foodswap.services.redis_service import RedisService
from foodswap.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

# Consecutive failures before a job is reported unhealthy
FAILURE_ALERT_THRESHOLD = 3


def build_reaper() -> ExpiryReaper:
    """Wire an ExpiryReaper to the live store, acting as the system user."""
    store = get_store()
    identity = StaticIdentity(SYSTEM_USER)
    client = get_redis()

    return ExpiryReaper(
        store,
        ChatService(store, identity),
        FoodService(store, identity),
        RedisService(client) if client else None,
    )


class ScheduledJob:
    """Base class for scheduled jobs with error handling and logging."""

    def __init__(self, name: str):
        self.name = name
        self.execution_count = 0
        self.failure_count = 0
        self.consecutive_failures = 0
        self.last_execution = None
        self.last_error = None
        self.last_result: Optional[Dict[str, Any]] = None

    async def execute(self):
        """Execute the job with error handling and metrics."""
        self.execution_count += 1
        start_time = utc_now()

        try:
            logger.info(f"[{self.name}] Starting execution #{self.execution_count}")
            self.last_result = await self._run()
            self.last_execution = utc_now()
            self.consecutive_failures = 0
            duration = (self.last_execution - start_time).total_seconds()
            logger.info(f"[{self.name}] Completed successfully in {duration:.2f}s")

        except Exception as e:
            # Scheduler threads must survive any job error
            self.failure_count += 1
            self.consecutive_failures += 1
            self.last_error = str(e)
            logger.error(f"[{self.name}] Failed: {e}", exc_info=True)

            if self.consecutive_failures >= FAILURE_ALERT_THRESHOLD:
                self._alert_failure(e)

    async def _run(self) -> Optional[Dict[str, Any]]:
        """Override this method in subclasses."""
        raise NotImplementedError

    def _alert_failure(self, error: Exception):
        logger.critical(
            f"[{self.name}] CRITICAL: Failed {self.consecutive_failures} times in a row. "
            f"Last error: {error}"
        )

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures < FAILURE_ALERT_THRESHOLD

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "last_execution": (
                self.last_execution.isoformat() if self.last_execution else None
            ),
            "last_error": self.last_error,
            "last_result": self.last_result,
            "health": "healthy" if self.healthy else "unhealthy",
        }

    def reset_metrics(self):
        self.execution_count = 0
        self.failure_count = 0
        self.consecutive_failures = 0
        self.last_error = None


class ChatReaperJob(ScheduledJob):
    """
    Delete chat rooms of completed swaps past their retention window.

    Frequency: every ``reaper_interval_minutes`` (5)
    """

    def __init__(self):
        super().__init__("ChatReaper")

    async def _run(self):
        return await build_reaper().cleanup_expired_chats()


class ReconciliationJob(ScheduledJob):
    """
    Repair food item statuses left behind by partially failed swaps.

    Frequency: every ``reconcile_interval_minutes`` (30)
    """

    def __init__(self):
        super().__init__("FoodReconciliation")

    async def _run(self):
        return await build_reaper().reconcile_food_items()


# Job instances
chat_reaper_job = ChatReaperJob()
reconciliation_job = ReconciliationJob()

ALL_JOBS = (chat_reaper_job, reconciliation_job)
