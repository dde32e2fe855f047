"""Expiry sweeper - demotes records whose paid period has lapsed.

Runs once a day at 00:00 UTC on a daemon thread started from the application
lifespan. Each sweep is a single bulk predicate update, so a sweep that is
interrupted or repeated converges to the same state.
"""

import threading
from datetime import datetime, timedelta
from typing import Optional

from todo_subscriptions.logging_config import get_logger
from todo_subscriptions.repositories.subscription_store import (
    SubscriptionRepository,
    get_subscription_store,
)
from todo_subscriptions.utils.clock import ensure_utc, utc_now

logger = get_logger(__name__)


class ExpirySweeper:
    """Periodic demotion of lapsed subscriptions.

    Args:
        subscription_store: Record storage (defaults to global instance)
    """

    def __init__(self, subscription_store: Optional[SubscriptionRepository] = None):
        self.store = (
            subscription_store if subscription_store is not None else get_subscription_store()
        )
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Set is_subscribed to False on every record whose end date is before ``now``.

        Returns:
            Number of records demoted
        """
        now = ensure_utc(now) if now is not None else utc_now()
        expired = self.store.expire_lapsed(now)
        logger.info("expiry_sweep_completed", expired=expired, cutoff=now.isoformat())
        return expired

    @staticmethod
    def seconds_until_next_run(now: Optional[datetime] = None) -> float:
        """Seconds from ``now`` until the next 00:00 UTC."""
        now = ensure_utc(now) if now is not None else utc_now()
        next_midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return (next_midnight - now).total_seconds()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the daily schedule. Calling start on a running sweeper is a no-op."""
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info("expiry_sweeper_started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the schedule and wait for the worker thread to exit."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("expiry_sweeper_stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.seconds_until_next_run()):
            try:
                self.sweep()
            except Exception as e:
                # Keep the schedule alive; the next run retries the same predicate
                logger.error(
                    "expiry_sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
