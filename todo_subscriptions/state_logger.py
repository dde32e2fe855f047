"""State change logging for subscription records.

Every mutation is logged with its source (verify, webhook, sweeper, cancel)
and before/after values, so a record's history can be reconstructed from logs.
"""

from datetime import datetime
from typing import Any, Optional

from todo_subscriptions.logging_config import get_logger

logger = get_logger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def log_subscription_change(
    user_id: str,
    source: Any,
    old_subscribed: Optional[bool],
    new_subscribed: bool,
    old_end_date: Optional[datetime] = None,
    new_end_date: Optional[datetime] = None,
    **extra_context: Any,
) -> None:
    """Log a change to a single subscription record.

    Args:
        user_id: Owning user
        source: MutationSource of the change
        old_subscribed: Access flag before the change (None for a new record)
        new_subscribed: Access flag after the change
        old_end_date: End date before the change
        new_end_date: End date after the change
        **extra_context: Additional context (customer id, subscription code, reason)
    """
    logger.info(
        "subscription_state_changed",
        user_id=user_id,
        source=str(getattr(source, "value", source)),
        old_subscribed=old_subscribed,
        new_subscribed=new_subscribed,
        old_end_date=_iso(old_end_date),
        new_end_date=_iso(new_end_date),
        **extra_context,
    )


def log_bulk_change(
    operation: str,
    source: Any,
    affected: int,
    **extra_context: Any,
) -> None:
    """Log a bulk predicate update (disable-by-code, expiry sweep).

    Args:
        operation: Name of the bulk operation
        source: MutationSource of the change
        affected: Number of records changed
        **extra_context: Additional context (predicate values)
    """
    logger.info(
        "subscriptions_bulk_updated",
        operation=operation,
        source=str(getattr(source, "value", source)),
        affected=affected,
        **extra_context,
    )
