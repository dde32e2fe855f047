"""Utility functions and helpers."""

from todo_subscriptions.utils.billing_period import (
    billing_period_to_timedelta,
    parse_billing_period,
    validate_billing_period,
)
from todo_subscriptions.utils.clock import ensure_utc, utc_now

__all__ = [
    "parse_billing_period",
    "billing_period_to_timedelta",
    "validate_billing_period",
    "utc_now",
    "ensure_utc",
]
