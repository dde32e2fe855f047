"""Subscription record model.

One record per user, holding the current paid-access grant and the
processor correlation identifiers.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from todo_subscriptions.utils.clock import ensure_utc, utc_now


class MutationSource(str, Enum):
    """Where a change to a subscription record came from."""

    VERIFY = "verify"  # Client-driven verify-by-reference
    WEBHOOK = "webhook"  # Processor event
    SWEEPER = "sweeper"  # Daily expiry sweep
    CANCEL = "cancel"  # User-requested cancellation


class SubscriptionRecord(BaseModel):
    """Per-user subscription state."""

    user_id: str = Field(..., description="Owning user identifier")
    is_subscribed: bool = Field(default=False, description="Current access grant")
    subscription_end_date: Optional[datetime] = Field(
        None, description="When the current grant lapses absent renewal (null = until disabled)"
    )
    processor_customer_id: Optional[str] = Field(None, description="Processor customer code")
    processor_subscription_code: Optional[str] = Field(
        None, description="Processor recurring-billing code, used by disable events"
    )

    # Attribution
    updated_at: datetime = Field(default_factory=utc_now, description="Last mutation time")
    last_mutation_source: Optional[MutationSource] = Field(
        None, description="Source of the last mutation (None until first change)"
    )

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Whether the record grants access at ``now``.

        Active means subscribed and either no end date or an end date strictly
        in the future. Stored flags are not corrected here; that is the sweeper's job.
        """
        if not self.is_subscribed:
            return False
        if self.subscription_end_date is None:
            return True
        now = ensure_utc(now) if now is not None else utc_now()
        return now < ensure_utc(self.subscription_end_date)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "550e8400-e29b-41d4-a716-446655440000",
                "is_subscribed": True,
                "subscription_end_date": "2025-01-24T10:00:00+00:00",
                "processor_customer_id": "CUS_xnxdt6s1zg1f4nx",
                "processor_subscription_code": "SUB_vsyqdmlzble3uii",
                "updated_at": "2024-12-25T10:00:00+00:00",
                "last_mutation_source": "webhook",
            }
        }
