"""Applies verified payments and normalized processor events to subscription records.

Policy:
- A verified successful payment (verify-by-reference or charge.success) sets the
  user active for one plan period from the time it is applied. Its
  authorization code fills an empty subscription code but never replaces the
  recurring code a subscription.create stored. Applying the same
  payment twice re-derives the same state with a fresh window; charges are not
  de-duplicated because each distinct charge legitimately extends access.
- subscription.create activates the record correlated by customer code, until the
  processor's next payment date (or now when absent).
- subscription.disable deactivates every record holding the subscription code and
  clears the code.
- invoice.payment_failed deactivates the record correlated by customer code and
  keeps its correlation ids so a later successful retry still attributes.

Ordering is last-write-wins per record. Events carry no sequence guard, so a
stale event delivered late can flip state; the sweeper and the next successful
payment converge it again. A per-record ``last_event_at`` guard would slot in
here without changing callers.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from todo_subscriptions.logging_config import get_logger
from todo_subscriptions.models.events import (
    ChargeSucceeded,
    NormalizedEvent,
    PaymentFailed,
    SubscriptionCreated,
    SubscriptionDisabled,
    Unhandled,
)
from todo_subscriptions.models.subscription import MutationSource, SubscriptionRecord
from todo_subscriptions.repositories.subscription_store import (
    SubscriptionRepository,
    get_subscription_store,
)
from todo_subscriptions.utils.clock import ensure_utc, utc_now

logger = get_logger(__name__)

DEFAULT_SUBSCRIPTION_PERIOD = timedelta(days=30)


class Reconciler:
    """Reconciles local subscription state with processor facts.

    Args:
        subscription_store: Record storage (defaults to global instance)
        subscription_period: Access granted per successful payment
    """

    def __init__(
        self,
        subscription_store: Optional[SubscriptionRepository] = None,
        subscription_period: timedelta = DEFAULT_SUBSCRIPTION_PERIOD,
    ):
        self.store = (
            subscription_store if subscription_store is not None else get_subscription_store()
        )
        self.subscription_period = subscription_period

    def register_user(self, user_id: str) -> SubscriptionRecord:
        """Create the inactive record for a new user. Returns the existing record if present."""
        existing = self.store.find(user_id)
        if existing is not None:
            return existing
        try:
            record = self.store.create(user_id)
        except ValueError:
            # Created concurrently
            return self.store.get(user_id)
        logger.info("subscription_record_created", user_id=user_id)
        return record

    def apply_verified_payment(
        self,
        user_id: str,
        customer_id: Optional[str] = None,
        authorization_code: Optional[str] = None,
        source: MutationSource = MutationSource.VERIFY,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        """Grant access for a verified successful payment.

        Args:
            user_id: User the payment was tagged with at initialization
            customer_id: Processor customer identifier, stored when present
            authorization_code: Stored as the subscription code when the record has none
            source: Which path verified the payment
            now: Application time (defaults to now)

        Returns:
            The updated record
        """
        now = ensure_utc(now) if now is not None else utc_now()
        end_date = now + self.subscription_period

        # The user id comes from our own checkout metadata, so a missing record
        # is created rather than rejected.
        record = self.store.grant(
            user_id,
            end_date,
            source,
            customer_id=customer_id,
            create_missing=True,
            now=now,
            default_subscription_code=authorization_code,
        )

        logger.info(
            "subscription_activated",
            user_id=user_id,
            source=source.value,
            subscription_end_date=end_date.isoformat(),
        )
        return record

    def apply_event(
        self,
        event: Union[NormalizedEvent, Unhandled],
        now: Optional[datetime] = None,
    ) -> None:
        """Apply one normalized webhook event.

        Unattributable events are logged no-ops. Store errors propagate to the
        caller, which decides whether to surface them.
        """
        now = ensure_utc(now) if now is not None else utc_now()

        if isinstance(event, ChargeSucceeded):
            self._apply_charge_succeeded(event, now)
        elif isinstance(event, SubscriptionCreated):
            self._apply_subscription_created(event, now)
        elif isinstance(event, SubscriptionDisabled):
            self._apply_subscription_disabled(event, now)
        elif isinstance(event, PaymentFailed):
            self._apply_payment_failed(event, now)
        elif isinstance(event, Unhandled):
            logger.debug("event_ignored", event_type=event.event_type, reason=event.reason)
        else:
            raise TypeError(f"Unsupported event: {type(event).__name__}")

    def _apply_charge_succeeded(self, event: ChargeSucceeded, now: datetime) -> None:
        if not event.user_id:
            logger.warning(
                "charge_unattributable",
                reason="no userId in charge metadata",
                customer_id=event.customer_id,
                reference=event.reference,
            )
            return

        self.apply_verified_payment(
            event.user_id,
            customer_id=event.customer_id,
            authorization_code=event.authorization_code,
            source=MutationSource.WEBHOOK,
            now=now,
        )

    def _apply_subscription_created(self, event: SubscriptionCreated, now: datetime) -> None:
        end_date = event.next_payment_date or now
        record = self.store.activate_by_customer_id(
            event.customer_code,
            end_date,
            MutationSource.WEBHOOK,
            subscription_code=event.subscription_code or event.authorization_code,
            now=now,
        )
        if record is None:
            logger.warning("subscription_create_unmatched", customer_code=event.customer_code)
            return

        logger.info(
            "subscription_created",
            user_id=record.user_id,
            customer_code=event.customer_code,
            subscription_end_date=end_date.isoformat(),
        )

    def _apply_subscription_disabled(self, event: SubscriptionDisabled, now: datetime) -> None:
        affected = self.store.disable_by_subscription_code(
            event.subscription_code,
            MutationSource.WEBHOOK,
            now=now,
        )
        if affected == 0:
            logger.warning("subscription_disable_unmatched", subscription_code=event.subscription_code)
            return

        logger.info(
            "subscription_disabled",
            subscription_code=event.subscription_code,
            affected=affected,
        )

    def _apply_payment_failed(self, event: PaymentFailed, now: datetime) -> None:
        record = self.store.deactivate_by_customer_id(
            event.customer_code,
            MutationSource.WEBHOOK,
            now=now,
        )
        if record is None:
            logger.warning("payment_failed_unmatched", customer_code=event.customer_code)
            return

        logger.info(
            "subscription_deactivated_payment_failed",
            user_id=record.user_id,
            customer_code=event.customer_code,
        )


# Global reconciler instance
_reconciler_instance: Optional[Reconciler] = None


def get_reconciler() -> Reconciler:
    """Get global reconciler instance (singleton)."""
    global _reconciler_instance
    if _reconciler_instance is None:
        from todo_subscriptions.config import get_settings

        _reconciler_instance = Reconciler(subscription_period=get_settings().subscription_period)
    return _reconciler_instance


def reset_reconciler() -> None:
    """Drop the global reconciler instance."""
    global _reconciler_instance
    _reconciler_instance = None
