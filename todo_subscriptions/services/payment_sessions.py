"""Client-initiated payment flows.

Responsibilities:
- Open a checkout session for the paid plan, tagged with the user id
- Verify a session by reference and grant access on success
- Cancel the recurring plan upstream, then demote the local record
- Report subscription status
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from todo_subscriptions.config import Settings
from todo_subscriptions.logging_config import get_logger
from todo_subscriptions.models.events import PaystackEventData
from todo_subscriptions.models.subscription import MutationSource
from todo_subscriptions.repositories.subscription_store import SubscriptionRepository
from todo_subscriptions.services.paystack_client import (
    PaystackClient,
    PaystackError,
    get_paystack_client,
)
from todo_subscriptions.services.reconciler import Reconciler
from todo_subscriptions.utils.clock import ensure_utc, utc_now

logger = get_logger(__name__)

SUCCESS_STATUS = "success"

# Only recurring-plan codes can be disabled upstream; a stored authorization
# code (AUTH_...) has no processor subscription behind it.
SUBSCRIPTION_CODE_PREFIX = "SUB_"


class PaymentVerificationError(Exception):
    """The referenced payment did not succeed or cannot be attributed."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class PaymentSession(BaseModel):
    """A checkout session opened with the processor."""

    redirect_url: str
    access_code: str
    reference: str


class VerificationResult(BaseModel):
    """Outcome of a successful verify-by-reference."""

    status: str
    user_id: str
    subscription_end_date: Optional[datetime] = None


class SubscriptionStatus(BaseModel):
    """Read-only view of a user's access."""

    is_subscribed: bool
    subscription_end_date: Optional[datetime] = None
    is_active: bool = Field(..., description="is_subscribed and end date absent or in the future")


class PaymentSessionService:
    """Synchronous payment flows on top of the processor client and the reconciler.

    Args:
        settings: Process-wide settings
        reconciler: Applies verified payments to the store
        client: Processor client; resolved lazily from settings when omitted
    """

    def __init__(
        self,
        settings: Settings,
        reconciler: Reconciler,
        client: Optional[PaystackClient] = None,
    ):
        self.settings = settings
        self.reconciler = reconciler
        self._client = client

    @property
    def store(self) -> SubscriptionRepository:
        return self.reconciler.store

    def _get_client(self) -> PaystackClient:
        # The secret key is required even when a client was injected
        self.settings.require_secret_key()
        if self._client is None:
            self._client = get_paystack_client()
        return self._client

    def initialize(self, user_id: str, email: str) -> PaymentSession:
        """Open a checkout session for the paid plan.

        Args:
            user_id: Authenticated user; stored in session metadata for attribution
            email: Payer email required by the processor

        Returns:
            PaymentSession with redirect URL, access code and reference

        Raises:
            ConfigurationError: If the secret key or plan code is missing
            PaystackError: If the processor call fails
        """
        plan_code = self.settings.require_plan_code()
        client = self._get_client()

        data = client.initialize_transaction(
            email=email,
            amount=self.settings.plan.amount,
            plan_code=plan_code,
            metadata={"userId": user_id},
            callback_url=self.settings.plan.callback_url,
            currency=self.settings.plan.currency,
        )

        redirect_url = data.get("authorization_url")
        access_code = data.get("access_code")
        reference = data.get("reference")
        if not (redirect_url and access_code and reference):
            logger.error("payment_initialize_incomplete", user_id=user_id, keys=sorted(data))
            raise PaystackError(
                "Payment processor returned an incomplete session",
                endpoint="transaction/initialize",
            )

        logger.info("payment_initialized", user_id=user_id, reference=reference)
        return PaymentSession(redirect_url=redirect_url, access_code=access_code, reference=reference)

    def verify_by_reference(
        self,
        reference: str,
        expected_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        """Check a prior session with the processor and grant access on success.

        Args:
            reference: Transaction reference returned by initialize
            expected_user_id: When given, the session must belong to this user
            now: Application time (defaults to now)

        Returns:
            VerificationResult with the new end date

        Raises:
            ConfigurationError: If the secret key is missing
            PaystackError: If the processor call fails
            PaymentVerificationError: If the payment did not succeed or has no owner
        """
        if not reference or not reference.strip():
            raise PaymentVerificationError("Payment reference is required")

        client = self._get_client()
        data = client.verify_transaction(reference.strip())

        status = data.get("status") if isinstance(data.get("status"), str) else None
        if status != SUCCESS_STATUS:
            logger.warning("payment_verification_failed", reference=reference, status=status)
            raise PaymentVerificationError("Payment verification failed", status=status)

        try:
            parsed = PaystackEventData.model_validate(data)
        except ValidationError:
            parsed = PaystackEventData()

        if not parsed.user_id:
            logger.warning("payment_verification_unattributable", reference=reference)
            raise PaymentVerificationError("Payment cannot be attributed to a user", status=status)

        if expected_user_id is not None and parsed.user_id != expected_user_id:
            logger.warning(
                "payment_verification_user_mismatch",
                reference=reference,
                expected_user_id=expected_user_id,
                session_user_id=parsed.user_id,
            )
            raise PaymentVerificationError("Payment does not belong to this user", status=status)

        record = self.reconciler.apply_verified_payment(
            parsed.user_id,
            customer_id=parsed.customer_identifier,
            authorization_code=parsed.authorization_code,
            source=MutationSource.VERIFY,
            now=now,
        )
        return VerificationResult(
            status=SUCCESS_STATUS,
            user_id=record.user_id,
            subscription_end_date=record.subscription_end_date,
        )

    def cancel(self, user_id: str, now: Optional[datetime] = None) -> str:
        """Cancel the user's plan.

        Two explicit steps: the processor is asked to disable the recurring plan
        first, and only after it confirms is the local record demoted. If the
        processor call fails the local record is left untouched and the error
        surfaces, so the user can retry. Records without a subscription code, or
        holding only an authorization code, are demoted locally with no upstream
        call.

        Raises:
            SubscriptionNotFoundError: If the user has no record
            ConfigurationError: If an upstream call is needed and the secret key is missing
            PaystackError: If the processor refuses or fails
        """
        record = self.store.get(user_id)
        code = record.processor_subscription_code

        if code and code.startswith(SUBSCRIPTION_CODE_PREFIX):
            client = self._get_client()
            client.disable_subscription(
                code,
                token=record.processor_customer_id,
            )
            logger.info(
                "processor_subscription_disabled",
                user_id=user_id,
                subscription_code=code,
            )
        elif code:
            logger.info("processor_disable_skipped", user_id=user_id, subscription_code=code)

        self.store.deactivate(
            user_id,
            MutationSource.CANCEL,
            clear_subscription_code=True,
            now=now,
        )
        logger.info("subscription_cancelled", user_id=user_id)
        return "Subscription cancelled successfully"

    def get_status(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionStatus:
        """Current access for a user.

        Raises:
            SubscriptionNotFoundError: If the user has no record
        """
        record = self.store.get(user_id)
        now = ensure_utc(now) if now is not None else utc_now()
        return SubscriptionStatus(
            is_subscribed=record.is_subscribed,
            subscription_end_date=record.subscription_end_date,
            is_active=record.is_active(now),
        )
