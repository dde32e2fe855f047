"""Subscription API - checkout, verification, status, cancellation and webhooks.

Implements:
- POST /subscriptions/initialize - Open a checkout session for the paid plan
- GET /subscriptions/verify - Verify a checkout session by reference
- GET /subscriptions/status - Current subscription status
- DELETE /subscriptions/cancel - Cancel the recurring plan
- POST /subscriptions/webhook - Processor event intake (signed, unauthenticated)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from todo_subscriptions.auth import CurrentUser, get_current_user
from todo_subscriptions.config import ConfigurationError, Settings
from todo_subscriptions.dependencies import get_app_reconciler, get_app_settings, get_payment_sessions
from todo_subscriptions.logging_config import bound_context, get_logger
from todo_subscriptions.models import (
    CancelSubscriptionResponse,
    InitializePaymentResponse,
    SubscriptionStatusResponse,
    VerifyPaymentResponse,
    WebhookAck,
    WebhookEnvelope,
)
from todo_subscriptions.repositories.subscription_store import SubscriptionNotFoundError
from todo_subscriptions.services.event_normalizer import normalize
from todo_subscriptions.services.payment_sessions import (
    PaymentSessionService,
    PaymentVerificationError,
)
from todo_subscriptions.services.paystack_client import PaystackError
from todo_subscriptions.services.reconciler import Reconciler
from todo_subscriptions.services.signature import (
    SIGNATURE_HEADER,
    InvalidSignatureError,
    require_valid_signature,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Subscriptions"], prefix="/subscriptions")


def _configuration_error(e: ConfigurationError) -> HTTPException:
    logger.error("configuration_error", error=str(e))
    return HTTPException(status_code=400, detail={"error": "Configuration error", "message": str(e)})


def _upstream_error(e: PaystackError) -> HTTPException:
    logger.error(
        "payment_processor_error",
        error=str(e),
        status_code=e.status_code,
        endpoint=e.endpoint,
    )
    return HTTPException(
        status_code=502,
        detail={"error": "Upstream error", "message": "Payment processor request failed"},
    )


def _not_found(user_id: str) -> HTTPException:
    logger.warning("subscription_not_found", user_id=user_id)
    return HTTPException(
        status_code=404,
        detail={"error": "Subscription not found", "message": "No subscription record for this user"},
    )


@router.post(
    "/initialize",
    response_model=InitializePaymentResponse,
    status_code=201,
    summary="Initialize subscription payment",
)
def initialize_payment(
    user: CurrentUser = Depends(get_current_user),
    sessions: PaymentSessionService = Depends(get_payment_sessions),
) -> InitializePaymentResponse:
    """Open a checkout session for the paid plan.

    Raises:
        400: Missing configuration or no email on the caller's token
        401: Unauthorized
        502: Payment processor failure
    """
    logger.info("initialize_payment_request", user_id=user.user_id)

    if not user.email:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid request", "message": "An email address is required for checkout"},
        )

    try:
        session = sessions.initialize(user.user_id, user.email)
    except ConfigurationError as e:
        raise _configuration_error(e)
    except PaystackError as e:
        raise _upstream_error(e)

    return InitializePaymentResponse(
        redirectUrl=session.redirect_url,
        accessCode=session.access_code,
        reference=session.reference,
    )


@router.get(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify payment by reference",
)
def verify_payment(
    reference: str = Query(..., min_length=1, description="Transaction reference from initialize"),
    user: CurrentUser = Depends(get_current_user),
    sessions: PaymentSessionService = Depends(get_payment_sessions),
) -> VerifyPaymentResponse:
    """Ask the processor about a checkout session and grant access if it succeeded.

    Raises:
        400: Payment not successful, not attributable, or missing configuration
        401: Unauthorized
        502: Payment processor failure
    """
    logger.info("verify_payment_request", user_id=user.user_id, reference=reference)

    try:
        result = sessions.verify_by_reference(reference, expected_user_id=user.user_id)
    except ConfigurationError as e:
        raise _configuration_error(e)
    except PaystackError as e:
        raise _upstream_error(e)
    except PaymentVerificationError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Payment verification failed", "message": str(e)},
        )

    return VerifyPaymentResponse(
        status=result.status,
        message="Subscription activated successfully",
        subscriptionEndDate=result.subscription_end_date,
    )


@router.get(
    "/status",
    response_model=SubscriptionStatusResponse,
    summary="Get subscription status",
)
def get_status(
    user: CurrentUser = Depends(get_current_user),
    sessions: PaymentSessionService = Depends(get_payment_sessions),
) -> SubscriptionStatusResponse:
    try:
        status = sessions.get_status(user.user_id)
    except SubscriptionNotFoundError:
        raise _not_found(user.user_id)

    return SubscriptionStatusResponse(
        isSubscribed=status.is_subscribed,
        subscriptionEndDate=status.subscription_end_date,
        isActive=status.is_active,
    )


@router.delete(
    "/cancel",
    response_model=CancelSubscriptionResponse,
    summary="Cancel subscription",
)
def cancel_subscription(
    user: CurrentUser = Depends(get_current_user),
    sessions: PaymentSessionService = Depends(get_payment_sessions),
) -> CancelSubscriptionResponse:
    """Disable the recurring plan with the processor, then revoke local access.

    If the processor call fails nothing changes locally and 502 is returned.

    Raises:
        400: Missing configuration
        401: Unauthorized
        404: No subscription record
        502: Payment processor failure
    """
    logger.info("cancel_subscription_request", user_id=user.user_id)

    try:
        message = sessions.cancel(user.user_id)
    except SubscriptionNotFoundError:
        raise _not_found(user.user_id)
    except ConfigurationError as e:
        raise _configuration_error(e)
    except PaystackError as e:
        raise _upstream_error(e)

    return CancelSubscriptionResponse(message=message)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=200,
    summary="Processor webhook",
)
async def handle_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    settings: Settings = Depends(get_app_settings),
    reconciler: Reconciler = Depends(get_app_reconciler),
) -> WebhookAck:
    """Receive a signed processor event.

    The signature is checked against the raw body before anything is parsed.
    Once the signature and envelope are valid the event is acknowledged with
    200 even if applying it fails; failures are logged with the event context.

    Raises:
        400: Missing or invalid signature, missing signing secret, or a body
             that is not a JSON object with an ``event`` field
    """
    payload = await request.body()

    try:
        secret = settings.require_webhook_secret()
    except ConfigurationError as e:
        raise _configuration_error(e)

    try:
        require_valid_signature(payload, signature, secret)
    except InvalidSignatureError as e:
        logger.warning("webhook_signature_rejected", reason=str(e), body_bytes=len(payload))
        raise HTTPException(status_code=400, detail={"error": "Invalid signature", "message": str(e)})

    try:
        envelope = WebhookEnvelope.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("webhook_payload_invalid", error_count=e.error_count())
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid payload", "message": "Webhook body must be a JSON object with an event"},
        )

    reference = envelope.data.get("reference")
    with bound_context(webhook_event=envelope.event, reference=reference):
        logger.info("webhook_received")
        try:
            event = normalize(envelope.event, envelope.data)
            await run_in_threadpool(reconciler.apply_event, event)
        except Exception as e:
            logger.error(
                "webhook_processing_failed",
                data_keys=sorted(envelope.data),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    return WebhookAck()
