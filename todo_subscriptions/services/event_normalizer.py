"""Maps processor webhook payloads onto the internal event taxonomy.

Unknown event types and events missing the correlation field their variant
requires come back as ``Unhandled``; they are logged and acknowledged, never
rejected, since the processor would only redeliver the same payload.
"""

from datetime import datetime
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from todo_subscriptions.logging_config import get_logger
from todo_subscriptions.models.events import (
    ChargeSucceeded,
    EventType,
    NormalizedEvent,
    PaymentFailed,
    PaystackEventData,
    SubscriptionCreated,
    SubscriptionDisabled,
    Unhandled,
)
from todo_subscriptions.utils.clock import ensure_utc

logger = get_logger(__name__)


def parse_processor_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp such as ``2024-04-12T07:00:00.000Z``.

    Returns None (and logs) for values that do not parse.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        logger.warning("unparseable_processor_datetime", value=value)
        return None


def _parse_data(event_type: str, data: Optional[Mapping[str, Any]]) -> PaystackEventData:
    try:
        return PaystackEventData.model_validate(dict(data or {}))
    except ValidationError as e:
        logger.warning(
            "webhook_data_invalid",
            event_type=event_type,
            error_count=e.error_count(),
        )
        return PaystackEventData()


def normalize(
    event_type: str,
    data: Optional[Mapping[str, Any]],
) -> Union[NormalizedEvent, Unhandled]:
    """Normalize one webhook event.

    Args:
        event_type: Processor event type (e.g. "charge.success")
        data: The webhook ``data`` object

    Returns:
        A normalized event, or Unhandled with the reason it was dropped
    """
    if event_type == EventType.CHARGE_SUCCESS:
        parsed = _parse_data(event_type, data)
        return ChargeSucceeded(
            user_id=parsed.user_id,
            customer_id=parsed.customer_identifier,
            authorization_code=parsed.authorization_code,
            reference=parsed.reference,
        )

    if event_type == EventType.SUBSCRIPTION_CREATE:
        parsed = _parse_data(event_type, data)
        if not parsed.customer_code:
            return _unattributable(event_type, "missing customer.customer_code")
        return SubscriptionCreated(
            customer_code=parsed.customer_code,
            next_payment_date=parse_processor_datetime(parsed.next_payment_date),
            authorization_code=parsed.authorization_code,
            subscription_code=parsed.subscription_code,
        )

    if event_type == EventType.SUBSCRIPTION_DISABLE:
        parsed = _parse_data(event_type, data)
        if not parsed.subscription_code:
            return _unattributable(event_type, "missing subscription_code")
        return SubscriptionDisabled(subscription_code=parsed.subscription_code)

    if event_type == EventType.INVOICE_PAYMENT_FAILED:
        parsed = _parse_data(event_type, data)
        if not parsed.customer_code:
            return _unattributable(event_type, "missing customer.customer_code")
        return PaymentFailed(customer_code=parsed.customer_code)

    logger.warning("webhook_event_unhandled", event_type=event_type)
    return Unhandled(event_type=event_type, reason="unknown event type")


def _unattributable(event_type: str, reason: str) -> Unhandled:
    logger.warning("webhook_event_unattributable", event_type=event_type, reason=reason)
    return Unhandled(event_type=event_type, reason=reason)
