"""Pydantic models for configuration, records, events and API responses."""

# Configuration models
from .plan import (
    BillingFileConfig,
    PlanDefinition,
    ProcessorConfig,
    SweeperConfig,
)

# Subscription models
from .subscription import (
    MutationSource,
    SubscriptionRecord,
)

# Webhook and normalized event models
from .events import (
    ChargeSucceeded,
    EventType,
    NormalizedEvent,
    PaymentFailed,
    PaystackEventData,
    SubscriptionCreated,
    SubscriptionDisabled,
    Unhandled,
    WebhookEnvelope,
)

# API response models
from .api_response import (
    CancelSubscriptionResponse,
    InitializePaymentResponse,
    SubscriptionStatusResponse,
    VerifyPaymentResponse,
    WebhookAck,
)

__all__ = [
    # Configuration
    "BillingFileConfig",
    "PlanDefinition",
    "ProcessorConfig",
    "SweeperConfig",
    # Subscription
    "MutationSource",
    "SubscriptionRecord",
    # Events
    "EventType",
    "PaystackEventData",
    "WebhookEnvelope",
    "ChargeSucceeded",
    "SubscriptionCreated",
    "SubscriptionDisabled",
    "PaymentFailed",
    "Unhandled",
    "NormalizedEvent",
    # API responses
    "InitializePaymentResponse",
    "VerifyPaymentResponse",
    "SubscriptionStatusResponse",
    "CancelSubscriptionResponse",
    "WebhookAck",
]
