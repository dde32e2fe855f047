"""Processor webhook payloads and the internal normalized event taxonomy.

The wire models mirror the Paystack webhook ``data`` object. Every field is
optional at the wire boundary and unexpected shapes are dropped rather than
rejected, so a malformed payload degrades into an unattributable event.

The normalized events are what the reconciler consumes; they carry only the
correlation data each variant needs.
"""

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class EventType:
    """Processor event type strings that the service understands."""

    CHARGE_SUCCESS = "charge.success"
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_DISABLE = "subscription.disable"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def _mapping_or_none(value: Any) -> Any:
    # Paystack sends metadata as "" when none was attached
    return value if isinstance(value, dict) else None


class _WireModel(BaseModel):
    class Config:
        extra = "allow"


class PaystackMetadata(_WireModel):
    """Opaque metadata attached at initialization time."""

    user_id: Optional[Union[str, int]] = Field(None, alias="userId")


class PaystackCustomer(_WireModel):
    id: Optional[Union[int, str]] = None
    customer_code: Optional[str] = None
    email: Optional[str] = None


class PaystackAuthorization(_WireModel):
    authorization_code: Optional[str] = None


class PaystackSubscriptionRef(_WireModel):
    subscription_code: Optional[str] = None


class PaystackEventData(_WireModel):
    """The ``data`` object of a processor webhook."""

    reference: Optional[str] = None
    status: Optional[str] = None
    metadata: Optional[PaystackMetadata] = None
    customer: Optional[PaystackCustomer] = None
    authorization: Optional[PaystackAuthorization] = None
    subscription: Optional[PaystackSubscriptionRef] = None
    subscription_code: Optional[str] = None
    next_payment_date: Optional[str] = None

    @field_validator("metadata", "customer", "authorization", "subscription", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        return _mapping_or_none(value)

    @field_validator("reference", "status", "subscription_code", "next_payment_date", mode="before")
    @classmethod
    def _drop_non_strings(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @property
    def user_id(self) -> Optional[str]:
        if self.metadata is None or self.metadata.user_id in (None, ""):
            return None
        return str(self.metadata.user_id)

    @property
    def customer_code(self) -> Optional[str]:
        if self.customer is None:
            return None
        return self.customer.customer_code or None

    @property
    def customer_identifier(self) -> Optional[str]:
        """Customer code when present, otherwise the numeric customer id."""
        if self.customer is None:
            return None
        if self.customer.customer_code:
            return self.customer.customer_code
        if self.customer.id is not None:
            return str(self.customer.id)
        return None

    @property
    def authorization_code(self) -> Optional[str]:
        if self.authorization is None:
            return None
        return self.authorization.authorization_code or None


class WebhookEnvelope(BaseModel):
    """Top-level webhook body: ``{"event": ..., "data": {...}}``."""

    event: str = Field(..., min_length=1, description="Processor event type")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")

    @field_validator("data", mode="before")
    @classmethod
    def _data_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    class Config:
        json_schema_extra = {
            "example": {
                "event": "charge.success",
                "data": {
                    "reference": "ref_12345678",
                    "metadata": {"userId": "550e8400-e29b-41d4-a716-446655440000"},
                    "customer": {"id": 123, "customer_code": "CUS_xxx"},
                    "authorization": {"authorization_code": "AUTH_xxx"},
                },
            }
        }


# Normalized events


class ChargeSucceeded(BaseModel):
    """A payment went through; the authoritative activation path."""

    kind: Literal["charge_succeeded"] = "charge_succeeded"
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    authorization_code: Optional[str] = None
    reference: Optional[str] = None

    class Config:
        frozen = True


class SubscriptionCreated(BaseModel):
    """The processor opened a recurring subscription for a known customer."""

    kind: Literal["subscription_created"] = "subscription_created"
    customer_code: str
    next_payment_date: Optional[datetime] = None
    authorization_code: Optional[str] = None
    subscription_code: Optional[str] = None

    class Config:
        frozen = True


class SubscriptionDisabled(BaseModel):
    """The recurring subscription identified by ``subscription_code`` ended."""

    kind: Literal["subscription_disabled"] = "subscription_disabled"
    subscription_code: str

    class Config:
        frozen = True


class PaymentFailed(BaseModel):
    """A recurring charge for the customer failed."""

    kind: Literal["payment_failed"] = "payment_failed"
    customer_code: str

    class Config:
        frozen = True


class Unhandled(BaseModel):
    """An event that is ignored: unknown type or missing required correlation data."""

    kind: Literal["unhandled"] = "unhandled"
    event_type: str
    reason: str

    class Config:
        frozen = True


NormalizedEvent = Union[ChargeSucceeded, SubscriptionCreated, SubscriptionDisabled, PaymentFailed]
