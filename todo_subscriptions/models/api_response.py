"""API response models for the subscription endpoints.

Field names are camelCase to match the JSON contract the todo clients consume.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class InitializePaymentResponse(BaseModel):
    """Response for POST /subscriptions/initialize."""

    redirectUrl: str = Field(..., description="Processor checkout URL to send the user to")
    accessCode: str = Field(..., description="Processor access code for inline checkout")
    reference: str = Field(..., description="Transaction reference to verify later")

    class Config:
        json_schema_extra = {
            "example": {
                "redirectUrl": "https://checkout.paystack.com/abc123xyz",
                "accessCode": "abc123xyz",
                "reference": "ref_12345678",
            }
        }


class VerifyPaymentResponse(BaseModel):
    """Response for GET /subscriptions/verify."""

    status: str = Field(..., description="Processor transaction status")
    message: str = Field(..., description="Human-readable result")
    subscriptionEndDate: Optional[datetime] = Field(None, description="New end of the access period")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "success",
                "message": "Subscription activated successfully",
                "subscriptionEndDate": "2025-01-24T10:00:00Z",
            }
        }


class SubscriptionStatusResponse(BaseModel):
    """Response for GET /subscriptions/status."""

    isSubscribed: bool = Field(..., description="Stored access flag")
    subscriptionEndDate: Optional[datetime] = Field(None, description="Stored end of access period")
    isActive: bool = Field(..., description="isSubscribed and end date absent or in the future")

    class Config:
        json_schema_extra = {
            "example": {
                "isSubscribed": True,
                "subscriptionEndDate": "2025-01-24T10:00:00Z",
                "isActive": True,
            }
        }


class CancelSubscriptionResponse(BaseModel):
    """Response for DELETE /subscriptions/cancel."""

    message: str = Field(..., description="Confirmation message")

    class Config:
        json_schema_extra = {"example": {"message": "Subscription cancelled successfully"}}


class WebhookAck(BaseModel):
    """Acknowledgement returned to the processor for every accepted webhook."""

    status: str = Field(default="success")

