"""Plan and processor settings models.

Models from billing.yaml configuration.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from todo_subscriptions.utils.billing_period import validate_billing_period


class PlanDefinition(BaseModel):
    """The single paid plan offered to users."""

    name: str = Field(default="Premium Monthly", description="Human-readable plan name")
    amount: int = Field(default=500000, gt=0, description="Price in minor units (kobo)")
    currency: str = Field(default="NGN", description="ISO 4217 currency code")
    period: str = Field(default="P30D", description="ISO 8601 access period granted per payment")
    callback_url: Optional[str] = Field(None, description="Where the processor redirects after checkout")

    @field_validator("period")
    @classmethod
    def _check_period(cls, value: str) -> str:
        if not validate_billing_period(value):
            raise ValueError(f"Invalid billing period: {value}")
        return value

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "name": "Premium Monthly",
                "amount": 500000,
                "currency": "NGN",
                "period": "P30D",
                "callback_url": "https://app.example.com/billing/callback",
            }
        }


class ProcessorConfig(BaseModel):
    """Outbound processor API settings."""

    base_url: str = Field(default="https://api.paystack.co", description="Processor API base URL")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")

    class Config:
        frozen = True


class SweeperConfig(BaseModel):
    """Expiry sweeper settings. The schedule itself is fixed at daily, 00:00 UTC."""

    enabled: bool = Field(default=True, description="Run the daily expiry sweep in-process")

    class Config:
        frozen = True


class BillingFileConfig(BaseModel):
    """Complete billing.yaml configuration."""

    plan: PlanDefinition = Field(default_factory=PlanDefinition)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)

    class Config:
        frozen = True
