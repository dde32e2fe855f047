"""FastAPI dependency providers.

Routes receive their collaborators through these functions so tests can swap
any of them with ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends

from todo_subscriptions.config import Settings, get_settings
from todo_subscriptions.repositories.subscription_store import (
    SubscriptionRepository,
    get_subscription_store,
)
from todo_subscriptions.services.payment_sessions import PaymentSessionService
from todo_subscriptions.services.paystack_client import PaystackClient, get_paystack_client
from todo_subscriptions.services.reconciler import Reconciler


def get_app_settings() -> Settings:
    return get_settings()


def get_store() -> SubscriptionRepository:
    return get_subscription_store()


def get_app_reconciler(
    settings: Settings = Depends(get_app_settings),
    store: SubscriptionRepository = Depends(get_store),
) -> Reconciler:
    return Reconciler(subscription_store=store, subscription_period=settings.subscription_period)


def get_processor_client(settings: Settings = Depends(get_app_settings)) -> Optional[PaystackClient]:
    """Shared processor client, or None when no secret key is configured.

    Operations that need the processor raise ConfigurationError themselves, so a
    missing key only fails the calls that actually reach the processor.
    """
    if not settings.paystack_secret_key:
        return None
    return get_paystack_client()


def get_payment_sessions(
    settings: Settings = Depends(get_app_settings),
    reconciler: Reconciler = Depends(get_app_reconciler),
    client: Optional[PaystackClient] = Depends(get_processor_client),
) -> PaymentSessionService:
    return PaymentSessionService(settings=settings, reconciler=reconciler, client=client)
