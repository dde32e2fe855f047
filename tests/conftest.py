"""Shared fixtures: settings, stores and a scripted Paystack API."""

import json
from typing import Any, Optional

import httpx
import pytest

from todo_subscriptions.config import Settings
from todo_subscriptions.repositories.sql_subscription_store import SqlSubscriptionStore
from todo_subscriptions.repositories.subscription_store import SubscriptionStore
from todo_subscriptions.services.paystack_client import PaystackClient
from todo_subscriptions.services.reconciler import Reconciler

SECRET_KEY = "sk_test_4f1c2a9d"
PLAN_CODE = "PLN_gx2wn530m0i3w3m"
JWT_SECRET = "jwt-test-secret"


class FakePaystack:
    """In-process stand-in for the Paystack API, served through httpx.MockTransport.

    Transactions opened through /transaction/initialize are pending until a test
    settles them with ``complete`` (or ``fail``).
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.transactions: dict[str, dict[str, Any]] = {}
        self.disabled_codes: list[str] = []
        self.fail_with: Optional[int] = None  # HTTP status to answer every call with
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> PaystackClient:
        return PaystackClient(secret_key=SECRET_KEY, transport=self.transport)

    def complete(
        self,
        reference: str,
        customer_code: str = "CUS_test001",
        authorization_code: str = "AUTH_test001",
    ) -> None:
        txn = self.transactions[reference]
        txn["status"] = "success"
        txn["customer"] = {"id": 9001, "customer_code": customer_code, "email": txn["email"]}
        txn["authorization"] = {"authorization_code": authorization_code}

    def fail(self, reference: str) -> None:
        self.transactions[reference]["status"] = "failed"

    def add_transaction(self, reference: str, user_id: Optional[str], status: str = "success", **extra: Any) -> None:
        metadata = {"userId": user_id} if user_id is not None else {}
        self.transactions[reference] = {
            "reference": reference,
            "status": status,
            "email": "user@example.com",
            "metadata": metadata,
            **extra,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"status": False, "message": "Processor unavailable"})

        path = request.url.path
        if request.method == "POST" and path == "/transaction/initialize":
            body = json.loads(request.content)
            self._counter += 1
            reference = f"ref_{self._counter:04d}"
            self.transactions[reference] = {
                "reference": reference,
                "status": "abandoned",
                "email": body["email"],
                "amount": body["amount"],
                "plan": body["plan"],
                "metadata": body["metadata"],
            }
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{reference}",
                        "access_code": f"access_{reference}",
                        "reference": reference,
                    },
                },
            )

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            txn = self.transactions.get(reference)
            if txn is None:
                return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": txn})

        if request.method == "POST" and path == "/subscription/disable":
            body = json.loads(request.content)
            self.disabled_codes.append(body["code"])
            return httpx.Response(200, json={"status": True, "message": "Subscription disabled successfully"})

        return httpx.Response(404, json={"status": False, "message": "Not found"})


@pytest.fixture
def settings() -> Settings:
    """Fully configured settings."""
    return Settings(
        paystack_secret_key=SECRET_KEY,
        paystack_plan_code=PLAN_CODE,
        webhook_secret=SECRET_KEY,
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def memory_store():
    store = SubscriptionStore()
    yield store
    store.clear()


@pytest.fixture
def sql_store():
    store = SqlSubscriptionStore.from_url("sqlite://")
    yield store
    store.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Each store implementation in turn."""
    if request.param == "memory":
        store = SubscriptionStore()
        yield store
        store.clear()
    else:
        store = SqlSubscriptionStore.from_url("sqlite://")
        yield store
        store.dispose()


@pytest.fixture
def reconciler(store, settings) -> Reconciler:
    return Reconciler(subscription_store=store, subscription_period=settings.subscription_period)


@pytest.fixture
def paystack() -> FakePaystack:
    return FakePaystack()
