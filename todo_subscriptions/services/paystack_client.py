"""Paystack API client.

Thin synchronous wrapper over the three processor calls the service needs.
Any failure (transport error, timeout, non-2xx, non-JSON body, or a
``status: false`` envelope) raises PaystackError. Nothing is retried here;
callers retry the whole operation.
"""

import threading
from typing import Any, Optional
from urllib.parse import quote

import httpx

from todo_subscriptions.config import Settings
from todo_subscriptions.logging_config import get_logger

logger = get_logger(__name__)


class PaystackError(Exception):
    """The processor call failed or returned an unsuccessful payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class PaystackClient:
    """Synchronous Paystack client.

    Args:
        secret_key: Account secret key used as bearer token
        base_url: API base URL
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    BASE_URL = "https://api.paystack.co"

    def __init__(
        self,
        secret_key: str,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "PaystackClient":
        """Build a client from settings.

        Raises:
            ConfigurationError: If the secret key is not configured
        """
        return cls(
            secret_key=settings.require_secret_key(),
            base_url=settings.processor.base_url,
            timeout=settings.processor.timeout_seconds,
            transport=transport,
        )

    def _request(self, method: str, endpoint: str, json: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            response = self._client.request(method, f"/{endpoint}", json=json)
        except httpx.TimeoutException as e:
            logger.error("paystack_api_timeout", endpoint=endpoint, error=str(e))
            raise PaystackError("Payment processor request timed out", endpoint=endpoint) from e
        except httpx.HTTPError as e:
            logger.error("paystack_api_error", endpoint=endpoint, error=str(e))
            raise PaystackError("Payment processor request failed", endpoint=endpoint) from e

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(
                "paystack_api_invalid_body",
                endpoint=endpoint,
                status_code=response.status_code,
            )
            raise PaystackError(
                "Payment processor returned an unreadable response",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from e

        if response.is_error or not isinstance(payload, dict) or payload.get("status") is not True:
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(
                "paystack_api_rejected",
                endpoint=endpoint,
                status_code=response.status_code,
                processor_message=message,
            )
            raise PaystackError(
                message or "Payment processor rejected the request",
                status_code=response.status_code,
                endpoint=endpoint,
            )

        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    def initialize_transaction(
        self,
        email: str,
        amount: int,
        plan_code: str,
        metadata: dict[str, Any],
        callback_url: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> dict[str, Any]:
        """Open a checkout session for the plan. Returns the envelope ``data``."""
        body: dict[str, Any] = {
            "email": email,
            "amount": amount,
            "plan": plan_code,
            "metadata": metadata,
        }
        if callback_url:
            body["callback_url"] = callback_url
        if currency:
            body["currency"] = currency
        return self._request("POST", "transaction/initialize", body)

    def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Fetch the outcome of a checkout session."""
        return self._request("GET", f"transaction/verify/{quote(reference, safe='')}")

    def disable_subscription(self, code: str, token: Optional[str] = None) -> dict[str, Any]:
        """Stop the recurring plan identified by ``code``."""
        body: dict[str, Any] = {"code": code}
        if token:
            body["token"] = token
        return self._request("POST", "subscription/disable", body)

    def close(self) -> None:
        self._client.close()


# Global client instance
_client_instance: Optional[PaystackClient] = None
_client_lock = threading.Lock()


def get_paystack_client() -> PaystackClient:
    """Get global Paystack client (singleton, built from settings on first use).

    Raises:
        ConfigurationError: If the secret key is not configured
    """
    global _client_instance
    if _client_instance is None:
        with _client_lock:
            if _client_instance is None:
                from todo_subscriptions.config import get_settings

                _client_instance = PaystackClient.from_settings(get_settings())
    return _client_instance


def close_paystack_client() -> None:
    """Close and drop the global client."""
    global _client_instance
    with _client_lock:
        if _client_instance is not None:
            _client_instance.close()
            _client_instance = None
