"""Webhook signature verification.

The processor signs the exact request body with HMAC-SHA512 using the account
secret and sends the lowercase hex digest in ``x-paystack-signature``. The
digest must be computed over the raw transport bytes, before any JSON parsing.
"""

import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(payload: bytes, secret: str) -> str:
    """HMAC-SHA512 of ``payload`` keyed by ``secret``, as lowercase hex."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def verify_signature(
    payload: bytes,
    signature: Optional[Union[str, bytes]],
    secret: str,
) -> bool:
    """Check a webhook signature in constant time.

    Args:
        payload: Raw request body exactly as received
        signature: Value of the signature header (may be missing or malformed)
        secret: Shared signing secret

    Returns:
        True only if the signature matches; never raises for a bad signature
    """
    if not signature:
        return False
    if isinstance(signature, bytes):
        try:
            signature = signature.decode("ascii")
        except UnicodeDecodeError:
            return False
    if not signature.isascii():
        return False

    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


class InvalidSignatureError(Exception):
    """Raised when a webhook arrives without a valid signature."""

    pass


def require_valid_signature(
    payload: bytes,
    signature: Optional[Union[str, bytes]],
    secret: str,
) -> None:
    """Raise InvalidSignatureError unless ``signature`` matches ``payload``."""
    if not signature:
        raise InvalidSignatureError("Missing webhook signature")
    if not verify_signature(payload, signature, secret):
        raise InvalidSignatureError("Invalid webhook signature")
