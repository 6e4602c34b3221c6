"""
HMAC-SHA256 webhook signatures.

The signature covers the exact request body bytes and is sent as
``X-Webhook-Signature: sha256=<lowercase hex digest>``.
"""

import hashlib
import hmac
from typing import Union

SIGNATURE_HEADER = "X-Webhook-Signature"
NOTIFICATION_ID_HEADER = "X-Notification-Id"
SIGNATURE_PREFIX = "sha256="


def _to_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def compute_signature(body: Union[bytes, str], secret: str) -> str:
    """Sign a request body with HMAC-SHA256"""
    digest = hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: Union[bytes, str], signature: str, secret: str) -> bool:
    """Verify a webhook signature in constant time"""
    expected = compute_signature(body, secret)
    return hmac.compare_digest(signature or "", expected)
