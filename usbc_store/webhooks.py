"""
HMAC-SHA256 verification of inbound payment notifications.

The digest is always computed over the raw request bytes as received.
Parsing and re-encoding the body first would change whitespace or key
order and break the comparison.
"""
import hashlib
import hmac
import logging
from typing import Optional, Union

from .errors import InvalidSignature

logger = logging.getLogger(__name__)

DEFAULT_SIGNATURE_HEADER = "X-MercadoPago-Signature"


def compute_signature(secret: Union[str, bytes], body: bytes) -> str:
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def verify_signature(
    secret: Union[str, bytes], body: bytes, signature: Optional[str]
) -> None:
    """Raise ``InvalidSignature`` unless ``signature`` is the exact hex digest."""
    if not secret:
        logger.error("Webhook secret not configured; rejecting notification")
        raise InvalidSignature("Webhook secret is not configured")

    if not signature:
        logger.warning("Webhook received without signature header")
        raise InvalidSignature("Missing signature")

    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        logger.warning("Webhook signature mismatch")
        raise InvalidSignature()
