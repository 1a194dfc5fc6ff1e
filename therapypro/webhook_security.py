"""
Webhook Security Module

Signature and token verification for the payment gateway webhooks:
- Stripe: HMAC-SHA256 over "timestamp.payload" with a 5 minute tolerance
- Asaas: static access token sent in the asaas-access-token header
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Empty values never match.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    Prevents replay attacks by rejecting old webhooks.
    """
    if not timestamp:
        return False

    try:
        age = abs(int(time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


def parse_stripe_signature_header(header: str) -> tuple[Optional[str], list[str]]:
    """Split 't=<ts>,v1=<sig>,v1=<sig>' into the timestamp and every v1 signature"""
    timestamp = None
    signatures = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


async def verify_stripe_webhook(
    request: Request, secret: Optional[str], raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify Stripe webhook signature.

    Stripe uses:
    - Header: 'Stripe-Signature' (format: "t=<timestamp>,v1=<signature>")

    Args:
        request: FastAPI request object
        secret: Webhook endpoint secret from Stripe
        raise_on_failure: If True, raises HTTPException on failure

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()

    def fail(detail: str) -> tuple[bool, bytes]:
        if raise_on_failure:
            raise HTTPException(status_code=401, detail=detail)
        return False, raw_body

    if not secret:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        if raise_on_failure:
            raise HTTPException(status_code=500, detail="Webhook secret not configured")
        return False, raw_body

    signature_header = request.headers.get("Stripe-Signature", "")
    if not signature_header:
        logger.warning("🚫 Stripe webhook missing signature header")
        return fail("Missing webhook signature")

    timestamp, signatures = parse_stripe_signature_header(signature_header)
    if not timestamp or not signatures:
        logger.warning("🚫 Stripe webhook invalid signature format")
        return fail("Invalid signature format")

    if not verify_timestamp(timestamp):
        return fail("Webhook timestamp expired")

    signed_payload = timestamp.encode("utf-8") + b"." + raw_body
    expected_signature = compute_hmac_sha256(secret, signed_payload)

    if not any(constant_time_compare(expected_signature, sig) for sig in signatures):
        logger.warning("🚫 Stripe webhook signature mismatch")
        return fail("Invalid webhook signature")

    logger.debug("✅ Stripe webhook signature verified")
    return True, raw_body


async def verify_asaas_webhook(
    request: Request, expected_token: Optional[str], raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify an Asaas webhook by its access token header.

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()

    if not expected_token:
        logger.error("❌ ASAAS_WEBHOOK_TOKEN not configured")
        if raise_on_failure:
            raise HTTPException(status_code=500, detail="Webhook token not configured")
        return False, raw_body

    received = request.headers.get("asaas-access-token", "")
    if not constant_time_compare(received, expected_token):
        logger.warning("🚫 Asaas webhook token mismatch")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid webhook token")
        return False, raw_body

    logger.debug("✅ Asaas webhook token verified")
    return True, raw_body


def create_stripe_signature(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for a payload (used for local testing)"""
    timestamp = timestamp or int(time.time())
    sig = compute_hmac_sha256(secret, str(timestamp).encode("utf-8") + b"." + payload)
    return f"t={timestamp},v1={sig}"
