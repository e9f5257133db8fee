"""
Twilio request signature verification.
"""

import base64
import hashlib
import hmac
import logging

from twilio_inbox.params import CallbackParams

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"


def compute_signature(url: str, params: CallbackParams, secret: str) -> str:
    """
    Compute the signature Twilio sends for a callback.

    The signed string is the full request URL (query string included)
    followed by every param as key + value, sorted by key, no separators.

    Args:
        url: Exact request URL as received
        params: Decoded body params
        secret: Twilio auth token

    Returns:
        Base64-encoded HMAC-SHA1 digest
    """
    signed = url + "".join(f"{key}{value}" for key, value in params.sorted_pairs())
    digest = hmac.new(
        secret.encode("utf-8"),
        signed.encode("utf-8"),
        hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(url: str, params: CallbackParams, signature: str, secret: str) -> bool:
    """
    Verify a received X-Twilio-Signature value.

    Returns:
        True if signature is valid, False otherwise
    """
    logger.info("Verifying Twilio signature")
    logger.debug(f"URL: {url}, params: {len(params.pairs)}, signature: {signature[:8]}...")

    expected_signature = compute_signature(url, params, secret)

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(
        expected_signature.encode("utf-8"),
        signature.encode("utf-8"),
    )
    logger.info(f"Twilio signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
