"""
Inbound callback pipeline.

Gate -> decode (see decoder.py) -> verify signature -> normalize -> persist.
Everything after the body has been read is synchronous and driven by
process_callback().
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from twilio_inbox.config import Settings
from twilio_inbox.models import DIRECTION_INBOUND, STATUS_RECEIVED
from twilio_inbox.normalizer import InboundMessage, normalize_payload
from twilio_inbox.params import CallbackParams
from twilio_inbox.signature import verify_signature
from twilio_inbox.storage import ContactResult, MessageResult, insert_message, upsert_contact

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """
    A callback that is answered with an error before anything is stored.

    Attributes:
        status_code: HTTP status to respond with
        error: Value of the "error" field in the JSON response
        result: Outcome label used for logs and metrics
    """

    def __init__(self, status_code: int, error: str, result: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.result = result


@dataclass
class InboundCallback:
    """A decoded callback request."""
    url: str
    params: CallbackParams
    signature: Optional[str] = None


@dataclass
class IngestResult:
    """
    Both persistence steps. message is None when the contact step failed
    and the insert was never attempted.
    """
    contact: ContactResult
    message: Optional[MessageResult] = None

    @property
    def ok(self) -> bool:
        return self.contact.ok and self.message is not None and self.message.ok

    @property
    def error(self) -> Optional[str]:
        if not self.contact.ok:
            return "DB error (contact)"
        if self.message is None or not self.message.ok:
            return "DB error (message)"
        return None

    @property
    def result(self) -> str:
        if not self.contact.ok:
            return "contact_error"
        if not self.ok:
            return "message_error"
        return "stored"


def check_request(method: str, settings: Settings) -> None:
    """
    Reject requests that must not reach decoding. OPTIONS is answered by
    the caller before this point.

    Raises:
        WebhookError: 405 for non-POST, 500 when the store is not configured
    """
    if method != "POST":
        logger.warning(f"Rejected {method} request")
        raise WebhookError(405, "Method not allowed", "method_not_allowed")

    if not settings.store_configured:
        logger.error("Missing DATABASE_URL setting")
        raise WebhookError(500, "Server not configured", "not_configured")


def check_signature(callback: InboundCallback, settings: Settings) -> None:
    """
    Verify the Twilio signature when both the header and a secret are present.

    Raises:
        WebhookError: 403 on mismatch, 400 if verification itself failed
    """
    secret = settings.signing_secret
    if not callback.signature or not secret:
        logger.debug("Signature check skipped: header or secret missing")
        return

    try:
        is_valid = verify_signature(callback.url, callback.params, callback.signature, secret)
    except Exception as e:
        logger.error(f"Signature validation error: {e}")
        raise WebhookError(400, "Signature validation error", "signature_error") from e

    if not is_valid:
        logger.warning(f"Twilio signature mismatch for {callback.url}")
        raise WebhookError(403, "Signature verification failed", "invalid_signature")


def persist_inbound(db: Session, message: InboundMessage) -> IngestResult:
    """
    Upsert the sender's contact, then insert the message against it.

    The steps commit separately: if the insert fails the contact row stays.
    """
    contact_result = upsert_contact(
        db=db,
        phone_number=message.phone_number,
        platform=message.platform,
        display_name=message.display_name,
        metadata=message.metadata,
    )
    if not contact_result.ok:
        return IngestResult(contact=contact_result)

    message_result = insert_message(
        db=db,
        contact_id=contact_result.contact.id,
        platform=message.platform,
        direction=DIRECTION_INBOUND,
        status=STATUS_RECEIVED,
        body=message.body,
        media_urls=message.media_urls,
        provider_message_id=message.provider_message_id,
        raw_payload=message.raw_payload,
    )
    return IngestResult(contact=contact_result, message=message_result)


def process_callback(callback: InboundCallback, settings: Settings, db: Session) -> IngestResult:
    """
    Verify, normalize and store one decoded callback.

    Raises:
        WebhookError: when the signature check rejects the callback
    """
    check_signature(callback, settings)

    message = normalize_payload(callback.params)
    logger.debug(
        f"Normalized callback: phone={message.phone_number}, "
        f"sid={message.provider_message_id}, media={len(message.media_urls)}"
    )

    return persist_inbound(db, message)
