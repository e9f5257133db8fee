"""
Mapping of Twilio WhatsApp callback fields onto an inbound message.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from twilio_inbox.models import PLATFORM_WHATSAPP
from twilio_inbox.params import CallbackParams

CHANNEL_PREFIX = "whatsapp:"

_MEDIA_URL_KEY = re.compile(r"^MediaUrl(0|[1-9][0-9]*)$")


@dataclass
class InboundMessage:
    """Canonical fields extracted from one callback."""
    phone_number: str
    display_name: Optional[str]
    body: str
    media_urls: List[str]
    provider_message_id: Optional[str]
    metadata: Dict[str, str]
    raw_payload: Dict[str, str] = field(default_factory=dict)
    platform: str = PLATFORM_WHATSAPP


def extract_media_urls(params: CallbackParams) -> List[str]:
    """
    MediaUrl{i} for every index i below NumMedia, in index order, skipping
    missing ones. A fractional count also covers the next index up (2.5 includes 2).
    """
    count = params.number("NumMedia")
    indexed = []
    for key in params:
        match = _MEDIA_URL_KEY.match(key)
        if match and int(match.group(1)) < count and params[key]:
            indexed.append((int(match.group(1)), params[key]))
    return [url for _, url in sorted(indexed)]


def normalize_payload(params: CallbackParams) -> InboundMessage:
    """Build an InboundMessage; absent fields become empty or None."""
    sender = params.text("From")  # e.g. "whatsapp:+15551234567"
    phone_number = params.text("WaId") or sender.removeprefix(CHANNEL_PREFIX)

    return InboundMessage(
        phone_number=phone_number,
        display_name=params.optional("ProfileName"),
        body=params.text("Body"),
        media_urls=extract_media_urls(params),
        provider_message_id=params.optional("MessageSid"),
        metadata={"to": params.text("To"), "from": sender},
        raw_payload=params.to_dict(),
    )
