"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic response schemas, see schemas.py.
"""

from sqlalchemy import JSON, Column, ForeignKey, String, Text, UniqueConstraint

from twilio_inbox.storage import Base


PLATFORM_WHATSAPP = "whatsapp"

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

STATUS_RECEIVED = "received"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


class Contact(Base):
    """
    A person reachable on a messaging platform.

    Table: contacts
    Unique: (platform, phone_number), the upsert conflict target
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("platform", "phone_number", name="uq_contacts_platform_phone"),
    )

    id = Column(String, primary_key=True)
    phone_number = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    platform = Column(String, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)  # ISO-8601 UTC
    updated_at = Column(String, nullable=False, index=True)


class Message(Base):
    """
    A single message exchanged with a contact. Rows are never updated.

    Table: messages
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    contact_id = Column(String, ForeignKey("contacts.id"), nullable=False, index=True)
    platform = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    media_urls = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False)
    # Not unique: provider retries are stored again
    provider_message_id = Column(String, nullable=True, index=True)
    raw_payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False, index=True)
