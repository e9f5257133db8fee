import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, func, inspect
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

# Dialects whose INSERT supports ON CONFLICT ... DO UPDATE ... RETURNING
_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def utc_now() -> str:
    """Server timestamp, ISO-8601 UTC with microseconds so rows order correctly."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@lru_cache()
def get_engine(database_url: str) -> Engine:
    """
    Create (once per URL) the SQLAlchemy engine.
    check_same_thread=False is required for SQLite to work with FastAPI's threadpool.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=False)


@lru_cache()
def get_session_factory(database_url: str) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine(database_url))


@contextmanager
def open_session(database_url: str) -> Iterator[Session]:
    """Yield a session and ensure it's closed after use."""
    db = get_session_factory(database_url)()
    try:
        yield db
    finally:
        db.close()


def init_db(database_url: str) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from twilio_inbox import models  # noqa: F401

        Base.metadata.create_all(bind=get_engine(database_url))
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(database_url: str) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        inspector = inspect(get_engine(database_url))
        for table in ("contacts", "messages"):
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Write Results
# =============================================================================

@dataclass
class ContactResult:
    """Outcome of the contact upsert step."""
    contact: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.contact is not None


@dataclass
class MessageResult:
    """Outcome of the message insert step."""
    message: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.message is not None


# =============================================================================
# Contact Repository Functions
# =============================================================================

def upsert_contact(
    db: Session,
    phone_number: str,
    platform: str,
    display_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ContactResult:
    """
    Insert a contact or update the existing one for (platform, phone_number).

    Runs as a single INSERT ... ON CONFLICT DO UPDATE so that concurrent first
    messages from the same number resolve to one row. On conflict display_name,
    metadata and updated_at are overwritten; id and created_at are kept.
    Commits on success, rolls back on failure.
    """
    from twilio_inbox.models import Contact

    logger.info(f"Upserting contact: platform={platform}, phone={phone_number}")

    try:
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise ValueError(f"contact upsert not supported on dialect {dialect!r}")

        now = utc_now()
        table = Contact.__table__
        stmt = insert(table).values(
            id=str(uuid.uuid4()),
            phone_number=phone_number,
            platform=platform,
            display_name=display_name,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.platform, table.c.phone_number],
            set_={
                "display_name": stmt.excluded["display_name"],
                "metadata": stmt.excluded["metadata"],
                "updated_at": stmt.excluded["updated_at"],
            },
        ).returning(table.c.id)

        contact_id = db.execute(stmt).scalar_one()
        db.commit()

        contact = db.get(Contact, contact_id)
        logger.info(f"Contact upserted: {contact_id}")
        return ContactResult(contact=contact)

    except Exception as e:
        db.rollback()
        logger.error(f"Failed to upsert contact {platform}:{phone_number}: {e}")
        return ContactResult(error=str(e))


def get_contact(db: Session, contact_id: str):
    """Return the contact with this id, or None."""
    from twilio_inbox.models import Contact

    return db.get(Contact, contact_id)


def list_contacts(db: Session) -> list:
    """All contacts, most recently updated first."""
    from twilio_inbox.models import Contact

    contacts = db.query(Contact).order_by(Contact.updated_at.desc()).all()
    logger.info(f"Retrieved {len(contacts)} contacts")
    return contacts


# =============================================================================
# Message Repository Functions
# =============================================================================

def insert_message(
    db: Session,
    contact_id: str,
    platform: str,
    direction: str,
    status: str,
    body: Optional[str] = None,
    media_urls: Optional[List[str]] = None,
    provider_message_id: Optional[str] = None,
    raw_payload: Optional[Dict[str, str]] = None,
) -> MessageResult:
    """
    Insert a message row for an existing contact.

    No deduplication is done on provider_message_id; a provider retry of the
    same callback produces a second row.
    """
    from twilio_inbox.models import Message

    logger.info(f"Inserting message: contact={contact_id}, sid={provider_message_id}")

    try:
        message = Message(
            id=str(uuid.uuid4()),
            contact_id=contact_id,
            platform=platform,
            direction=direction,
            body=body,
            media_urls=list(media_urls or []),
            status=status,
            provider_message_id=provider_message_id,
            raw_payload=dict(raw_payload or {}),
            created_at=utc_now(),
        )
        db.add(message)
        db.commit()
        logger.info(f"Message inserted: {message.id}")
        return MessageResult(message=message)

    except Exception as e:
        db.rollback()
        logger.error(f"Failed to insert message for contact {contact_id}: {e}")
        return MessageResult(error=str(e))


def get_contact_messages(db: Session, contact_id: str) -> list:
    """A contact's thread, oldest first."""
    from twilio_inbox.models import Message

    messages = (
        db.query(Message)
        .filter(Message.contact_id == contact_id)
        .order_by(Message.created_at.asc())
        .all()
    )
    logger.info(f"Retrieved {len(messages)} messages for contact {contact_id}")
    return messages


def get_stats(db: Session) -> dict:
    """
    Counts shown on the dashboard landing page.

    Returns:
        Dictionary with total_contacts, total_messages, inbound_messages
        and outbound_messages
    """
    from twilio_inbox.models import DIRECTION_INBOUND, DIRECTION_OUTBOUND, Contact, Message

    logger.info("Computing message statistics")

    total_contacts = db.query(func.count(Contact.id)).scalar() or 0
    per_direction = dict(
        db.query(Message.direction, func.count(Message.id))
        .group_by(Message.direction)
        .all()
    )
    total_messages = sum(per_direction.values())

    logger.info(f"Stats computed: {total_contacts} contacts, {total_messages} messages")

    return {
        "total_contacts": total_contacts,
        "total_messages": total_messages,
        "inbound_messages": per_direction.get(DIRECTION_INBOUND, 0),
        "outbound_messages": per_direction.get(DIRECTION_OUTBOUND, 0),
    }
