import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from wschannel.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("channels", "contacts", "msgs", "seen_external_ids", "channel_logs")


def now_iso() -> str:
    """Server time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from wschannel import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))

        existing = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to write {what}: {e}")
        raise


# =============================================================================
# Channel Repository Functions
# =============================================================================

def create_channel(
    db: Session,
    channel_type: str,
    address: str,
    schemes: list[str],
    name: str = "",
    config: Optional[dict] = None,
    channel_uuid: Optional[str] = None,
):
    """
    Create a channel.

    Args:
        db: Database session
        channel_type: Handler channel type, e.g. "WS"
        address: Channel address, the sender of outgoing messages
        schemes: URN schemes, the first one is used for registrations
        name: Display name
        config: Channel config, e.g. {"send_url": "https://..."}
        channel_uuid: Explicit UUID (generated when omitted)
    """
    from wschannel.models import Channel

    channel = Channel(
        uuid=channel_uuid or str(uuid.uuid4()),
        channel_type=channel_type.upper(),
        name=name,
        address=address,
        schemes=",".join(schemes),
        config=json.dumps(config or {}),
        created_at=now_iso(),
    )
    db.add(channel)
    _commit(db, f"channel {channel.uuid}")
    logger.info(f"Channel created: uuid={channel.uuid}, type={channel.channel_type}")
    return channel


def get_channel(db: Session, channel_type: str, channel_uuid: str):
    from wschannel.models import Channel

    return (
        db.query(Channel)
        .filter(Channel.uuid == channel_uuid, Channel.channel_type == channel_type.upper())
        .first()
    )


def get_channel_by_uuid(db: Session, channel_uuid: str):
    from wschannel.models import Channel

    return db.query(Channel).filter(Channel.uuid == channel_uuid).first()


# =============================================================================
# Contact Repository Functions
# =============================================================================

def get_contact_by_urn(db: Session, urn: str):
    from wschannel.models import Contact

    return db.query(Contact).filter(Contact.urn == urn).first()


def get_or_create_contact(db: Session, channel_uuid: str, urn: str, name: str = "") -> Tuple[object, bool]:
    """
    Get the contact owning a URN, creating it when missing.

    Returns:
        Tuple of (contact, created)
    """
    from wschannel.models import Contact

    contact = get_contact_by_urn(db, urn)
    if contact is not None:
        return contact, False

    contact = Contact(
        uuid=str(uuid.uuid4()),
        channel_uuid=channel_uuid,
        urn=urn,
        name=name or None,
        created_at=now_iso(),
    )
    db.add(contact)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.rollback()
        logger.info(f"Contact for {urn} created concurrently, reusing it")
        return get_contact_by_urn(db, urn), False
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create contact for {urn}: {e}")
        raise

    logger.info(f"Contact created: uuid={contact.uuid}")
    return contact, True


def set_contact_language(db: Session, contact_uuid: str, language: str):
    from wschannel.models import Contact

    contact = db.query(Contact).filter(Contact.uuid == contact_uuid).first()
    if contact is None:
        return None
    contact.language = language
    _commit(db, f"language for contact {contact_uuid}")
    return contact


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_incoming_msg(
    db: Session,
    msg_uuid: str,
    channel_uuid: str,
    urn: str,
    text: str,
    contact_uuid: Optional[str] = None,
    external_id: Optional[str] = None,
    received_on: Optional[str] = None,
    attachments: Optional[list[str]] = None,
):
    from wschannel.events import MsgDirection, MsgStatusValue
    from wschannel.models import Message

    created_at = now_iso()
    message = Message(
        uuid=msg_uuid,
        channel_uuid=channel_uuid,
        direction=MsgDirection.INCOMING.value,
        status=MsgStatusValue.PENDING.value,
        text=text,
        urn=urn,
        contact_uuid=contact_uuid,
        external_id=external_id,
        attachments=json.dumps(attachments or []),
        quick_replies=json.dumps([]),
        received_on=received_on,
        created_at=created_at,
        modified_on=created_at,
    )
    db.add(message)
    _commit(db, f"incoming message {msg_uuid}")
    logger.info(f"Incoming message created: id={message.id}, external_id={external_id}")
    return message


def create_outgoing_msg(
    db: Session,
    channel_uuid: str,
    urn: str,
    text: str,
    attachments: Optional[list[str]] = None,
    quick_replies: Optional[list[str]] = None,
):
    """
    Queue an outgoing message for delivery (status pending).

    Args:
        db: Database session
        channel_uuid: Channel to send through
        urn: Recipient identity (scheme:path)
        text: Message text
        attachments: Optional attachment URLs
        quick_replies: Optional quick reply labels
    """
    from wschannel.events import MsgDirection, MsgStatusValue
    from wschannel.models import Message

    created_at = now_iso()
    message = Message(
        uuid=str(uuid.uuid4()),
        channel_uuid=channel_uuid,
        direction=MsgDirection.OUTGOING.value,
        status=MsgStatusValue.PENDING.value,
        text=text,
        urn=urn,
        attachments=json.dumps(attachments or []),
        quick_replies=json.dumps(quick_replies or []),
        created_at=created_at,
        modified_on=created_at,
    )
    db.add(message)
    _commit(db, "outgoing message")
    logger.info(f"Outgoing message queued: id={message.id}, urn={urn}")
    return message


def get_msg_by_id(db: Session, msg_id: int):
    from wschannel.models import Message

    return db.query(Message).filter(Message.id == msg_id).first()


def get_outgoing_msg_by_external_id(db: Session, channel_uuid: str, external_id: str):
    from wschannel.events import MsgDirection
    from wschannel.models import Message

    return (
        db.query(Message)
        .filter(
            Message.channel_uuid == channel_uuid,
            Message.direction == MsgDirection.OUTGOING.value,
            Message.external_id == external_id,
        )
        .order_by(Message.id.desc())
        .first()
    )


def get_pending_msgs(db: Session, limit: int = 100) -> list:
    """Outgoing messages never attempted (status pending), oldest first."""
    from wschannel.events import MsgDirection, MsgStatusValue
    from wschannel.models import Message

    return (
        db.query(Message)
        .filter(
            Message.direction == MsgDirection.OUTGOING.value,
            Message.status == MsgStatusValue.PENDING.value,
        )
        .order_by(Message.id.asc())
        .limit(limit)
        .all()
    )


def update_msg_status(db: Session, message, status: str, external_id: Optional[str] = None):
    message.status = status
    if external_id:
        message.external_id = external_id
    message.modified_on = now_iso()
    _commit(db, f"status for message {message.id}")
    logger.info(f"Message {message.id} status updated to {status}")
    return message


# =============================================================================
# Seen External ID Repository Functions
# =============================================================================

def get_seen_msg_uuid(db: Session, channel_uuid: str, external_id: str) -> Optional[str]:
    """Return the UUID of the message first received with this external id, if any."""
    from wschannel.models import SeenExternalID

    seen = (
        db.query(SeenExternalID)
        .filter(
            SeenExternalID.channel_uuid == channel_uuid,
            SeenExternalID.external_id == external_id,
        )
        .first()
    )
    return seen.msg_uuid if seen else None


def record_seen_external_id(db: Session, channel_uuid: str, external_id: str, msg_uuid: str) -> bool:
    """
    Record an external id as seen (idempotent).

    Returns:
        True if recorded, False if it was already seen
    """
    from wschannel.models import SeenExternalID

    db.add(SeenExternalID(
        channel_uuid=channel_uuid,
        external_id=external_id,
        msg_uuid=msg_uuid,
        created_at=now_iso(),
    ))
    try:
        db.commit()
        return True
    except IntegrityError:
        # Already seen - expected for re-deliveries
        db.rollback()
        logger.info(f"External id already seen: {external_id}")
        return False
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record seen external id {external_id}: {e}")
        raise


# =============================================================================
# Channel Log Repository Functions
# =============================================================================

def create_channel_logs(db: Session, logs: list) -> None:
    """Persist channel logs (events.ChannelLog) in one commit."""
    from wschannel.models import ChannelLogEntry

    for log in logs:
        db.add(ChannelLogEntry(
            channel_uuid=log.channel_uuid,
            msg_id=log.msg_id,
            description=log.description,
            method=log.method,
            url=log.url,
            status_code=log.status_code,
            request=log.request,
            response=log.response,
            error=log.error or None,
            elapsed_ms=round(log.elapsed.total_seconds() * 1000, 2),
            created_at=log.created_on.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        ))
    _commit(db, f"{len(logs)} channel logs")


def get_channel_logs(db: Session, msg_id: int) -> list:
    from wschannel.models import ChannelLogEntry

    return (
        db.query(ChannelLogEntry)
        .filter(ChannelLogEntry.msg_id == msg_id)
        .order_by(ChannelLogEntry.id.asc())
        .all()
    )
