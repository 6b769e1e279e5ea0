"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For the canonical objects handlers work with, see events.py.
"""

from sqlalchemy import Column, Float, Integer, String, Text

from wschannel.storage import Base


class Channel(Base):
    """
    A configured provider channel.

    Table: channels
    schemes is a comma separated list, the first scheme is the default one.
    config is a JSON object (e.g. {"send_url": "..."}).
    """
    __tablename__ = "channels"

    uuid = Column(String, primary_key=True)
    channel_type = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    address = Column(String, nullable=False)
    schemes = Column(String, nullable=False)
    config = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)


class Contact(Base):
    """
    A contact addressed by a single URN.

    Table: contacts
    Unique: urn (scheme:path identity)
    """
    __tablename__ = "contacts"

    uuid = Column(String, primary_key=True)
    channel_uuid = Column(String, nullable=False, index=True)
    urn = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    language = Column(String(3), nullable=True)
    created_at = Column(String, nullable=False)


class Message(Base):
    """
    An incoming (I) or outgoing (O) message.

    Table: msgs
    """
    __tablename__ = "msgs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String, nullable=False, unique=True, index=True)
    channel_uuid = Column(String, nullable=False, index=True)
    direction = Column(String(1), nullable=False)
    status = Column(String(1), nullable=False)
    text = Column(Text, nullable=False, default="")
    urn = Column(String, nullable=False)
    contact_uuid = Column(String, nullable=True)
    external_id = Column(String, nullable=True, index=True)
    attachments = Column(Text, nullable=True)  # JSON list
    quick_replies = Column(Text, nullable=True)  # JSON list
    received_on = Column(String, nullable=True)  # ISO-8601 UTC string
    created_at = Column(String, nullable=False)
    modified_on = Column(String, nullable=False)


class SeenExternalID(Base):
    """
    External ids already received on a channel.

    Table: seen_external_ids
    Primary Key: (channel_uuid, external_id) (ensures idempotency)
    """
    __tablename__ = "seen_external_ids"

    channel_uuid = Column(String, primary_key=True)
    external_id = Column(String, primary_key=True)
    msg_uuid = Column(String, nullable=False)
    created_at = Column(String, nullable=False)


class ChannelLogEntry(Base):
    """
    A recorded HTTP exchange with a provider.

    Table: channel_logs
    """
    __tablename__ = "channel_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_uuid = Column(String, nullable=False, index=True)
    msg_id = Column(Integer, nullable=True, index=True)
    description = Column(String, nullable=False)
    method = Column(String, nullable=True)
    url = Column(String, nullable=True)
    status_code = Column(Integer, nullable=True)
    request = Column(Text, nullable=True)
    response = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    elapsed_ms = Column(Float, nullable=False, default=0.0)
    created_at = Column(String, nullable=False)
