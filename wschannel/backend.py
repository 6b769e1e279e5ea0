"""
Backend contract used by channel handlers, and its SQLAlchemy implementation.

Handlers never touch the database directly: contacts, messages, the seen
external id set and statuses are reached through a Backend.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wschannel import storage
from wschannel.events import (
    Channel,
    Contact,
    Msg,
    MsgDirection,
    MsgStatus,
    MsgStatusValue,
)
from wschannel.urns import URN

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A backend operation failed."""


class ChannelNotFoundError(BackendError):
    """No channel with this type and UUID."""


class MsgNotFoundError(BackendError):
    """A status update referenced an unknown message."""


class Backend(ABC):

    @abstractmethod
    def get_channel(self, channel_type: str, channel_uuid: str) -> Channel:
        ...

    @abstractmethod
    def get_contact(self, channel: Channel, urn: URN, name: str = "") -> Contact:
        """Get the contact owning urn, creating it if needed."""

    @abstractmethod
    def add_language_to_contact(self, channel: Channel, language: str, contact: Contact) -> Contact:
        ...

    @abstractmethod
    def write_msg(self, msg: Msg) -> None:
        """Persist an incoming message. No-op for messages already written."""

    @abstractmethod
    def check_external_id_seen(self, msg: Msg) -> Msg:
        """
        Mark msg as already written if its external id was seen before,
        taking over the UUID of the first delivery.
        """

    @abstractmethod
    def write_external_id_seen(self, msg: Msg) -> None:
        ...

    @abstractmethod
    def write_msg_status(self, status: MsgStatus) -> None:
        """
        Persist a status update and its channel logs.

        Raises:
            MsgNotFoundError: if no message matches the status
        """

    @abstractmethod
    def get_pending_msgs(self, limit: int) -> list[Msg]:
        ...

    def new_incoming_msg(
        self,
        channel: Channel,
        urn: URN,
        text: str,
        external_id: Optional[str] = None,
        received_on: Optional[datetime] = None,
        contact_name: str = "",
    ) -> Msg:
        return Msg(
            channel=channel,
            urn=urn,
            text=text,
            external_id=external_id,
            received_on=received_on,
            contact_name=contact_name,
        )

    def new_msg_status_for_id(self, channel: Channel, msg_id: int, status: MsgStatusValue) -> MsgStatus:
        return MsgStatus(channel_uuid=channel.uuid, msg_id=msg_id, status=status)

    def new_msg_status_for_external_id(self, channel: Channel, external_id: str, status: MsgStatusValue) -> MsgStatus:
        return MsgStatus(channel_uuid=channel.uuid, external_id=external_id, status=status)


def channel_from_row(row) -> Channel:
    return Channel(
        uuid=row.uuid,
        channel_type=row.channel_type,
        address=row.address,
        schemes=[s for s in row.schemes.split(",") if s],
        name=row.name or "",
        config=json.loads(row.config) if row.config else {},
    )


class SQLBackend(Backend):
    """Backend over the SQLAlchemy session of the current request."""

    def __init__(self, db: Session):
        self.db = db

    def get_channel(self, channel_type: str, channel_uuid: str) -> Channel:
        try:
            row = storage.get_channel(self.db, channel_type, channel_uuid)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to look up channel: {e}") from e
        if row is None:
            raise ChannelNotFoundError(f"no {channel_type} channel with uuid {channel_uuid}")
        return channel_from_row(row)

    def get_contact(self, channel: Channel, urn: URN, name: str = "") -> Contact:
        try:
            row, _ = storage.get_or_create_contact(self.db, channel.uuid, urn.identity, name)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to get contact for {urn}: {e}") from e
        return Contact(uuid=row.uuid, urn=urn, name=row.name or "", language=row.language)

    def add_language_to_contact(self, channel: Channel, language: str, contact: Contact) -> Contact:
        try:
            row = storage.set_contact_language(self.db, contact.uuid, language)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to set contact language: {e}") from e
        if row is None:
            raise BackendError(f"contact {contact.uuid} disappeared")
        contact.language = language
        return contact

    def write_msg(self, msg: Msg) -> None:
        if msg.already_written:
            return

        contact = self.get_contact(msg.channel, msg.urn, msg.contact_name)
        msg.contact_uuid = contact.uuid
        try:
            row = storage.create_incoming_msg(
                self.db,
                msg_uuid=msg.uuid,
                channel_uuid=msg.channel.uuid,
                urn=msg.urn.identity,
                text=msg.text,
                contact_uuid=contact.uuid,
                external_id=msg.external_id,
                received_on=msg.received_on.isoformat() if msg.received_on else None,
                attachments=msg.attachments,
            )
        except SQLAlchemyError as e:
            raise BackendError(f"unable to write message: {e}") from e
        msg.id = row.id

    def check_external_id_seen(self, msg: Msg) -> Msg:
        if not msg.external_id:
            return msg
        try:
            seen_uuid = storage.get_seen_msg_uuid(self.db, msg.channel.uuid, msg.external_id)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to check external id: {e}") from e
        if seen_uuid:
            logger.info(f"Message with external id {msg.external_id} already received as {seen_uuid}")
            msg.uuid = seen_uuid
            msg.already_written = True
        return msg

    def write_external_id_seen(self, msg: Msg) -> None:
        if not msg.external_id:
            return
        try:
            storage.record_seen_external_id(self.db, msg.channel.uuid, msg.external_id, msg.uuid)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to record external id: {e}") from e

    def write_msg_status(self, status: MsgStatus) -> None:
        try:
            if status.msg_id is not None:
                row = storage.get_msg_by_id(self.db, status.msg_id)
            else:
                row = storage.get_outgoing_msg_by_external_id(self.db, status.channel_uuid, status.external_id)

            if row is None:
                raise MsgNotFoundError(
                    f"no message for status (id={status.msg_id}, external_id={status.external_id})"
                )

            storage.update_msg_status(self.db, row, status.status.value, status.external_id)
            for log in status.logs:
                log.msg_id = row.id
            storage.create_channel_logs(self.db, status.logs)
        except SQLAlchemyError as e:
            raise BackendError(f"unable to write message status: {e}") from e

        status.msg_id = row.id

    def get_pending_msgs(self, limit: int) -> list[Msg]:
        try:
            rows = storage.get_pending_msgs(self.db, limit)
            channels = {}
            msgs = []
            for row in rows:
                if row.channel_uuid not in channels:
                    channel_row = storage.get_channel_by_uuid(self.db, row.channel_uuid)
                    channels[row.channel_uuid] = channel_from_row(channel_row) if channel_row else None
                channel = channels[row.channel_uuid]
                if channel is None:
                    logger.warning(f"Skipping message {row.id}, its channel {row.channel_uuid} is gone")
                    continue
                msgs.append(Msg(
                    channel=channel,
                    urn=URN.parse(row.urn),
                    text=row.text or "",
                    uuid=row.uuid,
                    id=row.id,
                    direction=MsgDirection.OUTGOING,
                    external_id=row.external_id,
                    contact_uuid=row.contact_uuid,
                    attachments=json.loads(row.attachments or "[]"),
                    quick_replies=json.loads(row.quick_replies or "[]"),
                ))
        except SQLAlchemyError as e:
            raise BackendError(f"unable to load pending messages: {e}") from e
        return msgs


def get_backend() -> Generator[Backend, None, None]:
    """
    Dependency to get a backend for the current request.
    Yields a SQLBackend and ensures its session is closed after use.
    """
    db = storage.SessionLocal()
    try:
        yield SQLBackend(db)
    finally:
        db.close()
